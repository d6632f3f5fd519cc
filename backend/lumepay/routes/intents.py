from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lumepay.core.clock import Clock, get_clock
from lumepay.database import get_db
from lumepay.deps import get_current_merchant, optional_api_key, require_api_key
from lumepay.models.merchant import Merchant
from lumepay.schemas.intent import IntentCreate, IntentRead, PaymentRead, PaymentSubmit
from lumepay.services import intents as engine
from lumepay.services.verification import VerificationClient, get_verification_client
from lumepay.services.webhooks import WebhookDispatcher, get_dispatcher

router = APIRouter(tags=["Intents"])


@router.post("/intent/create")
def create_intent(
    payload: IntentCreate,
    caller=Depends(require_api_key),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    _, merchant = caller
    intent = engine.create_intent(
        db,
        merchant,
        payload.amount,
        payload.customer_email,
        payload.metadata,
        clock.now(),
    )
    return {"intent": IntentRead.from_intent(intent, engine.effective_status(intent, clock.now()))}


@router.get("/intent/{intent_id}")
def get_intent(
    intent_id: str,
    caller=Depends(optional_api_key),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    # No key: the customer-facing projection
    if caller is None:
        return {"intent": engine.get_intent_public(db, intent_id, clock.now())}

    _, merchant = caller
    return {"intent": engine.get_intent_for_merchant(db, merchant, intent_id, clock.now())}


@router.post("/intent/{intent_id}/pay")
def submit_payment(
    intent_id: str,
    payload: PaymentSubmit,
    caller=Depends(require_api_key),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    verifier: VerificationClient = Depends(get_verification_client),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    api_key, merchant = caller
    payment, details = engine.submit_payment(
        db,
        api_key,
        merchant,
        intent_id,
        payload.transaction_id,
        verifier,
        clock.now(),
        notify=dispatcher.enqueue,
    )
    return {
        "success": True,
        "payment": PaymentRead.model_validate(payment),
        "verificationDetails": details,
    }


@router.get("/intents")
def list_intents(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    rows, pagination = engine.list_intents(db, merchant, clock.now(), status=status, page=page, limit=limit)
    return {"intents": rows, "pagination": pagination}
