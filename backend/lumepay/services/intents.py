"""
Intent/payment engine.

Intents move one way: ``pending`` to ``completed`` when the verifier
confirms a transfer, or to ``failed`` once ``expires_at`` has passed.
Expiry is evaluated lazily whenever an intent is read or written.

Payment submission verifies synchronously and then finalizes in a
single DB transaction: the intent is claimed with a conditional update,
the completed payment is inserted (the partial unique index on
``transaction_id`` is the anti-replay guard) and one credit is taken
from the calling key. If any step fails nothing is written.

Billing: only verified payments consume credits. Creating an intent is
free once the key passes the gate.
"""
import logging
import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from lumepay.core.config import settings
from lumepay.core.errors import (
    GatewayError,
    Forbidden,
    InvalidAmount,
    MissingTransactionId,
    DuplicateTransaction,
    IntentNotFound,
    IntentNotPending,
    IntentExpired,
    InsufficientCredits,
    UpstreamFailure,
    VerificationFailed,
)
from lumepay.models.api_key import ApiKey
from lumepay.models.intent import Intent, IntentStatus
from lumepay.models.merchant import Merchant
from lumepay.models.payment import Payment, PaymentStatus
from lumepay.schemas.intent import IntentPublic, IntentRead, IntentSummary, Pagination
from lumepay.services.bank import CBE, require_bank_settings
from lumepay.services.verification import VerificationClient, VerificationRequest

logger = logging.getLogger(__name__)

# Called with (merchant_id, payment_id) once a payment is committed
PaymentNotifier = Callable[[str, str], None]

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("1e10")


def intent_ttl() -> timedelta:
    return timedelta(minutes=settings.INTENT_TTL_MINUTES)


def is_expired(intent: Intent, now: datetime) -> bool:
    return intent.status == IntentStatus.PENDING.value and intent.expires_at < now


def effective_status(intent: Intent, now: datetime) -> str:
    if is_expired(intent, now):
        return IntentStatus.FAILED.value
    return intent.status


def _parse_amount(amount: Any) -> Decimal:
    if amount is None or isinstance(amount, bool):
        raise InvalidAmount()
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmount()
    if not value.is_finite() or value >= MAX_AMOUNT:
        raise InvalidAmount()
    # Stored as NUMERIC(12, 2)
    value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if value <= 0 or value >= MAX_AMOUNT:
        raise InvalidAmount()
    return value


# --- Create ---

def create_intent(
    db: Session,
    merchant: Merchant,
    amount: Any,
    customer_email: Optional[str],
    metadata: Optional[dict],
    now: datetime,
) -> Intent:
    require_bank_settings(merchant)
    value = _parse_amount(amount)

    intent = Intent(
        merchant_id=merchant.id,
        amount=value,
        customer_email=customer_email,
        metadata_=metadata,
        status=IntentStatus.PENDING.value,
        created_at=now,
        expires_at=now + intent_ttl(),
    )
    db.add(intent)
    db.commit()
    db.refresh(intent)

    logger.info(
        "Intent created",
        extra={"intent_id": intent.id, "merchant_id": merchant.id, "amount": str(value)},
    )
    return intent


# --- Submit payment ---

def _check_preconditions(
    db: Session,
    merchant: Merchant,
    intent_id: str,
    transaction_id: Optional[str],
    now: datetime,
) -> tuple[Intent, CBE, str]:
    transaction_id = (transaction_id or "").strip()
    if not transaction_id:
        raise MissingTransactionId()

    used = (
        db.query(Payment.id)
        .filter(
            Payment.transaction_id == transaction_id,
            Payment.status == PaymentStatus.COMPLETED.value,
        )
        .first()
    )
    if used:
        raise DuplicateTransaction()

    intent = db.query(Intent).filter(Intent.id == intent_id).first()
    if not intent:
        raise IntentNotFound()

    if intent.merchant_id != merchant.id:
        raise Forbidden()

    if intent.status != IntentStatus.PENDING.value:
        raise IntentNotPending()

    if intent.expires_at < now:
        raise IntentExpired()

    return intent, require_bank_settings(merchant), transaction_id


def _verified_amount(details: dict) -> Decimal:
    try:
        value = Decimal(str(details.get("amount")))
    except (InvalidOperation, ValueError):
        raise UpstreamFailure("Verification service returned an invalid amount")
    if not value.is_finite():
        raise UpstreamFailure("Verification service returned an invalid amount")
    return value


def _finalize(
    db: Session,
    api_key: ApiKey,
    intent: Intent,
    transaction_id: str,
    details: dict,
    now: datetime,
) -> Payment:
    try:
        claimed = (
            db.query(Intent)
            .filter(Intent.id == intent.id, Intent.status == IntentStatus.PENDING.value)
            .update({Intent.status: IntentStatus.COMPLETED.value}, synchronize_session=False)
        )
        if claimed != 1:
            raise IntentNotPending()

        payment = Payment(
            merchant_id=intent.merchant_id,
            intent_id=intent.id,
            transaction_id=transaction_id,
            amount=_verified_amount(details),
            status=PaymentStatus.COMPLETED.value,
            verification_data={
                "payer": details.get("payer"),
                "amount": details.get("amount"),
                "date": details.get("date"),
                "receiver": details.get("receiver"),
            },
            created_at=now,
        )
        db.add(payment)
        db.flush()

        charged = (
            db.query(ApiKey)
            .filter(ApiKey.id == api_key.id, ApiKey.remaining_credits > 0)
            .update(
                {
                    ApiKey.remaining_credits: ApiKey.remaining_credits - 1,
                    ApiKey.last_used_at: now,
                },
                synchronize_session=False,
            )
        )
        if charged != 1:
            raise InsufficientCredits()

        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateTransaction()
    except GatewayError:
        db.rollback()
        raise

    db.refresh(payment)
    return payment


def submit_payment(
    db: Session,
    api_key: ApiKey,
    merchant: Merchant,
    intent_id: str,
    transaction_id: Optional[str],
    verifier: VerificationClient,
    now: datetime,
    notify: Optional[PaymentNotifier] = None,
) -> tuple[Payment, dict]:
    intent, bank, transaction_id = _check_preconditions(db, merchant, intent_id, transaction_id, now)

    result = verifier.verify(
        VerificationRequest(
            transaction_id=transaction_id,
            expected_receiver_name=merchant.name,
            expected_receiver_account=bank.account,
            expected_amount=intent.amount,
            intent_created_at=intent.created_at,
        )
    )

    if not result.success:
        logger.info(
            "Payment verification failed",
            extra={"intent_id": intent.id, "transaction_id": transaction_id, "reason": result.message},
        )
        raise VerificationFailed(result.message or None)

    details = result.details.model_dump()
    payment = _finalize(db, api_key, intent, transaction_id, details, now)

    logger.info(
        "Payment completed",
        extra={
            "intent_id": intent.id,
            "payment_id": payment.id,
            "merchant_id": merchant.id,
            "amount": str(payment.amount),
        },
    )

    if notify is not None:
        try:
            notify(merchant.id, payment.id)
        except Exception:
            # The payment is committed; a notification problem must not undo the response
            logger.exception("Could not hand payment to webhook dispatcher", extra={"payment_id": payment.id})

    return payment, details


# --- Reads ---

def get_intent_public(db: Session, intent_id: str, now: datetime) -> IntentPublic:
    intent = db.query(Intent).filter(Intent.id == intent_id).first()
    if not intent:
        raise IntentNotFound()

    return IntentPublic(
        id=intent.id,
        amount=float(intent.amount),
        status=effective_status(intent, now),
        customer_email=intent.customer_email,
        created_at=intent.created_at,
        expires_at=intent.expires_at,
    )


def get_intent_for_merchant(db: Session, merchant: Merchant, intent_id: str, now: datetime) -> IntentRead:
    intent = (
        db.query(Intent)
        .options(joinedload(Intent.payment))
        .filter(Intent.id == intent_id)
        .first()
    )
    if not intent:
        raise IntentNotFound()

    if intent.merchant_id != merchant.id:
        raise Forbidden()

    return IntentRead.from_intent(intent, effective_status(intent, now))


def list_intents(
    db: Session,
    merchant: Merchant,
    now: datetime,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[IntentSummary], Pagination]:
    query = db.query(Intent).filter(Intent.merchant_id == merchant.id)

    # Expired intents are stored as pending, so the status filter has to match what we report
    if status == IntentStatus.PENDING.value:
        query = query.filter(Intent.status == IntentStatus.PENDING.value, Intent.expires_at >= now)
    elif status == IntentStatus.FAILED.value:
        query = query.filter(
            (Intent.status == IntentStatus.FAILED.value)
            | ((Intent.status == IntentStatus.PENDING.value) & (Intent.expires_at < now))
        )
    elif status:
        query = query.filter(Intent.status == status)

    total = query.count()
    intents = (
        query.options(joinedload(Intent.payment))
        .order_by(Intent.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    rows = [
        IntentSummary(
            id=intent.id,
            amount=float(intent.amount),
            status=effective_status(intent, now),
            customer_email=intent.customer_email,
            metadata=intent.metadata_,
            created_at=intent.created_at,
            transaction_id=intent.payment.transaction_id if intent.payment else None,
            verification_data=intent.payment.verification_data if intent.payment else None,
        )
        for intent in intents
    ]
    pagination = Pagination(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit))
    return rows, pagination
