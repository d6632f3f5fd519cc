from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lumepay.database import get_db
from lumepay.deps import get_current_merchant
from lumepay.models.merchant import Merchant
from lumepay.schemas.webhook import DeliveryRead, WebhookConfigUpdate, WebhookSettingsRead
from lumepay.services import webhooks
from lumepay.services.webhooks import WebhookDispatcher, get_dispatcher

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.get("/config")
def get_config(
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    hook = webhooks.get_webhook_settings(db, merchant.id)
    if hook is None:
        return {"webhookSettings": webhooks.default_config()}
    return {"webhookSettings": WebhookSettingsRead.model_validate(hook)}


@router.post("/config")
def update_config(
    payload: WebhookConfigUpdate,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    hook = webhooks.update_webhook_config(db, merchant, payload.url, payload.enabled, payload.subscriptions)
    return {"webhookSettings": WebhookSettingsRead.model_validate(hook)}


@router.post("/test")
async def send_test(
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    delivery = await webhooks.send_test_webhook(db, merchant, dispatcher)
    if delivery is None:
        return {"message": "Test webhook skipped: payment.completed is not subscribed"}
    if delivery.status != "success":
        return {
            "message": "Test webhook failed",
            "delivery": DeliveryRead.model_validate(delivery),
        }
    return {
        "message": "Test webhook sent successfully",
        "delivery": DeliveryRead.model_validate(delivery),
    }


@router.get("/deliveries")
def get_deliveries(
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    deliveries = webhooks.list_deliveries(db, merchant)
    return {"deliveries": [DeliveryRead.model_validate(d) for d in deliveries]}


@router.post("/deliveries/{delivery_id}/retry")
def retry(
    delivery_id: str,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    webhooks.retry_delivery(db, merchant, delivery_id, dispatcher)
    return {"message": "Webhook retry initiated"}
