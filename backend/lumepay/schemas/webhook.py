from datetime import datetime
from typing import List, Optional

from lumepay.schemas.intent import CamelModel


class WebhookConfigUpdate(CamelModel):
    url: Optional[str] = None
    enabled: Optional[bool] = None
    subscriptions: Optional[List[str]] = None


class WebhookSettingsRead(CamelModel):
    url: Optional[str] = None
    secret: Optional[str] = None
    enabled: bool
    subscriptions: List[str]


class DeliveryPayment(CamelModel):
    amount: float
    status: str
    transaction_id: str


class DeliveryRead(CamelModel):
    id: str
    payment_id: Optional[str] = None
    event: str
    status: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int
    created_at: datetime
    payment: Optional[DeliveryPayment] = None
