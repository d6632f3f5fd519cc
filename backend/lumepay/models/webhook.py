# lumepay/models/webhook.py
import uuid
import enum
from sqlalchemy import Column, String, ForeignKey, DateTime, Boolean, Integer, JSON
from sqlalchemy.orm import relationship
from lumepay.core.clock import utcnow
from lumepay.database import Base


class WebhookEvent(str, enum.Enum):
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_FAILED = "payment.failed"


ALL_EVENTS = [event.value for event in WebhookEvent]


class DeliveryStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class WebhookSettings(Base):
    __tablename__ = "webhook_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id = Column(String(36), ForeignKey("merchants.id"), unique=True, nullable=False)

    url = Column(String, nullable=True)
    secret = Column(String, nullable=True)  # rotated whenever url changes
    enabled = Column(Boolean, default=False, nullable=False)
    subscriptions = Column(JSON, default=lambda: list(ALL_EVENTS), nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    merchant = relationship("Merchant", back_populates="webhook_settings")


class WebhookDelivery(Base):
    """One row per delivery attempt. Rows are never updated."""

    __tablename__ = "webhook_deliveries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id = Column(String(36), ForeignKey("merchants.id"), index=True, nullable=False)
    # null for test deliveries
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=True)

    event = Column(String, nullable=False)
    status = Column(String, nullable=False)
    status_code = Column(Integer, nullable=True)
    error = Column(String, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    payment = relationship("Payment")
