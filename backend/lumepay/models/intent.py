# lumepay/models/intent.py
import uuid
import enum
from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, JSON
from sqlalchemy.orm import relationship
from lumepay.core.clock import utcnow
from lumepay.database import Base


class IntentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"   # advisory, never written by the engine
    COMPLETED = "completed"
    FAILED = "failed"           # also reported for pending intents past expires_at


class Intent(Base):
    __tablename__ = "intents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id = Column(String(36), ForeignKey("merchants.id"), index=True, nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    customer_email = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)

    status = Column(String, default=IntentStatus.PENDING.value, index=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    merchant = relationship("Merchant")
    payment = relationship("Payment", back_populates="intent", uselist=False)
