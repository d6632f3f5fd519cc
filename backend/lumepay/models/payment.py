# lumepay/models/payment.py
import uuid
import enum
from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, JSON, Index, text
from sqlalchemy.orm import relationship
from lumepay.core.clock import utcnow
from lumepay.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # A bank transaction may fund at most one completed payment
        Index(
            "uq_payments_completed_transaction_id",
            "transaction_id",
            unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
        Index("ix_payments_merchant_created", "merchant_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id = Column(String(36), ForeignKey("merchants.id"), nullable=False)
    intent_id = Column(String(36), ForeignKey("intents.id"), unique=True, nullable=False)

    transaction_id = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, default=PaymentStatus.PENDING.value, nullable=False)

    # Echo of the verifier's details: payer, amount, date, receiver
    verification_data = Column(JSON, nullable=True)
    error_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    intent = relationship("Intent", back_populates="payment")
