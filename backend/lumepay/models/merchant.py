import uuid
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from lumepay.core.clock import utcnow
from lumepay.database import Base


class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)

    # Must match the bank account holder name, the verifier checks it
    name = Column(String, nullable=True)

    # Receiving account, see services.bank for the accepted shapes
    bank_account = Column(String, nullable=True)
    bank_name = Column(String, nullable=True)

    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    api_keys = relationship("ApiKey", back_populates="merchant", cascade="all, delete-orphan")
    webhook_settings = relationship(
        "WebhookSettings", back_populates="merchant", uselist=False, cascade="all, delete-orphan"
    )
