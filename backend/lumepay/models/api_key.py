import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from lumepay.core.clock import utcnow
from lumepay.database import Base


class ApiKey(Base):
    __tablename__ = "api_keys"
    __table_args__ = (
        CheckConstraint("remaining_credits >= 0", name="ck_api_keys_credits_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, default="Default Key", nullable=False)
    key = Column(String, unique=True, index=True, nullable=False)
    merchant_id = Column(String(36), ForeignKey("merchants.id"), index=True, nullable=False)

    remaining_credits = Column(Integer, default=0, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)

    rate_limit_enabled = Column(Boolean, default=True, nullable=False)
    rate_limit_time_window = Column(Integer, nullable=False)  # seconds
    rate_limit_max = Column(Integer, nullable=False)

    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    merchant = relationship("Merchant", back_populates="api_keys")
