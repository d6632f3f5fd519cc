from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic.alias_generators import to_camel

from lumepay.models.intent import Intent


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class IntentCreate(CamelModel):
    amount: Optional[Decimal] = None
    customer_email: Optional[EmailStr] = None
    metadata: Optional[dict[str, Any]] = None


class PaymentSubmit(CamelModel):
    transaction_id: Optional[str] = None


class PaymentRead(CamelModel):
    id: str
    intent_id: str
    transaction_id: str
    amount: float
    status: str
    verification_data: Optional[dict[str, Any]] = None
    created_at: datetime


class IntentPublic(CamelModel):
    """What a paying customer may see."""

    id: str
    amount: float
    status: str
    customer_email: Optional[str] = None
    created_at: datetime
    expires_at: datetime


class IntentRead(IntentPublic):
    merchant_id: str
    metadata: Optional[dict[str, Any]] = None
    payment: Optional[PaymentRead] = None

    @classmethod
    def from_intent(cls, intent: Intent, status: str) -> "IntentRead":
        return cls(
            id=intent.id,
            merchant_id=intent.merchant_id,
            amount=float(intent.amount),
            status=status,
            customer_email=intent.customer_email,
            metadata=intent.metadata_,
            created_at=intent.created_at,
            expires_at=intent.expires_at,
            payment=PaymentRead.model_validate(intent.payment) if intent.payment else None,
        )


class IntentSummary(CamelModel):
    """Row of the merchant's intent listing."""

    id: str
    amount: float
    status: str
    customer_email: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime
    transaction_id: Optional[str] = None
    verification_data: Optional[dict[str, Any]] = None


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int
