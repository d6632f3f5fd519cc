from datetime import datetime
from typing import Optional

from lumepay.schemas.intent import CamelModel


class ApiKeyCreate(CamelModel):
    name: Optional[str] = None


class ApiKeyUpdate(CamelModel):
    name: Optional[str] = None
    enabled: Optional[bool] = None
    rate_limit_enabled: Optional[bool] = None
    rate_limit_max: Optional[int] = None


class ApiKeyRead(CamelModel):
    """Key metadata. The secret value itself is only returned once."""

    id: str
    name: str
    remaining_credits: int
    enabled: bool
    rate_limit_enabled: bool
    rate_limit_time_window: int
    rate_limit_max: int
    last_used_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ApiKeyCreated(ApiKeyRead):
    key: str
