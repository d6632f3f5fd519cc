import logging
from typing import Optional

from sqlalchemy.orm import Session

from lumepay.core.config import settings
from lumepay.core.errors import ApiKeyExists, InvalidInput, NotFound
from lumepay.core.security import generate_api_key
from lumepay.models.api_key import ApiKey
from lumepay.models.merchant import Merchant

logger = logging.getLogger(__name__)


def create_api_key(db: Session, merchant: Merchant, name: Optional[str] = None) -> ApiKey:
    # One key per merchant for now
    existing = db.query(ApiKey).filter(ApiKey.merchant_id == merchant.id).first()
    if existing:
        raise ApiKeyExists()

    api_key = ApiKey(
        name=name or "Default Key",
        key=generate_api_key(),
        merchant_id=merchant.id,
        remaining_credits=settings.DEFAULT_API_KEY_CREDITS,
        enabled=True,
        rate_limit_enabled=True,
        rate_limit_time_window=settings.DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
        rate_limit_max=settings.DEFAULT_RATE_LIMIT_MAX,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)

    logger.info("API key created", extra={"merchant_id": merchant.id, "api_key_id": api_key.id})
    return api_key


def list_api_keys(db: Session, merchant: Merchant) -> list[ApiKey]:
    return db.query(ApiKey).filter(ApiKey.merchant_id == merchant.id).order_by(ApiKey.created_at).all()


def get_api_key(db: Session, merchant: Merchant, key_id: str) -> ApiKey:
    api_key = db.query(ApiKey).filter(ApiKey.id == key_id, ApiKey.merchant_id == merchant.id).first()
    if not api_key:
        raise NotFound("API key not found")
    return api_key


def update_api_key(
    db: Session,
    merchant: Merchant,
    key_id: str,
    name: Optional[str] = None,
    enabled: Optional[bool] = None,
    rate_limit_enabled: Optional[bool] = None,
    rate_limit_max: Optional[int] = None,
) -> ApiKey:
    api_key = get_api_key(db, merchant, key_id)

    if name is not None:
        if not name.strip():
            raise InvalidInput("Name cannot be empty")
        api_key.name = name.strip()
    if enabled is not None:
        api_key.enabled = enabled
    if rate_limit_enabled is not None:
        api_key.rate_limit_enabled = rate_limit_enabled
    if rate_limit_max is not None:
        if rate_limit_max < 1:
            raise InvalidInput("rateLimitMax must be at least 1")
        api_key.rate_limit_max = rate_limit_max

    db.commit()
    db.refresh(api_key)
    return api_key


def delete_api_key(db: Session, merchant: Merchant, key_id: str) -> None:
    api_key = get_api_key(db, merchant, key_id)
    db.delete(api_key)
    db.commit()
    logger.info("API key deleted", extra={"merchant_id": merchant.id, "api_key_id": key_id})
