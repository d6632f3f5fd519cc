"""
API-key gate.

Every intent/payment call authenticates here first. The gate checks, in
order: key present, key known, key enabled, credits left, and the
merchant's trailing-window rate limit. It stamps ``last_used_at`` but
never deducts credits; the engine does that only for billable outcomes.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from lumepay.core.errors import Unauthenticated, KeyDisabled, InsufficientCredits, RateLimited
from lumepay.models.api_key import ApiKey
from lumepay.models.merchant import Merchant
from lumepay.models.payment import Payment

logger = logging.getLogger(__name__)


def count_recent_payments(db: Session, merchant_id: str, window_seconds: int, now: datetime) -> int:
    """Payments created by the merchant within the trailing window."""
    window_start = now - timedelta(seconds=window_seconds)
    return (
        db.query(func.count(Payment.id))
        .filter(Payment.merchant_id == merchant_id, Payment.created_at >= window_start)
        .scalar()
    )


def check_rate_limit(db: Session, key: ApiKey, now: datetime) -> None:
    if not key.rate_limit_enabled:
        return

    usage = count_recent_payments(db, key.merchant_id, key.rate_limit_time_window, now)
    if usage >= key.rate_limit_max:
        logger.info(
            "Rate limit exceeded",
            extra={"merchant_id": key.merchant_id, "usage": usage, "limit": key.rate_limit_max},
        )
        raise RateLimited()


def authenticate(db: Session, key_value: str | None, now: datetime) -> tuple[ApiKey, Merchant]:
    if not key_value:
        raise Unauthenticated("API key is required")

    key = db.query(ApiKey).filter(ApiKey.key == key_value).first()
    if not key:
        raise Unauthenticated("Invalid API key")

    if not key.enabled:
        raise KeyDisabled()

    if key.remaining_credits <= 0:
        raise InsufficientCredits()

    check_rate_limit(db, key, now)

    key.last_used_at = now
    db.commit()
    db.refresh(key)

    return key, key.merchant


def identify(db: Session, key_value: str | None) -> tuple[ApiKey, Merchant]:
    """Resolve a key for read-only calls: no credit or rate-limit checks."""
    if not key_value:
        raise Unauthenticated("API key is required")

    key = db.query(ApiKey).filter(ApiKey.key == key_value).first()
    if not key:
        raise Unauthenticated("Invalid API key")

    if not key.enabled:
        raise KeyDisabled()

    return key, key.merchant
