"""
System settings and the waitlist flag cache.

The waitlist flag is read on every registration, so it is cached in
process for a few minutes. Serving a slightly stale value is fine.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from lumepay.core.clock import Clock, clock as default_clock
from lumepay.core.config import settings
from lumepay.database import SessionLocal
from lumepay.models.system_setting import SystemSetting

logger = logging.getLogger(__name__)

WAITLIST_KEY = "waitlist_enabled"
DEFAULT_WAITLIST_MESSAGE = "We are currently in private beta. Join our waitlist to get early access!"


@dataclass(frozen=True)
class WaitlistConfig:
    enabled: bool
    message: str


def get_setting(db: Session, key: str) -> Any:
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    return setting.value if setting else None


def set_setting(db: Session, key: str, value: Any, updated_by: Optional[str] = None, description: Optional[str] = None):
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if setting is None:
        setting = SystemSetting(key=key, description=description)
        db.add(setting)
    setting.value = value
    setting.updated_by = updated_by
    db.commit()
    return setting


def load_waitlist_config(db: Session) -> WaitlistConfig:
    value = get_setting(db, WAITLIST_KEY) or {}
    return WaitlistConfig(
        enabled=bool(value.get("enabled", False)),
        message=value.get("message") or DEFAULT_WAITLIST_MESSAGE,
    )


def _load_from_new_session() -> WaitlistConfig:
    db = SessionLocal()
    try:
        return load_waitlist_config(db)
    finally:
        db.close()


class SettingsCache:
    def __init__(
        self,
        loader: Callable[[], WaitlistConfig] = _load_from_new_session,
        ttl_seconds: int = settings.SETTINGS_CACHE_TTL_SECONDS,
        clock: Clock = default_clock,
    ):
        self.loader = loader
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._value: Optional[WaitlistConfig] = None
        self._fetched_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def get(self) -> WaitlistConfig:
        with self._lock:
            now = self.clock.now()
            if self._value is None or now - self._fetched_at >= self.ttl:
                self._value = self.loader()
                self._fetched_at = now
                logger.debug("Waitlist config refreshed", extra={"enabled": self._value.enabled})
            return self._value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._fetched_at = None


waitlist_cache = SettingsCache()


def get_waitlist_cache() -> SettingsCache:
    return waitlist_cache


def update_waitlist_config(db: Session, enabled: bool, message: str, updated_by: str, cache: SettingsCache) -> WaitlistConfig:
    set_setting(
        db,
        WAITLIST_KEY,
        {"enabled": enabled, "message": message},
        updated_by=updated_by,
        description="Controls whether the waitlist is enabled and its message",
    )
    cache.invalidate()
    logger.info("Waitlist config updated", extra={"enabled": enabled, "updated_by": updated_by})
    return WaitlistConfig(enabled=enabled, message=message)
