from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    # Naive UTC so values compare cleanly with what the DB hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    def now(self) -> datetime:
        return utcnow()


class FrozenClock(Clock):
    """A clock that only moves when told to. Used by tests."""

    def __init__(self, start: datetime | None = None):
        self.current = start or utcnow()

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


clock = Clock()


def get_clock() -> Clock:
    return clock
