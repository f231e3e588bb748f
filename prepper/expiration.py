from datetime import date, datetime, time, timedelta, timezone
import math

SAFE = 'safe'
WARNING = 'warning'
DANGER = 'danger'
EXPIRED = 'expired'

DANGER_DAYS = 3
WARNING_DAYS = 7


def _as_datetime(value):
    # A bare date counts from midnight UTC of that day
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)
    return datetime.combine(value, time.min)


def days_until(expiration, now: datetime | None = None) -> int | None:
    """Whole days until expiration, rounded up; negative once it has passed."""
    if expiration is None:
        return None
    now = _as_datetime(now or datetime.utcnow())
    delta = _as_datetime(expiration) - now
    return math.ceil(delta / timedelta(days=1))


def expiration_status(expiration, now: datetime | None = None) -> str:
    days = days_until(expiration, now)
    if days is None:
        return SAFE
    if days < 0:
        return EXPIRED
    if days <= DANGER_DAYS:
        return DANGER
    if days <= WARNING_DAYS:
        return WARNING
    return SAFE


def window_end(now: datetime | None = None, days: int = WARNING_DAYS) -> date:
    """Last calendar date whose midnight falls within `days` of now."""
    now = _as_datetime(now or datetime.utcnow())
    return (now + timedelta(days=days)).date()
