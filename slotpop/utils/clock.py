from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from ..config import settings

def utcnow() -> datetime:
    """Naive UTC now; every DateTime column in the schema stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _delivery_tz() -> tzinfo:
    name = settings.DELIVERY_TIMEZONE
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)

def to_local(dt: datetime) -> datetime:
    """Convert a stored naive-UTC instant into the delivery timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(_delivery_tz())

def is_weekend(dt: datetime) -> bool:
    # Monday == 0 ... Saturday == 5, Sunday == 6
    return to_local(dt).weekday() >= 5
