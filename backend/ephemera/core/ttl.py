import math
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from ephemera.core.errors import InvalidDuration
from ephemera.models.record import as_utc

DurationInput = Union[None, str, int, float, timedelta]

# Latest deadline we accept; leaves room for created_at landing after parsing
LATEST_EXPIRY = datetime.max.replace(tzinfo=timezone.utc) - timedelta(days=1)


def parse_self_destruct(value: DurationInput) -> Optional[timedelta]:
    """
    Normalize a self-destruct interval given in seconds.

    None or an empty string means the record never expires. Zero is a valid
    interval and expires the record right away.
    """
    if value is None:
        return None

    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, bool):
        raise InvalidDuration(f"Self-destruct time must be a number, got {value!r}")
    elif isinstance(value, (int, float)):
        try:
            seconds = float(value)
        except OverflowError:
            raise InvalidDuration(f"Self-destruct time is too far in the future, got {value!r}") from None
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            seconds = float(value)
        except ValueError:
            raise InvalidDuration(f"Self-destruct time must be a number, got {value!r}") from None
    else:
        raise InvalidDuration(f"Unsupported self-destruct time: {value!r}")

    if not math.isfinite(seconds):
        raise InvalidDuration(f"Self-destruct time must be finite, got {value!r}")
    if seconds < 0:
        raise InvalidDuration(f"Self-destruct time cannot be negative, got {value!r}")

    try:
        ttl = timedelta(seconds=seconds)
        too_far = datetime.now(timezone.utc) + ttl > LATEST_EXPIRY
    except OverflowError:
        too_far = True
    if too_far:
        raise InvalidDuration(f"Self-destruct time is too far in the future, got {value!r}")

    return ttl


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return as_utc(now) >= as_utc(expires_at)
