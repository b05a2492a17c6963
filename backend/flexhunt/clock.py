"""Injectable wall clock.

Routes receive the clock as a dependency so tests can move time forward
(escrow maturity, dispute windows, assessment windows).
"""

from datetime import datetime, timezone
from typing import Annotated, Callable

from dateutil.parser import isoparse
from fastapi import Depends


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | str) -> datetime:
    """Timezone-aware UTC datetime from a store value.

    Accepts ISO strings as PostgREST returns them; timestamps without an
    offset are UTC.
    """
    dt = isoparse(value) if isinstance(value, str) else value
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_clock() -> Callable[[], datetime]:
    """FastAPI dependency returning the clock function."""
    return utcnow


Clock = Annotated[Callable[[], datetime], Depends(get_clock)]
