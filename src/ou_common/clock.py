"""Wall clock used by the engine and the scheduler.

Both take a Clock so tests can pin "now"; production uses utc_now.
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)
