"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_millis(moment: datetime | None = None) -> int:
    """Milliseconds since the epoch for `moment` (defaults to now)."""
    return int((moment or utc_now()).timestamp() * 1000)
