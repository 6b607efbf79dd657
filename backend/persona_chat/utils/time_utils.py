from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp."""

    return datetime.now(timezone.utc)


def epoch_millis() -> float:
    """Return wall-clock milliseconds, used as the live history ordering key."""

    return time.time() * 1000.0
