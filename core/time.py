# PATH: core/time.py
"""
Time utilities for CYCLEARB.

Millisecond clocks used by the quote cache and the scan loop.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return now_utc().isoformat()


def now_ms() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def now_seconds() -> int:
    """Get current Unix timestamp in whole seconds."""
    return int(time.time())


def is_fresh(
    timestamp_ms: int,
    max_age_ms: int,
    current_ms: Optional[int] = None,
) -> bool:
    """
    Check if a millisecond timestamp is within max_age_ms of now.

    An age exactly equal to max_age_ms counts as stale.
    """
    current = now_ms() if current_ms is None else current_ms
    return (current - timestamp_ms) < max_age_ms
