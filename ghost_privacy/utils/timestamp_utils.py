"""
Timestamp utilities for consistent time handling across the system.
"""

import math
import time
from datetime import datetime, timezone
from typing import Optional


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def to_iso_string(timestamp: Optional[float] = None) -> str:
    """Convert a Unix timestamp to an ISO-8601 UTC string with millisecond precision.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        String such as ``2024-05-01T12:30:00.000Z``
    """
    if timestamp is None:
        timestamp = time.time()
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def align_to_window(timestamp: float, window_seconds: int) -> int:
    """Floor a timestamp to the start of its fixed-size window.

    Args:
        timestamp: Unix timestamp in seconds
        window_seconds: Window size in seconds

    Returns:
        Window start as integer Unix seconds
    """
    return int(math.floor(timestamp / window_seconds) * window_seconds)
