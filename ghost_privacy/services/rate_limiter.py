"""
Per-origin fixed-window rate limiting backed by the session store.
"""

import hashlib
import time
from typing import Callable, Optional

from ..models.core import AdmitResult, RateLimitBucket
from ..utils.config import RateLimitConfig, config
from ..utils.logging_config import get_logger
from ..utils.session_store import SessionStore
from ..utils.timestamp_utils import align_to_window

logger = get_logger(__name__)

CREATE_SESSION_ACTION = 'create_session'


def hash_origin(raw_origin: str) -> str:
    """Hash a client address so buckets never hold the raw network identity."""
    return hashlib.sha256(raw_origin.encode('utf-8')).hexdigest()


class RateLimiter:
    """Admit or reject actions per origin within aligned windows.

    Windows start at ``floor(now / window) * window`` so every handler agrees
    on the current bucket without coordination. The increment is a single
    conditional upsert in the store; requests beyond the ceiling are rejected,
    never queued.
    """

    def __init__(self,
                 store: SessionStore,
                 rate_config: Optional[RateLimitConfig] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the rate limiter.

        Args:
            store: Backing row store
            rate_config: RateLimitConfig instance (uses config default if None)
            clock: Source of Unix time in seconds
        """
        self.store = store
        self.config = rate_config or config.rate_limit
        self.clock = clock
        self.window_seconds = self.config.window_minutes * 60

    def window_start(self, now: Optional[float] = None) -> int:
        return align_to_window(self.clock() if now is None else now, self.window_seconds)

    def admit(self, origin_id: str, action: str = CREATE_SESSION_ACTION) -> AdmitResult:
        """
        Count one action for an origin in the current window.

        Args:
            origin_id: Hashed origin identifier
            action: Action name, e.g. ``create_session``

        Returns:
            AdmitResult with the admission decision and the bucket count

        Raises:
            UnreachableError: If the store cannot be reached
            InternalFailureError: If the store update fails
        """
        bucket = RateLimitBucket(origin_id=origin_id, action=action, window_start=self.window_start(), count=0)
        allowed, count = self.store.increment_bucket(bucket, self.config.max_sessions)

        if not allowed:
            logger.warning(f'Rate limit exceeded for origin {origin_id[:8]}... action {action}')
        else:
            logger.debug(f'Admitted {action} for origin {origin_id[:8]}... ({count}/{self.config.max_sessions})')

        return AdmitResult(allowed=allowed, current_count=count)

    def prune(self, now: Optional[float] = None) -> int:
        """
        Remove buckets older than the retention window.

        Returns:
            Number of buckets deleted
        """
        now = self.clock() if now is None else now
        cutoff = now - self.config.retention_hours * 3600
        deleted_count = self.store.delete_buckets_before(cutoff)
        if deleted_count:
            logger.debug(f'Pruned {deleted_count} rate limit buckets')
        return deleted_count
