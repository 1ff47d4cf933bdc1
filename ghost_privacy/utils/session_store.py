"""
Row store interface for session records and rate-limit buckets, plus the in-process backend.

Every read-modify-write the services need is expressed here as a single
conditional operation so no handler ever does read-then-write.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Optional, Tuple

from ..models.core import RateLimitBucket, SessionRecord
from ..models.errors import ConflictError
from .logging_config import get_logger

logger = get_logger(__name__)


class SessionStore(ABC):
    """Opaque row store reached only through the session operations."""

    @abstractmethod
    def insert_session(self, record: SessionRecord) -> None:
        """Insert a record unless the identifier is already present.

        Raises:
            ConflictError: If any record (live or dead) holds the identifier
        """

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Return the raw record, expired or not, or None if absent."""

    @abstractmethod
    def extend_session(self, session_id: str, now: float, expires_at: float) -> bool:
        """Set ``expires_at`` only if the record exists and is still active at ``now``.

        Returns:
            True if the record was updated, False if it was absent or expired
        """

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        """Remove the record; a missing record is not an error."""

    @abstractmethod
    def delete_expired_sessions(self, now: float) -> int:
        """Remove every record with ``expires_at <= now`` and return how many went."""

    @abstractmethod
    def increment_bucket(self, bucket: RateLimitBucket, ceiling: int) -> Tuple[bool, int]:
        """Create the bucket at 1 or increment it while it is below ``ceiling``.

        Args:
            bucket: Bucket identity (origin, action, window start); ``count`` is ignored
            ceiling: Maximum count allowed in the window

        Returns:
            Tuple of (allowed, count after the operation)
        """

    @abstractmethod
    def delete_buckets_before(self, cutoff: float) -> int:
        """Remove buckets whose window started before ``cutoff``."""

    def health_check(self) -> bool:
        return True


class InMemorySessionStore(SessionStore):
    """Process-local backend for development and tests.

    Each conditional write runs under one lock, which is this backend's atomic
    primitive; it is not shared across processes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, SessionRecord] = {}
        self._buckets: Dict[str, RateLimitBucket] = {}
        logger.info('Initialized in-memory session store')

    def insert_session(self, record: SessionRecord) -> None:
        with self._lock:
            if record.session_id in self._sessions:
                raise ConflictError('Session identifier already present')
            self._sessions[record.session_id] = replace(record)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._sessions.get(session_id)
            return replace(record) if record else None

    def extend_session(self, session_id: str, now: float, expires_at: float) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or not record.is_active(now):
                return False
            record.expires_at = expires_at
            return True

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def delete_expired_sessions(self, now: float) -> int:
        with self._lock:
            expired = [sid for sid, record in self._sessions.items() if record.expires_at <= now]
            for sid in expired:
                del self._sessions[sid]
            return len(expired)

    def increment_bucket(self, bucket: RateLimitBucket, ceiling: int) -> Tuple[bool, int]:
        with self._lock:
            current = self._buckets.get(bucket.key)
            if current is None:
                self._buckets[bucket.key] = replace(bucket, count=1)
                return True, 1
            if current.count >= ceiling:
                return False, current.count
            current.count += 1
            return True, current.count

    def delete_buckets_before(self, cutoff: float) -> int:
        with self._lock:
            stale = [key for key, bucket in self._buckets.items() if bucket.window_start < cutoff]
            for key in stale:
                del self._buckets[key]
            return len(stale)

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)


def create_session_store(backend: Optional[str] = None) -> SessionStore:
    """Build the configured store backend.

    Args:
        backend: ``memory`` or ``dynamodb`` (uses config default if None)

    Returns:
        SessionStore instance

    Raises:
        ValueError: If the backend name is unknown
    """
    from .config import config

    backend = (backend or config.store.backend).lower()
    if backend == 'memory':
        return InMemorySessionStore()
    if backend == 'dynamodb':
        from .dynamodb_client import DynamoDBSessionStore
        return DynamoDBSessionStore(config.dynamodb)
    raise ValueError(f'Unknown session store backend: {backend}')
