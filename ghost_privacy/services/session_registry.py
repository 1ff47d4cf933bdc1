"""
Session Registry: TTL-backed lifecycle state machine for session existence.

States are Active (now < expiry), Expired (now >= expiry, row still present)
and Absent. Callers of ``validate`` only ever see a boolean, so Expired and
Absent are indistinguishable; the honeypot classifier uses ``get_record`` for
the finer split.
"""

import random
import threading
import time
from collections import deque
from typing import Callable, Optional

from ..models.core import CleanupResult, SessionRecord
from ..models.errors import InvalidFormatError, NotFoundError, RateLimitedError
from ..utils.config import SessionConfig, config
from ..utils.identifiers import is_valid_fingerprint, is_valid_session_id, redact_session_id
from ..utils.logging_config import get_logger
from ..utils.session_store import SessionStore
from .rate_limiter import CREATE_SESSION_ACTION, RateLimiter

logger = get_logger(__name__)

LATENCY_SAMPLE_SIZE = 64


class SessionRegistry:
    """Authoritative create / validate / extend / delete / sweep over the session store."""

    def __init__(self,
                 store: SessionStore,
                 rate_limiter: Optional[RateLimiter] = None,
                 session_config: Optional[SessionConfig] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the session registry.

        Args:
            store: Backing row store
            rate_limiter: RateLimiter gating creation (built over the same store if None)
            session_config: SessionConfig instance (uses config default if None)
            clock: Source of Unix time in seconds
            sleep: Blocking sleep used to pad fast rejections
        """
        self.store = store
        self.config = session_config or config.session
        self.clock = clock
        self.sleep = sleep
        self.rate_limiter = rate_limiter or RateLimiter(store, clock=clock)

        self._latency_lock = threading.Lock()
        self._lookup_latencies = deque(maxlen=LATENCY_SAMPLE_SIZE)

        logger.info('Initialized SessionRegistry')

    def create(self, session_id: str, host_fingerprint: str, origin_id: str) -> SessionRecord:
        """
        Register a new Active session with a fixed TTL.

        Args:
            session_id: Identifier in ``GHOST-XXXX-XXXX`` form
            host_fingerprint: Opaque creator fingerprint (8-128 chars)
            origin_id: Hashed origin identifier for rate limiting

        Returns:
            The stored SessionRecord

        Raises:
            InvalidFormatError: If the identifier or fingerprint is malformed, or the identifier is a honeytoken
            RateLimitedError: If the origin reached its creation ceiling
            ConflictError: If the identifier is already present, live or dead
        """
        if not is_valid_session_id(session_id):
            logger.error('Rejected session creation: invalid session ID format')
            raise InvalidFormatError('Invalid session identifier')

        if not is_valid_fingerprint(host_fingerprint):
            logger.error('Rejected session creation: invalid host fingerprint')
            raise InvalidFormatError('Invalid host fingerprint')

        admission = self.rate_limiter.admit(origin_id, CREATE_SESSION_ACTION)
        if not admission.allowed:
            raise RateLimitedError('Too many requests')

        now = self.clock()
        record = SessionRecord(session_id=session_id,
                               host_fingerprint=host_fingerprint,
                               created_at=now,
                               expires_at=now + self.config.ttl_minutes * 60)
        self.store.insert_session(record)

        logger.info(f'Created session {redact_session_id(session_id)}')
        return record

    def lookup_active(self, session_id: str) -> Optional[SessionRecord]:
        """
        Return the record only if it is Active.

        Malformed identifiers never reach the store; they are delayed by a
        latency drawn from recent real lookups so every rejection takes about
        as long as a store round trip.

        Args:
            session_id: Identifier to look up

        Returns:
            Active SessionRecord, or None for malformed, absent or expired identifiers
        """
        if not is_valid_session_id(session_id):
            self._pad_fast_reject()
            return None

        started = time.perf_counter()
        record = self.store.get_session(session_id)
        active = record if record is not None and record.is_active(self.clock()) else None
        self._record_latency(time.perf_counter() - started)
        return active

    def validate(self, session_id: str) -> bool:
        """True only for an Active session; Expired and Absent both yield False."""
        return self.lookup_active(session_id) is not None

    def get_record(self, session_id: str) -> Optional[SessionRecord]:
        """
        Raw read that keeps the Expired / Absent distinction.

        Raises:
            InvalidFormatError: If the identifier is malformed
        """
        if not is_valid_session_id(session_id):
            raise InvalidFormatError('Invalid session identifier')
        return self.store.get_session(session_id)

    def extend(self, session_id: str) -> float:
        """
        Reset an Active session's expiry to now + the extension period (a flat reset, not additive).

        Returns:
            New expiry as Unix seconds

        Raises:
            InvalidFormatError: If the identifier is malformed
            NotFoundError: If the session is absent or already expired
        """
        if not is_valid_session_id(session_id):
            logger.error('Rejected session extension: invalid session ID format')
            raise InvalidFormatError('Invalid session identifier')

        now = self.clock()
        expires_at = now + self.config.extend_minutes * 60
        if not self.store.extend_session(session_id, now, expires_at):
            logger.info(f'Extension refused for {redact_session_id(session_id)}: not found or expired')
            raise NotFoundError('Session not found')

        logger.info(f'Extended session {redact_session_id(session_id)}')
        return expires_at

    def delete(self, session_id: str) -> None:
        """
        Irreversibly remove a session. Idempotent: deleting an absent session succeeds.

        Raises:
            InvalidFormatError: If the identifier is malformed
        """
        if not is_valid_session_id(session_id):
            logger.error('Rejected session deletion: invalid session ID format')
            raise InvalidFormatError('Invalid session identifier')

        self.store.delete_session(session_id)
        logger.info(f'Deleted session {redact_session_id(session_id)}')

    def sweep(self, now: Optional[float] = None) -> CleanupResult:
        """
        Delete every expired session and prune stale rate-limit buckets.

        Returns:
            CleanupResult with the number of sessions and buckets removed
        """
        now = self.clock() if now is None else now
        deleted_sessions = self.store.delete_expired_sessions(now)
        logger.info(f'Deleted {deleted_sessions} expired sessions')

        deleted_buckets = 0
        try:
            deleted_buckets = self.rate_limiter.prune(now)
        except Exception as e:
            logger.warning(f'Rate limit cleanup warning: {e}')

        return CleanupResult(deleted_sessions=deleted_sessions, deleted_buckets=deleted_buckets)

    def _record_latency(self, seconds: float) -> None:
        with self._latency_lock:
            self._lookup_latencies.append(seconds)

    def _pad_fast_reject(self) -> None:
        with self._latency_lock:
            samples = list(self._lookup_latencies)
        if samples:
            delay = random.choice(samples)
        else:
            delay = self.config.validate_pad_ms / 1000.0
        self.sleep(delay)
