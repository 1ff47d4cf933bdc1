"""
Core data models for ephemeral sessions, rate limiting and message buffering.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TrapType(str, Enum):
    """Honeypot classification outcome."""
    EXPLICIT_TRAP = 'explicit_trap'
    DEAD_SESSION = 'dead_session'
    NONE = 'none'


class TimestampMode(str, Enum):
    """Direction of the display-time offset."""
    RANDOM = 'random'  # symmetric, [-window, +window]
    DELAYED = 'delayed'  # shifted earlier, [-window, 0]
    ADVANCED = 'advanced'  # shifted later, [0, +window]


@dataclass
class SessionRecord:
    """Server-side record of a live or dead session.

    A record whose ``expires_at`` has passed is dead even while it is still
    physically present in the store.
    """
    session_id: str
    host_fingerprint: str
    created_at: float  # Unix seconds
    expires_at: float  # Unix seconds

    def is_active(self, now: float) -> bool:
        return now < self.expires_at


@dataclass
class RateLimitBucket:
    """Per-origin counter for one action inside one aligned window."""
    origin_id: str  # hashed, never the raw client address
    action: str
    window_start: int  # Unix seconds, aligned to the window size
    count: int

    @property
    def key(self) -> str:
        return f'{self.origin_id}#{self.action}#{self.window_start}'


@dataclass
class AdmitResult:
    allowed: bool
    current_count: int


@dataclass
class ClassificationResult:
    is_trap: bool
    trap_type: TrapType


@dataclass
class HoneypotAlert:
    """Warning delivered to the creator of a dead session that was probed."""
    message: str
    timestamp: str
    accessor_fingerprint: str = 'unknown'

    def to_payload(self) -> dict:
        return {
            'message': self.message,
            'timestamp': self.timestamp,
            'accessorFingerprint': self.accessor_fingerprint,
        }


@dataclass
class CleanupResult:
    deleted_sessions: int
    deleted_buckets: int


@dataclass
class QueuedMessage:
    """A message held in client memory for the lifetime of one session.

    Never serialized to any durable medium. ``content`` and ``file_name`` are
    blanked before the record is released.
    """
    id: str
    content: str
    sender: str  # 'me' or 'partner'
    type: str  # text, file, system, voice, video
    timestamp: int  # display time, Unix ms
    received_at: int = 0
    acknowledged: bool = False
    file_name: Optional[str] = None

    def scrub(self) -> None:
        self.content = ''
        self.file_name = None


@dataclass
class MemoryStats:
    message_count: int
    estimated_bytes: int


@dataclass
class TimestampConfig:
    """Process-wide decorrelation settings."""
    enabled: bool = False
    window_minutes: int = 120
    mode: TimestampMode = TimestampMode.RANDOM


@dataclass
class JoinResult:
    """Outcome of a client attempt to join a session."""
    joined: bool
    session_id: str
    trap_type: Optional[TrapType] = None
    error: Optional[str] = None

    @property
    def is_honeypot(self) -> bool:
        return self.trap_type is not None and self.trap_type != TrapType.NONE
