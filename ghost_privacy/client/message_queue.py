"""
Ephemeral Message Store: per-session message buffers held only in process memory.

Nothing here touches files, databases or caches. Message content is blanked
before a message is released, whether by eviction, session teardown or a
full purge.
"""

import asyncio
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Set

from ..models.core import MemoryStats, QueuedMessage
from ..utils.config import MessageQueueConfig, config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_ms
from .timestamps import TimestampDecorrelator, get_default_decorrelator

logger = get_logger(__name__)

# Rough per-message overhead added to the content estimate
MESSAGE_OVERHEAD_BYTES = 200


@dataclass
class _AckWaiter:
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    session_id: Optional[str]
    timer: Optional[asyncio.TimerHandle] = None


def _settle(waiter: _AckWaiter, acknowledged: bool) -> None:
    """Runs on the waiter's loop."""
    if waiter.timer is not None:
        waiter.timer.cancel()
    if not waiter.future.done():
        waiter.future.set_result(acknowledged)


class EphemeralMessageQueue:
    """Bounded FIFO buffer per session with delivery acknowledgment and destructive teardown."""

    def __init__(self,
                 mq_config: Optional[MessageQueueConfig] = None,
                 clock: Callable[[], int] = now_ms,
                 decorrelator: Optional[TimestampDecorrelator] = None):
        """
        Initialize the message queue.

        Args:
            mq_config: MessageQueueConfig instance (uses config default if None)
            clock: Source of Unix time in milliseconds
            decorrelator: Maps real send times to display times (process-wide default if None)
        """
        self.config = mq_config or config.message_queue
        self.max_messages_per_session = self.config.max_messages_per_session
        self.clock = clock
        self.decorrelator = decorrelator or get_default_decorrelator()

        self._lock = threading.Lock()
        self._sessions: Dict[str, 'OrderedDict[str, QueuedMessage]'] = {}
        self._acknowledged: Dict[str, Set[str]] = {}
        self._waiters: Dict[str, _AckWaiter] = {}
        self._destroyed = False

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def add(self, session_id: str, message: QueuedMessage) -> bool:
        """
        Append a message to a session buffer.

        At capacity the single oldest message is scrubbed and evicted first.

        Args:
            session_id: Owning session
            message: Message to store; ``timestamp`` holds the real send time and is
                replaced by its display time, ``received_at`` and ``acknowledged`` are reset

        Returns:
            True if stored, False if the queue is destroyed or the id is a duplicate
        """
        with self._lock:
            if self._destroyed:
                return False

            buffer = self._sessions.setdefault(session_id, OrderedDict())
            if message.id in buffer:
                return False

            if len(buffer) >= self.max_messages_per_session:
                evicted_id, evicted = buffer.popitem(last=False)
                evicted.scrub()
                self._acknowledged.get(session_id, set()).discard(evicted_id)

            message.timestamp = self.decorrelator.transform(message.timestamp)
            message.received_at = self.clock()
            message.acknowledged = False
            buffer[message.id] = message
            return True

    def get_messages(self, session_id: str) -> List[QueuedMessage]:
        """Messages of a session in arrival order; empty once the queue is destroyed."""
        with self._lock:
            if self._destroyed:
                return []
            return list(self._sessions.get(session_id, {}).values())

    def acknowledge(self, session_id: str, message_id: str) -> None:
        """Mark a message delivered and resolve its pending waiter, if any."""
        with self._lock:
            if self._destroyed:
                return
            message = self._sessions.get(session_id, {}).get(message_id)
            waiter = self._waiters.get(message_id)
            if waiter is not None and waiter.session_id not in (None, session_id):
                waiter = None
            if message is None and waiter is None:
                return

            if message is not None:
                message.acknowledged = True
            self._acknowledged.setdefault(session_id, set()).add(message_id)
            if waiter is not None:
                del self._waiters[message_id]
                waiter.session_id = session_id

        if waiter is not None:
            waiter.loop.call_soon_threadsafe(_settle, waiter, True)

    def wait_for_ack(self,
                     message_id: str,
                     timeout_ms: Optional[int] = None,
                     session_id: Optional[str] = None) -> asyncio.Future:
        """
        Wait for a message to be acknowledged.

        Must be called from a running event loop. Resolves True on
        acknowledgment (immediately when it already happened) and False on
        timeout or teardown. A second wait on a pending id shares the first
        future.

        Args:
            message_id: Message to wait for
            timeout_ms: Timeout in milliseconds (uses config default if None)
            session_id: Owning session, so its teardown settles this waiter

        Returns:
            Future resolving to a bool
        """
        loop = asyncio.get_running_loop()
        timeout_ms = self.config.ack_timeout_ms if timeout_ms is None else timeout_ms

        with self._lock:
            pending = self._waiters.get(message_id)
            if pending is not None:
                return pending.future

            future = loop.create_future()
            if self._destroyed:
                future.set_result(False)
                return future

            if session_id is None:
                session_id = next((sid for sid, buffer in self._sessions.items() if message_id in buffer), None)

            if message_id in self._acknowledged.get(session_id, ()):
                future.set_result(True)
                return future

            waiter = _AckWaiter(future=future, loop=loop, session_id=session_id)
            waiter.timer = loop.call_later(timeout_ms / 1000.0, self._expire, message_id, waiter)
            self._waiters[message_id] = waiter
            return future

    def _expire(self, message_id: str, waiter: _AckWaiter) -> None:
        with self._lock:
            if self._waiters.get(message_id) is waiter:
                del self._waiters[message_id]
            # An acknowledgment may have popped the waiter with its settle still queued
            acknowledged = message_id in self._acknowledged.get(waiter.session_id, ())
        if not waiter.future.done():
            waiter.future.set_result(acknowledged)

    def get_memory_stats(self, session_id: str) -> MemoryStats:
        """Estimate memory held by a session: two bytes per content character plus fixed overhead."""
        with self._lock:
            messages = list(self._sessions.get(session_id, {}).values())
        estimated_bytes = sum(len(message.content or '') * 2 + MESSAGE_OVERHEAD_BYTES for message in messages)
        return MemoryStats(message_count=len(messages), estimated_bytes=estimated_bytes)

    def destroy_session(self, session_id: str) -> None:
        """Scrub and drop every message of one session and fail its pending waiters."""
        with self._lock:
            buffer = self._sessions.pop(session_id, None)
            scrubbed = self._scrub_buffer(buffer)
            self._acknowledged.pop(session_id, None)

            owned = [message_id for message_id, waiter in self._waiters.items() if waiter.session_id == session_id]
            waiters = [self._waiters.pop(message_id) for message_id in owned]

        for waiter in waiters:
            waiter.loop.call_soon_threadsafe(_settle, waiter, False)
        logger.info(f'Destroyed session buffer ({scrubbed} messages scrubbed)')

    def nuclear_purge(self) -> None:
        """Scrub every session, fail every waiter and make the queue permanently unusable."""
        with self._lock:
            scrubbed = sum(self._scrub_buffer(buffer) for buffer in self._sessions.values())
            self._sessions.clear()
            self._acknowledged.clear()
            waiters = list(self._waiters.values())
            self._waiters.clear()
            self._destroyed = True

        for waiter in waiters:
            waiter.loop.call_soon_threadsafe(_settle, waiter, False)
        logger.info(f'Message queue purged ({scrubbed} messages scrubbed)')

    @staticmethod
    def _scrub_buffer(buffer: Optional['OrderedDict[str, QueuedMessage]']) -> int:
        if not buffer:
            return 0
        count = len(buffer)
        for message in buffer.values():
            message.scrub()
        buffer.clear()
        return count


class MessageQueueProvider:
    """Owns the application's queue: built on first use, rebuilt after a purge."""

    def __init__(self,
                 mq_config: Optional[MessageQueueConfig] = None,
                 decorrelator: Optional[TimestampDecorrelator] = None):
        self.config = mq_config
        self.decorrelator = decorrelator
        self._queue: Optional[EphemeralMessageQueue] = None
        self._lock = threading.Lock()

    def acquire(self) -> EphemeralMessageQueue:
        with self._lock:
            if self._queue is None or self._queue.is_destroyed:
                self._queue = EphemeralMessageQueue(self.config, decorrelator=self.decorrelator)
            return self._queue

    def release(self) -> None:
        """Purge the current queue, if any; the next ``acquire`` builds a fresh one."""
        with self._lock:
            queue, self._queue = self._queue, None
        if queue is not None:
            queue.nuclear_purge()


@contextmanager
def ephemeral_message_queue(mq_config: Optional[MessageQueueConfig] = None,
                            decorrelator: Optional[TimestampDecorrelator] = None) -> Iterator[EphemeralMessageQueue]:
    """Yield a queue that is purged on exit, including on error."""
    queue = EphemeralMessageQueue(mq_config, decorrelator=decorrelator)
    try:
        yield queue
    finally:
        queue.nuclear_purge()
