"""
Scheduled sweep of expired sessions and stale rate-limit buckets.
"""

import threading
from typing import Optional

from ..models.core import CleanupResult
from ..models.errors import GhostSessionError
from ..utils.config import CleanupConfig, config
from ..utils.logging_config import get_logger
from .session_registry import SessionRegistry

logger = get_logger(__name__)


class SweepScheduler:
    """Run ``SessionRegistry.sweep`` on a fixed interval in a daemon thread."""

    def __init__(self, registry: SessionRegistry, cleanup_config: Optional[CleanupConfig] = None):
        """
        Initialize the sweep scheduler.

        Args:
            registry: SessionRegistry to sweep
            cleanup_config: CleanupConfig instance (uses config default if None)
        """
        self.registry = registry
        self.config = cleanup_config or config.cleanup
        self.interval_seconds = self.config.interval_minutes * 60
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='session-sweep', daemon=True)
        self._thread.start()
        logger.info(f'Started session sweep every {self.config.interval_minutes} minutes')

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info('Stopped session sweep')

    def run_once(self) -> Optional[CleanupResult]:
        """Sweep once; a failing sweep is logged and retried on the next tick."""
        try:
            return self.registry.sweep()
        except GhostSessionError as e:
            logger.error(f'Scheduled sweep failed: {e}')
            return None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
