"""
Timestamp decorrelation: displayed message times are offset from real send times
so message metadata cannot be lined up against network captures.
"""

import secrets
import threading
from dataclasses import replace
from datetime import datetime, timezone, tzinfo
from typing import List, Optional

from ..models.core import TimestampConfig, TimestampMode
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_ms

logger = get_logger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

# Spacing between consecutive real send times in a generated history
BATCH_MIN_STEP_MS = MINUTE_MS
BATCH_MAX_STEP_MS = 5 * MINUTE_MS


class TimestampDecorrelator:
    """Map real send times to display times according to a mutable TimestampConfig."""

    def __init__(self, ts_config: Optional[TimestampConfig] = None, rng: Optional[secrets.SystemRandom] = None):
        """
        Initialize the decorrelator.

        Args:
            ts_config: Initial settings (disabled, 120 minutes, random if None)
            rng: Random source (uses the OS CSPRNG if None)
        """
        self._config = replace(ts_config) if ts_config else TimestampConfig()
        self._rng = rng or secrets.SystemRandom()
        self._lock = threading.Lock()

    def get_config(self) -> TimestampConfig:
        with self._lock:
            return replace(self._config)

    def set_config(self,
                   enabled: Optional[bool] = None,
                   window_minutes: Optional[int] = None,
                   mode: Optional[str] = None) -> TimestampConfig:
        """
        Update any subset of the settings; unspecified fields keep their value.

        Raises:
            ValueError: If the window is negative or the mode is unknown
        """
        changes = {}
        if enabled is not None:
            changes['enabled'] = bool(enabled)
        if window_minutes is not None:
            if window_minutes < 0:
                raise ValueError(f'Window must be non-negative: {window_minutes}')
            changes['window_minutes'] = int(window_minutes)
        if mode is not None:
            changes['mode'] = TimestampMode(mode)

        with self._lock:
            self._config = replace(self._config, **changes)
            logger.debug(f'Timestamp decorrelation set to enabled={self._config.enabled}, mode={self._config.mode.value}')
            return replace(self._config)

    def _offset(self, ts_config: TimestampConfig) -> int:
        window_ms = ts_config.window_minutes * MINUTE_MS
        if ts_config.mode == TimestampMode.DELAYED:
            return -self._rng.randint(0, window_ms)
        if ts_config.mode == TimestampMode.ADVANCED:
            return self._rng.randint(0, window_ms)
        return self._rng.randint(-window_ms, window_ms)

    def transform(self, real_ms: Optional[int] = None) -> int:
        """
        Display time for a real send time.

        Args:
            real_ms: Real Unix time in milliseconds (now if None)

        Returns:
            ``real_ms`` when disabled, otherwise ``real_ms`` plus a random offset within the window
        """
        real_ms = now_ms() if real_ms is None else real_ms
        ts_config = self.get_config()
        if not ts_config.enabled:
            return real_ms
        return real_ms + self._offset(ts_config)

    def batch_transform(self, count: int, start_ms: Optional[int] = None) -> List[int]:
        """
        Display times for a synthetic history of ``count`` messages.

        Real times start at ``start_ms`` (an hour ago if None) and advance one
        minute per entry when disabled, one to five minutes when enabled. The
        result is sorted ascending so display order never runs backwards.
        """
        start_ms = now_ms() - HOUR_MS if start_ms is None else start_ms
        ts_config = self.get_config()

        if not ts_config.enabled:
            return [start_ms + i * MINUTE_MS for i in range(count)]

        timestamps = []
        current_ms = start_ms
        for _ in range(count):
            timestamps.append(current_ms + self._offset(ts_config))
            current_ms += self._rng.randrange(BATCH_MIN_STEP_MS, BATCH_MAX_STEP_MS)

        return sorted(timestamps)


def format_timestamp(timestamp_ms: int, current_ms: Optional[int] = None, tz: Optional[tzinfo] = None) -> str:
    """
    Relative display string for a message time.

    Args:
        timestamp_ms: Display time in Unix milliseconds
        current_ms: Reference time in Unix milliseconds (now if None)
        tz: Time zone for dated output (local time if None)

    Returns:
        ``just now`` (including future times), ``Nm ago``, ``Nh ago``, or a date
    """
    current_ms = now_ms() if current_ms is None else current_ms
    diff_ms = current_ms - timestamp_ms
    if diff_ms < MINUTE_MS:
        return 'just now'

    diff_minutes = diff_ms // MINUTE_MS
    if diff_minutes < 60:
        return f'{diff_minutes}m ago'

    diff_hours = diff_minutes // 60
    if diff_hours < 24:
        return f'{diff_hours}h ago'

    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).astimezone(tz)
    reference = datetime.fromtimestamp(current_ms / 1000, tz=timezone.utc).astimezone(tz)
    if moment.year == reference.year:
        return f'{moment:%b} {moment.day}, {moment:%H:%M}'
    return f'{moment:%b} {moment.day}, {moment.year}'


# Process-wide decorrelator used by the module-level helpers
_default_decorrelator = TimestampDecorrelator(
    TimestampConfig(enabled=config.timestamps.enabled,
                    window_minutes=config.timestamps.window_minutes,
                    mode=TimestampMode(config.timestamps.mode)))


def get_default_decorrelator() -> TimestampDecorrelator:
    return _default_decorrelator


def get_timestamp_config() -> TimestampConfig:
    return _default_decorrelator.get_config()


def set_timestamp_config(enabled: Optional[bool] = None,
                         window_minutes: Optional[int] = None,
                         mode: Optional[str] = None) -> TimestampConfig:
    return _default_decorrelator.set_config(enabled=enabled, window_minutes=window_minutes, mode=mode)


def is_decorrelation_enabled() -> bool:
    return _default_decorrelator.get_config().enabled


def transform_timestamp(real_ms: Optional[int] = None) -> int:
    return _default_decorrelator.transform(real_ms)


def batch_transform(count: int, start_ms: Optional[int] = None) -> List[int]:
    return _default_decorrelator.batch_transform(count, start_ms)
