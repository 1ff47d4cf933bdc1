"""Pytest configuration and shared fixtures for the session backend tests."""
import os

os.environ.setdefault('LOG_LEVEL', 'WARNING')
os.environ.setdefault('SESSION_STORE_BACKEND', 'memory')

import pytest  # noqa: E402

from ghost_privacy.services.alerts import AlertDeliveryError, AlertDispatcher, AlertNotifier  # noqa: E402
from ghost_privacy.services.honeypot import HoneypotClassifier  # noqa: E402
from ghost_privacy.services.rate_limiter import RateLimiter  # noqa: E402
from ghost_privacy.services.session_registry import SessionRegistry  # noqa: E402
from ghost_privacy.utils.config import RateLimitConfig, SessionConfig  # noqa: E402
from ghost_privacy.utils.session_store import InMemorySessionStore  # noqa: E402

# 2023-11-14T22:13:20Z
START_TIME = 1_700_000_000.0

HOST_FINGERPRINT = 'host-fingerprint-01'


class FakeClock:
    """Manually advanced Unix clock in seconds."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier(AlertNotifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send_alert(self, channel, recipient, alert):
        if self.fail:
            raise AlertDeliveryError('channel closed')
        self.sent.append((channel, recipient, alert))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def sleeps():
    """Delays requested by the registry when padding fast rejections."""
    return []


@pytest.fixture
def session_config():
    return SessionConfig(ttl_minutes=30, extend_minutes=30, validate_pad_ms=50)


@pytest.fixture
def rate_config():
    return RateLimitConfig(max_sessions=10, window_minutes=60, retention_hours=2)


@pytest.fixture
def rate_limiter(store, rate_config, clock):
    return RateLimiter(store, rate_config, clock=clock)


@pytest.fixture
def registry(store, rate_limiter, session_config, clock, sleeps):
    return SessionRegistry(store, rate_limiter, session_config, clock=clock, sleep=sleeps.append)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    dispatcher = AlertDispatcher(notifier, max_workers=1)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def classifier(registry, dispatcher, clock):
    return HoneypotClassifier(registry, dispatcher, clock=clock)
