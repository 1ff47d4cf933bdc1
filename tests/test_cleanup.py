import threading
from unittest.mock import MagicMock

from ghost_privacy.models.core import CleanupResult
from ghost_privacy.models.errors import UnreachableError
from ghost_privacy.services.cleanup import SweepScheduler
from ghost_privacy.utils.config import CleanupConfig
from ghost_privacy.utils.health_check import check_health, get_health_status
from ghost_privacy.utils.session_store import InMemorySessionStore

from conftest import HOST_FINGERPRINT


def test_run_once_sweeps_registry(registry, clock):
    registry.create('GHOST-ABCD-2345', HOST_FINGERPRINT, 'origin')
    clock.advance(31 * 60)

    result = SweepScheduler(registry, CleanupConfig(interval_minutes=15)).run_once()

    assert result == CleanupResult(deleted_sessions=1, deleted_buckets=0)


def test_run_once_logs_and_survives_store_failure():
    registry = MagicMock()
    registry.sweep.side_effect = UnreachableError('down')

    assert SweepScheduler(registry, CleanupConfig(interval_minutes=15)).run_once() is None


def test_scheduler_runs_until_stopped():
    swept = threading.Event()
    registry = MagicMock()
    registry.sweep.side_effect = lambda: swept.set()
    scheduler = SweepScheduler(registry, CleanupConfig(interval_minutes=15))
    scheduler.interval_seconds = 0.01

    scheduler.start()
    assert swept.wait(2)
    scheduler.stop(timeout=2)

    assert not scheduler.running
    calls = registry.sweep.call_count
    assert calls >= 1


def test_health_status_reports_store():
    status = get_health_status(InMemorySessionStore())

    assert status['session_store']['healthy'] is True
    assert status['session_store']['backend'] == 'InMemorySessionStore'
    assert check_health(InMemorySessionStore())


def test_health_status_unhealthy_store():
    store = MagicMock()
    store.health_check.return_value = False

    assert not check_health(store)


def test_health_status_hides_store_error_text():
    store = MagicMock()
    store.health_check.side_effect = UnreachableError('dynamodb://secret-table unreachable')

    status = get_health_status(store)

    assert status['session_store'] == {'healthy': False, 'service': 'Session store'}
    assert 'secret-table' not in str(status)
    assert not check_health(store)
