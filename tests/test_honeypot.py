from unittest.mock import MagicMock

import pytest

from ghost_privacy.models.core import TrapType
from ghost_privacy.services.alerts import AlertDispatcher, session_channel
from ghost_privacy.services.honeypot import DEAD_SESSION_WARNING, HoneypotClassifier
from ghost_privacy.services.session_registry import SessionRegistry
from ghost_privacy.utils.identifiers import is_honeytoken_format
from ghost_privacy.utils.session_store import InMemorySessionStore

from conftest import HOST_FINGERPRINT, RecordingNotifier

SESSION_ID = 'GHOST-ABCD-2345'
ACCESSOR = 'accessor-fingerprint'


@pytest.fixture
def spy_classifier(clock):
    store = MagicMock(wraps=InMemorySessionStore())
    registry = SessionRegistry(store, clock=clock, sleep=lambda _: None)
    return HoneypotClassifier(registry, None, clock=clock), store


@pytest.mark.parametrize('session_id', ['GHOST-TRAP-AB12', 'GHOST-DECOY-ZZZZ', 'GHOST-TRAP-'])
def test_reserved_prefix_is_explicit_trap_without_store_access(spy_classifier, session_id):
    classifier, store = spy_classifier

    result = classifier.classify(session_id)

    assert result.is_trap
    assert result.trap_type == TrapType.EXPLICIT_TRAP
    store.get_session.assert_not_called()


@pytest.mark.parametrize('session_id', ['hello', 'GHOST-AB1D-2345', 'ghost-abcd-2345'])
def test_malformed_identifier_is_clear_without_store_access(spy_classifier, session_id):
    classifier, store = spy_classifier

    result = classifier.classify(session_id)

    assert not result.is_trap
    assert result.trap_type == TrapType.NONE
    store.get_session.assert_not_called()


def test_unknown_and_live_sessions_are_clear(registry, classifier, dispatcher, notifier):
    assert classifier.classify('GHOST-ZZZZ-ZZZZ').trap_type == TrapType.NONE

    registry.create(SESSION_ID, HOST_FINGERPRINT, 'origin')
    assert classifier.classify(SESSION_ID).trap_type == TrapType.NONE

    dispatcher.shutdown()
    assert notifier.sent == []


def test_dead_session_alerts_original_creator(registry, classifier, dispatcher, notifier, clock):
    registry.create(SESSION_ID, HOST_FINGERPRINT, 'origin')
    clock.advance(30 * 60)

    result = classifier.classify(SESSION_ID, ACCESSOR)

    assert result.is_trap
    assert result.trap_type == TrapType.DEAD_SESSION

    dispatcher.shutdown()
    assert len(notifier.sent) == 1
    channel, recipient, alert = notifier.sent[0]
    assert channel == session_channel(SESSION_ID) == f'ghost-session-{SESSION_ID}'
    assert recipient == HOST_FINGERPRINT
    assert alert.message == DEAD_SESSION_WARNING
    assert alert.timestamp == '2023-11-14T22:43:20.000Z'
    assert alert.accessor_fingerprint == ACCESSOR


def test_dead_session_alert_without_accessor_fingerprint(registry, classifier, dispatcher, notifier, clock):
    registry.create(SESSION_ID, HOST_FINGERPRINT, 'origin')
    clock.advance(31 * 60)

    classifier.classify(SESSION_ID)

    dispatcher.shutdown()
    assert notifier.sent[0][2].accessor_fingerprint == 'unknown'
    assert notifier.sent[0][2].to_payload()['accessorFingerprint'] == 'unknown'


def test_alert_failure_does_not_change_classification(registry, clock):
    failing = RecordingNotifier(fail=True)
    dispatcher = AlertDispatcher(failing, max_workers=1)
    classifier = HoneypotClassifier(registry, dispatcher, clock=clock)
    registry.create(SESSION_ID, HOST_FINGERPRINT, 'origin')
    clock.advance(31 * 60)

    result = classifier.classify(SESSION_ID, ACCESSOR)
    dispatcher.shutdown()

    assert result.trap_type == TrapType.DEAD_SESSION


def test_dispatch_returns_before_delivery(registry, clock):
    blocking = MagicMock()
    dispatcher = AlertDispatcher(blocking, max_workers=1)
    classifier = HoneypotClassifier(registry, dispatcher, clock=clock)
    registry.create(SESSION_ID, HOST_FINGERPRINT, 'origin')
    clock.advance(31 * 60)

    assert classifier.classify(SESSION_ID).is_trap
    dispatcher.shutdown()
    blocking.send_alert.assert_called_once()


def test_rotate_honeytokens(classifier):
    today, tokens = classifier.rotate_honeytokens()

    assert today == '2023-11-14'
    assert len(tokens) == 4
    assert sum(token.startswith('GHOST-TRAP-') for token in tokens) == 2
    assert sum(token.startswith('GHOST-DECOY-') for token in tokens) == 2
    assert all(is_honeytoken_format(token) for token in tokens)
    assert all(classifier.classify(token).trap_type == TrapType.EXPLICIT_TRAP for token in tokens)
