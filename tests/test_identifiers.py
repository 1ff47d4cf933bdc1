import logging

import pytest

from ghost_privacy.utils.identifiers import (SESSION_ID_ALPHABET, generate_honeytoken, generate_session_id,
                                             has_honeytoken_prefix, is_honeytoken_format, is_valid_fingerprint,
                                             is_valid_session_id, redact_session_id)
from ghost_privacy.utils.logging_config import SessionIdRedactionFilter


@pytest.mark.parametrize('session_id', ['GHOST-ABCD-2345', 'GHOST-ZZZZ-9999', 'GHOST-HJKN-PQRS'])
def test_valid_session_ids(session_id):
    assert is_valid_session_id(session_id)


@pytest.mark.parametrize('session_id', [
    'GHOST-ABCD-234',  # short group
    'ghost-abcd-2345',  # lowercase
    'GHOST-AB1D-2345',  # 1 is excluded
    'GHOST-ABOD-2345',  # O is excluded
    'GHOST-ABID-2345',  # I is excluded
    'GHOST-AB0D-2345',  # 0 is excluded
    ' GHOST-ABCD-2345',
    'GHOST-ABCD-2345\n',
    'PHANTOM-ABCD-2345',
    '',
    None,
    12345,
])
def test_invalid_session_ids(session_id):
    assert not is_valid_session_id(session_id)


def test_alphabet_excludes_confusable_characters():
    assert len(SESSION_ID_ALPHABET) == 32
    for char in 'IO01':
        assert char not in SESSION_ID_ALPHABET


def test_generated_session_ids_match_grammar():
    for _ in range(200):
        session_id = generate_session_id()
        assert is_valid_session_id(session_id)
        assert not has_honeytoken_prefix(session_id)


def test_generate_honeytoken_prefixes():
    trap = generate_honeytoken()
    decoy = generate_honeytoken('DECOY')

    assert trap.startswith('GHOST-TRAP-')
    assert decoy.startswith('GHOST-DECOY-')
    assert is_honeytoken_format(trap)
    assert is_honeytoken_format(decoy)
    assert not is_valid_session_id(trap)


def test_generate_honeytoken_rejects_unknown_prefix():
    with pytest.raises(ValueError):
        generate_honeytoken('BAIT')


def test_honeytoken_prefix_is_pure_string_match():
    assert has_honeytoken_prefix('GHOST-TRAP-AB12')
    assert has_honeytoken_prefix('GHOST-DECOY-')
    assert not has_honeytoken_prefix('GHOST-TRAPS-ABCD')
    assert not has_honeytoken_prefix(None)


@pytest.mark.parametrize('fingerprint,expected', [
    ('a' * 7, False),
    ('a' * 8, True),
    ('a' * 128, True),
    ('a' * 129, False),
    (None, False),
    (12345678, False),
])
def test_fingerprint_bounds(fingerprint, expected):
    assert is_valid_fingerprint(fingerprint) is expected


def test_redact_session_id():
    assert redact_session_id('GHOST-ABCD-2345') == 'GHOST-AB**-****'
    assert redact_session_id('GHOST-TRAP-AB12') == 'GHOST-TRAP-****'
    assert redact_session_id('not-an-id') == '<malformed>'
    assert redact_session_id(None) == '<none>'


def test_log_filter_masks_full_identifiers():
    record = logging.LogRecord('test', logging.INFO, __file__, 1, 'joined %s', ('GHOST-ABCD-2345',), None)

    assert SessionIdRedactionFilter().filter(record)
    assert record.getMessage() == 'joined GHOST-AB**-****'


@pytest.mark.parametrize('session_id', ['GHOST-TRAP-ABCD', 'GHOST-TRAP-2345'])
def test_reserved_prefix_never_passes_session_grammar(session_id):
    assert not is_valid_session_id(session_id)
    assert is_honeytoken_format(session_id)


def test_honeytoken_format_rejects_trailing_newline():
    assert not is_honeytoken_format('GHOST-TRAP-ABCD\n')
    assert not is_honeytoken_format('GHOST-DECOY-ABCD ')
