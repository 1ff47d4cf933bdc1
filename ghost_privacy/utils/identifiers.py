"""
Session identifier grammar, honeytoken generation and log redaction.
"""

import re
import secrets
from typing import Any

# Uppercase letters and digits without the visually confusable I, O, 0 and 1
SESSION_ID_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
SESSION_ID_PREFIX = 'GHOST'
SESSION_ID_PATTERN = re.compile(r'GHOST-[A-HJ-NP-Z2-9]{4}-[A-HJ-NP-Z2-9]{4}')

HONEYTOKEN_PREFIXES = ('GHOST-TRAP-', 'GHOST-DECOY-')
HONEYTOKEN_PATTERN = re.compile(r'GHOST-(TRAP|DECOY)-[A-HJ-NP-Z2-9]{4}')

FINGERPRINT_MIN_LENGTH = 8
FINGERPRINT_MAX_LENGTH = 128


def is_valid_session_id(session_id: Any) -> bool:
    """Check a value against the ``GHOST-XXXX-XXXX`` wire grammar.

    Reserved trap markers are excluded even where their letters fit the
    alphabet, so ``GHOST-TRAP-ABCD`` is never a real session.
    """
    if not isinstance(session_id, str) or has_honeytoken_prefix(session_id):
        return False
    return SESSION_ID_PATTERN.fullmatch(session_id) is not None


def is_valid_fingerprint(fingerprint: Any) -> bool:
    """Fingerprints are opaque strings of 8 to 128 characters."""
    return isinstance(fingerprint, str) and FINGERPRINT_MIN_LENGTH <= len(fingerprint) <= FINGERPRINT_MAX_LENGTH


def has_honeytoken_prefix(session_id: Any) -> bool:
    """Pure string test for the reserved trap markers; never touches a store."""
    return isinstance(session_id, str) and session_id.startswith(HONEYTOKEN_PREFIXES)


def _random_group(length: int = 4) -> str:
    return ''.join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(length))


def generate_session_id() -> str:
    """Generate a fresh ``GHOST-XXXX-XXXX`` identifier that never carries a trap marker."""
    while True:
        session_id = f'{SESSION_ID_PREFIX}-{_random_group()}-{_random_group()}'
        if not has_honeytoken_prefix(session_id):
            return session_id


def generate_honeytoken(prefix: str = 'TRAP') -> str:
    """Generate a honeytoken identifier for planting in documents or code.

    Args:
        prefix: Marker segment, ``TRAP`` or ``DECOY``

    Returns:
        Identifier such as ``GHOST-TRAP-7KQ2``

    Raises:
        ValueError: If the prefix is not a reserved marker
    """
    token_prefix = f'{SESSION_ID_PREFIX}-{prefix}-'
    if token_prefix not in HONEYTOKEN_PREFIXES:
        raise ValueError(f'Unsupported honeytoken prefix: {prefix}')
    return f'{token_prefix}{_random_group()}'


def redact_session_id(session_id: Any) -> str:
    """Shorten an identifier for log output, e.g. ``GHOST-AB**-****``."""
    if not isinstance(session_id, str) or not session_id:
        return '<none>'
    if has_honeytoken_prefix(session_id):
        return session_id.rsplit('-', 1)[0] + '-****'
    if is_valid_session_id(session_id):
        return session_id[:8] + '**-****'
    return '<malformed>'


def is_honeytoken_format(session_id: Any) -> bool:
    """Check a value against the ``GHOST-TRAP-XXXX`` / ``GHOST-DECOY-XXXX`` honeytoken shape."""
    return isinstance(session_id, str) and HONEYTOKEN_PATTERN.fullmatch(session_id) is not None
