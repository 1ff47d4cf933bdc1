"""
Client capability wrapper around the session HTTP operations.

The client never reads the session tables; every call goes through the
server routes. Failure policy errs towards keeping a live conversation
usable: an unreachable server never marks a session as expired.
"""

import hashlib
import platform
import secrets
from typing import Any, Dict, Optional, Set, Tuple

import requests

from ..models.core import ClassificationResult, JoinResult, TrapType
from ..models.errors import (ConflictError, InternalFailureError, InvalidFormatError, NotFoundError, RateLimitedError,
                             UnreachableError)
from ..utils.config import ClientConfig, config
from ..utils.identifiers import (generate_session_id, has_honeytoken_prefix, is_honeytoken_format, is_valid_fingerprint,
                                 is_valid_session_id)
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

STATUS_ERRORS = {
    400: InvalidFormatError,
    404: NotFoundError,
    409: ConflictError,
    429: RateLimitedError,
}


def generate_fingerprint() -> str:
    """Short device fingerprint salted with a random nonce, so two calls never match."""
    components = [secrets.token_hex(16), platform.system(), platform.machine(), platform.python_version()]
    return hashlib.sha256('|'.join(components).encode('utf-8')).hexdigest()[:16]


class SessionClient:
    """Thin wrapper over the session routes with the client-side failure policy."""

    def __init__(self, client_config: Optional[ClientConfig] = None, http: Optional[requests.Session] = None):
        """
        Initialize the session client.

        Args:
            client_config: ClientConfig instance (uses config default if None)
            http: requests Session to send through (a new one if None)
        """
        self.config = client_config or config.client
        self.base_url = self.config.base_url.rstrip('/')
        self.http = http or requests.Session()
        self._validated: Set[str] = set()

    def _post(self, route: str, payload: Optional[Dict[str, Any]] = None) -> Tuple[int, Dict[str, Any]]:
        """
        POST a JSON body to a route.

        Returns:
            Tuple of (status code, parsed JSON body or empty dict)

        Raises:
            UnreachableError: On connection failure or timeout
            InternalFailureError: On any other transport failure
        """
        try:
            response = self.http.post(f'{self.base_url}/{route}', json=payload or {}, timeout=self.config.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.debug(f'Session server unreachable on {route}: {e}')
            raise UnreachableError(f'Session server unreachable: {e}')
        except requests.RequestException as e:
            logger.error(f'Request to {route} failed: {e}')
            raise InternalFailureError(f'Request failed: {e}')

        try:
            body = response.json()
        except ValueError:
            body = {}
        return response.status_code, body if isinstance(body, dict) else {}

    def reserve_session(self, session_id: str, host_fingerprint: str) -> str:
        """
        Create a session on the server.

        Args:
            session_id: Identifier in ``GHOST-XXXX-XXXX`` form
            host_fingerprint: Creator fingerprint (8-128 chars)

        Returns:
            Expiry as an ISO-8601 string

        Raises:
            InvalidFormatError: If the identifier or fingerprint is malformed (no request is sent)
            RateLimitedError: If the origin is over its creation ceiling
            ConflictError: If the identifier is taken
            UnreachableError: If the server cannot be reached
            InternalFailureError: On any other failure
        """
        if not is_valid_session_id(session_id):
            raise InvalidFormatError('Invalid session ID format')
        if not is_valid_fingerprint(host_fingerprint):
            raise InvalidFormatError('Invalid host fingerprint')

        status, body = self._post('create-session', {'sessionId': session_id, 'hostFingerprint': host_fingerprint})
        if status == 200 and body.get('success') is True:
            return body.get('expiresAt', '')

        error_class = STATUS_ERRORS.get(status, InternalFailureError)
        raise error_class(body.get('error') or 'Failed to create session')

    def create_session(self, host_fingerprint: Optional[str] = None) -> Tuple[str, str]:
        """Generate an identifier and reserve it; returns (session id, expiry)."""
        session_id = generate_session_id()
        expires_at = self.reserve_session(session_id, host_fingerprint or generate_fingerprint())
        return session_id, expires_at

    def validate_session(self, session_id: str) -> bool:
        """
        Check that a session is active.

        Malformed identifiers return False without a request. Previously
        validated sessions are answered from the in-memory cache. An
        unreachable server counts as valid.
        """
        if not is_valid_session_id(session_id):
            return False
        if session_id in self._validated:
            return True

        try:
            status, body = self._post('validate-session', {'sessionId': session_id})
        except UnreachableError:
            return True
        except InternalFailureError:
            return False

        valid = status == 200 and body.get('valid') is True
        if valid:
            self._validated.add(session_id)
        return valid

    def clear_validation_cache(self, session_id: str) -> None:
        self._validated.discard(session_id)

    def extend_session(self, session_id: str) -> bool:
        """Reset the session expiry; any failure returns False."""
        if not is_valid_session_id(session_id):
            return False
        try:
            status, body = self._post('extend-session', {'sessionId': session_id})
        except (UnreachableError, InternalFailureError):
            return False
        return status == 200 and body.get('success') is True

    def delete_session(self, session_id: str) -> bool:
        """
        Delete a session. The validation cache is cleared before the request.

        An unreachable server counts as success: local teardown proceeds and
        the server-side TTL removes the row.
        """
        if not is_valid_session_id(session_id):
            return False

        self.clear_validation_cache(session_id)
        try:
            status, body = self._post('delete-session', {'sessionId': session_id})
        except UnreachableError:
            logger.debug('Session deletion network error')
            return True
        except InternalFailureError:
            return False
        return status == 200 and body.get('success') is True

    def check_honeypot(self, session_id: str, accessor_fingerprint: Optional[str] = None) -> ClassificationResult:
        """Ask the server to classify an identifier; any failure reads as not a honeypot."""
        payload = {'sessionId': session_id}
        if accessor_fingerprint:
            payload['accessorFingerprint'] = accessor_fingerprint

        try:
            status, body = self._post('detect-honeypot', payload)
        except (UnreachableError, InternalFailureError):
            return ClassificationResult(is_trap=False, trap_type=TrapType.NONE)

        if status != 200 or body.get('isHoneypot') is not True:
            return ClassificationResult(is_trap=False, trap_type=TrapType.NONE)

        try:
            trap_type = TrapType(body.get('trapType'))
        except ValueError:
            trap_type = TrapType.EXPLICIT_TRAP
        return ClassificationResult(is_trap=True, trap_type=trap_type)

    def join_session(self, raw_session_id: str, accessor_fingerprint: Optional[str] = None) -> JoinResult:
        """
        Vet and validate a session before joining it.

        The identifier is normalized, classified first, and validated only
        when the classifier reports it clear. Traps are returned to the
        caller, which decides how to present them.

        Args:
            raw_session_id: Identifier as typed or pasted
            accessor_fingerprint: This peer's fingerprint (optional)

        Returns:
            JoinResult
        """
        session_id = (raw_session_id or '').strip().upper()
        if not is_valid_session_id(session_id) and not is_honeytoken_format(session_id):
            return JoinResult(joined=False, session_id=session_id, error='Invalid session ID format')

        classification = self.check_honeypot(session_id, accessor_fingerprint)
        if not classification.is_trap and has_honeytoken_prefix(session_id):
            # Server unreachable; the reserved prefix alone marks a trap
            classification = ClassificationResult(is_trap=True, trap_type=TrapType.EXPLICIT_TRAP)

        if classification.is_trap:
            logger.warning(f'Join routed to trap handling: {classification.trap_type.value}')
            return JoinResult(joined=False, session_id=session_id, trap_type=classification.trap_type)

        if not self.validate_session(session_id):
            return JoinResult(joined=False, session_id=session_id, error='Session not found or expired')

        return JoinResult(joined=True, session_id=session_id, trap_type=TrapType.NONE)

    def close(self) -> None:
        self._validated.clear()
        self.http.close()
