"""
HTTP operation handlers, independent of the web framework serving them.

Every handler returns an ApiResponse with CORS headers and a JSON body. Error
bodies are generic: store failures, stack traces and identifier details are
logged server-side only.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .models.core import TrapType
from .models.errors import (ConflictError, GhostSessionError, InvalidFormatError, NotFoundError, RateLimitedError)
from .services.alerts import AlertDispatcher, create_alert_notifier
from .services.honeypot import HoneypotClassifier
from .services.rate_limiter import RateLimiter, hash_origin
from .services.session_registry import SessionRegistry
from .utils.config import AppConfig, config
from .utils.logging_config import get_logger
from .utils.session_store import SessionStore, create_session_store
from .utils.timestamp_utils import to_iso_string

logger = get_logger(__name__)

ALLOWED_HEADERS = 'authorization, x-client-info, apikey, content-type, x-ghost-session-id'
ALLOWED_METHODS = 'POST, OPTIONS'

# Only proxy-set headers are trusted; x-forwarded-for is client-controlled
TRUSTED_ORIGIN_HEADERS = ('x-real-ip', 'cf-connecting-ip')
UNKNOWN_ORIGIN = 'unknown'

ERROR_MESSAGES = {
    'INVALID_REQUEST': 'Invalid request',
    'RATE_LIMITED': 'Too many requests',
    'CONFLICT': 'Resource conflict',
    'SERVER_ERROR': 'Unable to process request',
}


@dataclass
class ApiResponse:
    """Framework-neutral HTTP response."""
    status_code: int
    body: Optional[Dict[str, Any]]
    headers: Dict[str, str] = field(default_factory=dict)


def cors_headers(allowed_origin: str = '*') -> Dict[str, str]:
    return {
        'Access-Control-Allow-Origin': allowed_origin,
        'Access-Control-Allow-Headers': ALLOWED_HEADERS,
        'Access-Control-Allow-Methods': ALLOWED_METHODS,
    }


def client_origin(headers: Mapping[str, str]) -> str:
    """
    Resolve the caller's network origin from trusted proxy headers.

    Args:
        headers: Request headers (any key case)

    Returns:
        ``x-real-ip``, else ``cf-connecting-ip``, else ``unknown``
    """
    lowered = {str(name).lower(): value for name, value in headers.items()}
    for header in TRUSTED_ORIGIN_HEADERS:
        value = (lowered.get(header) or '').strip()
        if value:
            return value
    return UNKNOWN_ORIGIN


def _field(payload: Optional[Dict[str, Any]], name: str) -> Any:
    return payload.get(name) if payload else None


class GhostSessionApi:
    """Route handlers for the session lifecycle and honeypot operations."""

    def __init__(self,
                 registry: SessionRegistry,
                 classifier: HoneypotClassifier,
                 allowed_origin: Optional[str] = None):
        """
        Initialize the API handlers.

        Args:
            registry: SessionRegistry for lifecycle operations
            classifier: HoneypotClassifier for join vetting
            allowed_origin: Value of Access-Control-Allow-Origin (uses config default if None)
        """
        self.registry = registry
        self.classifier = classifier
        self.allowed_origin = allowed_origin or config.server.allowed_origin

    def _respond(self, status_code: int, body: Optional[Dict[str, Any]]) -> ApiResponse:
        headers = cors_headers(self.allowed_origin)
        if body is not None:
            headers['Content-Type'] = 'application/json'
        return ApiResponse(status_code=status_code, body=body, headers=headers)

    def _error(self, status_code: int, code: str) -> ApiResponse:
        return self._respond(status_code, {'success': False, 'error': ERROR_MESSAGES.get(code, ERROR_MESSAGES['SERVER_ERROR'])})

    def preflight(self) -> ApiResponse:
        return self._respond(200, None)

    def create_session(self, payload: Optional[Dict[str, Any]], headers: Mapping[str, str]) -> ApiResponse:
        """
        Handle ``/create-session``.

        Args:
            payload: Parsed body ``{sessionId, hostFingerprint}``, None if unparseable
            headers: Request headers used to resolve the origin

        Returns:
            200 ``{success, sessionId, expiresAt}`` or 400/409/429/500 ``{success: false, error}``
        """
        if payload is None:
            logger.error('Rejected session creation: invalid JSON body')
            return self._error(400, 'INVALID_REQUEST')

        origin_id = hash_origin(client_origin(headers))
        logger.info(f'Create request from origin hash: {origin_id[:8]}...')

        try:
            record = self.registry.create(_field(payload, 'sessionId'), _field(payload, 'hostFingerprint'), origin_id)
        except InvalidFormatError:
            return self._error(400, 'INVALID_REQUEST')
        except RateLimitedError:
            return self._error(429, 'RATE_LIMITED')
        except ConflictError:
            logger.error('Session ID collision')
            return self._error(409, 'CONFLICT')
        except GhostSessionError as e:
            logger.error(f'Session creation failed: {e}')
            return self._error(500, 'SERVER_ERROR')
        except Exception as e:
            logger.error(f'Unexpected error in session creation: {e}')
            return self._error(500, 'SERVER_ERROR')

        return self._respond(200, {
            'success': True,
            'sessionId': record.session_id,
            'expiresAt': to_iso_string(record.expires_at)
        })

    def validate_session(self, payload: Optional[Dict[str, Any]]) -> ApiResponse:
        """Handle ``/validate-session``: ``{valid: true, expiresAt}`` or ``{valid: false}``."""
        try:
            record = self.registry.lookup_active(_field(payload, 'sessionId'))
        except Exception as e:
            logger.error(f'Session validation failed: {e}')
            return self._respond(500, {'valid': False})

        if record is None:
            return self._respond(200, {'valid': False})
        return self._respond(200, {'valid': True, 'expiresAt': to_iso_string(record.expires_at)})

    def extend_session(self, payload: Optional[Dict[str, Any]]) -> ApiResponse:
        """Handle ``/extend-session``: 400 malformed, 404 absent or expired, 500 store failure."""
        try:
            expires_at = self.registry.extend(_field(payload, 'sessionId'))
        except InvalidFormatError:
            return self._respond(400, {'success': False})
        except NotFoundError:
            return self._respond(404, {'success': False})
        except Exception as e:
            logger.error(f'Session extension failed: {e}')
            return self._respond(500, {'success': False})

        return self._respond(200, {'success': True, 'expiresAt': to_iso_string(expires_at)})

    def delete_session(self, payload: Optional[Dict[str, Any]]) -> ApiResponse:
        """Handle ``/delete-session``; deleting an absent session succeeds."""
        try:
            self.registry.delete(_field(payload, 'sessionId'))
        except InvalidFormatError:
            return self._respond(400, {'success': False})
        except Exception as e:
            logger.error(f'Session deletion failed: {e}')
            return self._respond(500, {'success': False})

        return self._respond(200, {'success': True})

    def detect_honeypot(self, payload: Optional[Dict[str, Any]]) -> ApiResponse:
        """
        Handle ``/detect-honeypot``.

        Returns:
            200 ``{isHoneypot, trapType, message}`` where ``trapType`` is null when clear;
            400 ``{error: 'Session ID required'}``; 500 ``{error: 'Internal error'}``
        """
        session_id = _field(payload, 'sessionId')
        if not session_id or not isinstance(session_id, str):
            return self._respond(400, {'error': 'Session ID required'})

        accessor_fingerprint = _field(payload, 'accessorFingerprint')
        try:
            result = self.classifier.classify(session_id, accessor_fingerprint)
        except Exception as e:
            logger.error(f'Honeypot detection error: {e}')
            return self._respond(500, {'error': 'Internal error'})

        return self._respond(200, {
            'isHoneypot': result.is_trap,
            'trapType': None if result.trap_type == TrapType.NONE else result.trap_type.value,
            'message': 'Session found' if result.is_trap else 'Session not found'
        })

    def cleanup_sessions(self) -> ApiResponse:
        """Handle ``/cleanup-sessions``: sweep expired sessions and stale buckets."""
        logger.info('Starting cleanup')
        try:
            result = self.registry.sweep()
        except Exception as e:
            logger.error(f'Cleanup failed: {e}')
            return self._respond(500, {'success': False})

        return self._respond(200, {'success': True, 'deletedCount': result.deleted_sessions})

    def rotate_honeytokens(self) -> ApiResponse:
        """Handle ``/rotate-honeytokens``; the generated tokens are never returned over HTTP."""
        try:
            today, tokens = self.classifier.rotate_honeytokens()
        except Exception as e:
            logger.error(f'Honeytoken rotation failed: {e}')
            return self._respond(500, {'success': False})

        return self._respond(200, {
            'success': True,
            'message': 'Honeytokens rotated successfully',
            'date': today,
            'count': len(tokens)
        })


def build_api(app_config: Optional[AppConfig] = None, store: Optional[SessionStore] = None) -> GhostSessionApi:
    """
    Wire the store, services and handlers from configuration.

    Args:
        app_config: AppConfig instance (uses config default if None)
        store: SessionStore to use (built from the configured backend if None)

    Returns:
        GhostSessionApi ready to serve
    """
    app_config = app_config or config
    store = store or create_session_store(app_config.store.backend)

    rate_limiter = RateLimiter(store, app_config.rate_limit)
    registry = SessionRegistry(store, rate_limiter, app_config.session)
    dispatcher = AlertDispatcher(create_alert_notifier(app_config.honeypot), app_config.honeypot.alert_workers)
    classifier = HoneypotClassifier(registry, dispatcher)

    return GhostSessionApi(registry, classifier, app_config.server.allowed_origin)
