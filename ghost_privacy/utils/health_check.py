"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .config import config
from .logging_config import get_logger
from .session_store import SessionStore, create_session_store

logger = get_logger(__name__)


def check_health(store: Optional[SessionStore] = None) -> bool:
    """Check the health of all system components.

    Args:
        store: SessionStore to probe (built from the configured backend if None)

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(store)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(store: Optional[SessionStore] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check session store
    try:
        store = store or create_session_store()
        health_status['session_store'] = {
            'healthy': store.health_check(),
            'service': 'Session store',
            'backend': type(store).__name__
        }
    except Exception as e:
        # Served on /health, so the error text is only logged
        logger.error(f'Session store health check failed: {e}')
        health_status['session_store'] = {'healthy': False, 'service': 'Session store'}

    # Alert channel is optional; a missing topic is a configuration choice, not a fault
    health_status['honeypot_alerts'] = {
        'healthy': True,
        'service': 'Honeypot alerts',
        'configured': bool(config.honeypot.alert_topic_arn)
    }

    return health_status

