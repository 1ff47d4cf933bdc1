"""
Centralized logging configuration for the session backend and client.
"""

import logging
import re
import sys
from typing import Optional

from .config import AppConfig

FULL_SESSION_ID = re.compile(r'\b(GHOST-[A-Z0-9]{2})[A-Z0-9]{2}-[A-Z0-9]{4}\b')


class SessionIdRedactionFilter(logging.Filter):
    """Masks full session identifiers that slip into a log line, e.g. from library loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = FULL_SESSION_ID.sub(r'\1**-****', message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Setup centralized logging configuration.

    Args:
        config: AppConfig instance, uses default if None
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SessionIdRedactionFilter())

    # Configure root logger
    logging.basicConfig(level=getattr(logging, config.log_level.upper()),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=[handler])

    # botocore logs request parameters (session ids, fingerprints) at debug level
    logging.getLogger('botocore').setLevel(max(logging.INFO, logging.getLogger().level))


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a logger with the configured level.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None

    Returns:
        Logger instance
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.log_level.upper()))
    return logger
