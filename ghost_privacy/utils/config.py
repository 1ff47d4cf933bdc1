"""
Configuration management for the session backend, its stores and the client.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class SessionConfig:
    """Configuration for the session lifecycle."""
    ttl_minutes: int
    extend_minutes: int
    validate_pad_ms: int


@dataclass
class RateLimitConfig:
    """Configuration for per-origin rate limiting."""
    max_sessions: int
    window_minutes: int
    retention_hours: int


@dataclass
class StoreConfig:
    """Configuration for the session row store."""
    backend: str


@dataclass
class DynamoDBConfig:
    """Configuration for Amazon DynamoDB tables."""
    region: str
    sessions_table: str
    rate_limits_table: str
    endpoint_url: Optional[str]
    retry_attempts: int
    retry_delay: float


@dataclass
class HoneypotConfig:
    """Configuration for honeypot alert delivery."""
    alert_topic_arn: Optional[str]
    alert_region: str
    alert_workers: int


@dataclass
class CleanupConfig:
    """Configuration for the scheduled sweep."""
    interval_minutes: int


@dataclass
class ServerConfig:
    """Configuration for the HTTP / MCP server."""
    transport: str
    host: str
    port: int
    allowed_origin: str


@dataclass
class ClientConfig:
    """Configuration for the session client."""
    base_url: str
    timeout: float


@dataclass
class MessageQueueConfig:
    """Configuration for the in-memory message queue."""
    max_messages_per_session: int
    ack_timeout_ms: int


@dataclass
class TimestampDefaults:
    """Initial timestamp decorrelation settings."""
    enabled: bool
    window_minutes: int
    mode: str


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    session: SessionConfig
    rate_limit: RateLimitConfig
    store: StoreConfig
    dynamodb: DynamoDBConfig
    honeypot: HoneypotConfig
    cleanup: CleanupConfig
    server: ServerConfig
    client: ClientConfig
    message_queue: MessageQueueConfig
    timestamps: TimestampDefaults


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Session lifecycle configuration
    session_config = SessionConfig(ttl_minutes=int(os.getenv('SESSION_TTL_MINUTES', '30')),
                                   extend_minutes=int(os.getenv('SESSION_EXTEND_MINUTES', '30')),
                                   validate_pad_ms=int(os.getenv('SESSION_VALIDATE_PAD_MS', '50')))

    # Rate limit configuration
    rate_limit_config = RateLimitConfig(max_sessions=int(os.getenv('RATE_LIMIT_MAX_SESSIONS', '10')),
                                        window_minutes=int(os.getenv('RATE_LIMIT_WINDOW_MINUTES', '60')),
                                        retention_hours=int(os.getenv('RATE_LIMIT_RETENTION_HOURS', '2')))

    store_config = StoreConfig(backend=os.getenv('SESSION_STORE_BACKEND', 'memory'))

    # DynamoDB configuration
    dynamodb_config = DynamoDBConfig(region=os.getenv('DYNAMODB_AWS_REGION', 'us-east-1'),
                                     sessions_table=os.getenv('DYNAMODB_SESSIONS_TABLE', 'ghost_sessions'),
                                     rate_limits_table=os.getenv('DYNAMODB_RATE_LIMITS_TABLE', 'ghost_rate_limits'),
                                     endpoint_url=os.getenv('DYNAMODB_ENDPOINT_URL') or None,
                                     retry_attempts=int(os.getenv('DYNAMODB_RETRY_ATTEMPTS', '3')),
                                     retry_delay=float(os.getenv('DYNAMODB_RETRY_DELAY', '0.2')))

    honeypot_config = HoneypotConfig(alert_topic_arn=os.getenv('HONEYPOT_ALERT_TOPIC_ARN') or None,
                                     alert_region=os.getenv('HONEYPOT_ALERT_AWS_REGION', 'us-east-1'),
                                     alert_workers=int(os.getenv('HONEYPOT_ALERT_WORKERS', '2')))

    cleanup_config = CleanupConfig(interval_minutes=int(os.getenv('CLEANUP_INTERVAL_MINUTES', '15')))

    # Server configuration
    server_config = ServerConfig(transport=os.getenv('SERVER_TRANSPORT', 'http'),
                                 host=os.getenv('SERVER_HOST', '127.0.0.1'),
                                 port=int(os.getenv('SERVER_PORT', '8000')),
                                 allowed_origin=os.getenv('CORS_ALLOWED_ORIGIN', '*'))

    client_config = ClientConfig(base_url=os.getenv('GHOST_API_URL', 'http://127.0.0.1:8000'),
                                 timeout=float(os.getenv('GHOST_API_TIMEOUT', '10.0')))

    message_queue_config = MessageQueueConfig(max_messages_per_session=int(os.getenv('MESSAGE_QUEUE_MAX_MESSAGES', '500')),
                                              ack_timeout_ms=int(os.getenv('MESSAGE_QUEUE_ACK_TIMEOUT_MS', '5000')))

    timestamp_defaults = TimestampDefaults(enabled=_get_bool('TIMESTAMP_DECORRELATION_ENABLED', 'false'),
                                           window_minutes=int(os.getenv('TIMESTAMP_WINDOW_MINUTES', '120')),
                                           mode=os.getenv('TIMESTAMP_MODE', 'random'))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     session=session_config,
                     rate_limit=rate_limit_config,
                     store=store_config,
                     dynamodb=dynamodb_config,
                     honeypot=honeypot_config,
                     cleanup=cleanup_config,
                     server=server_config,
                     client=client_config,
                     message_queue=message_queue_config,
                     timestamps=timestamp_defaults)


# Global configuration instance
config = load_config()
