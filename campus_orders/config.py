"""
Configuration for the campus orders service.

Settings are read from environment variables once, when the application is
created. Missing required values are a startup failure, never a per-request one.
"""
import os
from typing import Mapping, Optional
from pydantic import BaseModel, Field


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


class Settings(BaseModel):
    """
    Service settings.

    Attributes:
        jwt_secret (str): Secret used to verify bearer tokens
        database_url (str): SQLAlchemy URL of the record store
        jwt_algorithm (str): JWT signing algorithm
        access_token_expire_minutes (int): Lifetime of issued tokens
        redis_url (str): Optional Redis URL for the restaurant scope cache
        scope_cache_ttl (int): Restaurant scope cache TTL in seconds
        notification_retention_seconds (float): Age after which feed events expire
        notification_max_events (int): Maximum events kept in the feed
        db_pool_timeout (int): Seconds to wait for a pooled connection
        session_cookie_name (str): Cookie carrying a session token
        log_level (str): Root log level
    """
    jwt_secret: str = Field(..., min_length=1)
    database_url: str = Field(..., min_length=1)
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(default=60, gt=0)
    redis_url: Optional[str] = None
    scope_cache_ttl: int = Field(default=300, gt=0)
    notification_retention_seconds: float = Field(default=5.0, gt=0)
    notification_max_events: int = Field(default=100, gt=0)
    db_pool_timeout: int = Field(default=5, gt=0)
    session_cookie_name: str = "campus_session"
    log_level: str = "INFO"


REQUIRED_VARIABLES = ("JWT_SECRET", "DATABASE_URL")

# Environment variable -> settings field
_OPTIONAL_VARIABLES = {
    "JWT_ALGORITHM": "jwt_algorithm",
    "ACCESS_TOKEN_EXPIRE_MINUTES": "access_token_expire_minutes",
    "REDIS_URL": "redis_url",
    "SCOPE_CACHE_TTL": "scope_cache_ttl",
    "NOTIFICATION_RETENTION_SECONDS": "notification_retention_seconds",
    "NOTIFICATION_MAX_EVENTS": "notification_max_events",
    "DB_POOL_TIMEOUT": "db_pool_timeout",
    "SESSION_COOKIE_NAME": "session_cookie_name",
    "LOG_LEVEL": "log_level",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Validated settings

    Raises:
        ConfigurationError: If a required variable is missing or a value is invalid
    """
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_VARIABLES if not env.get(name)]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    values = {
        "jwt_secret": env["JWT_SECRET"],
        "database_url": env["DATABASE_URL"],
    }
    for variable, field_name in _OPTIONAL_VARIABLES.items():
        raw = env.get(variable)
        if raw:
            values[field_name] = raw

    try:
        return Settings(**values)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
