"""Runtime configuration for the feedback server.

Defaults come from ``feedback_app.constants``; every value can be overridden
through environment variables, optionally placed in a ``.env`` file in the
working directory.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from dotenv import load_dotenv

from feedback_app.constants.feedback_constants import DEFAULT_DATABASE_URL
from feedback_app.constants.network_constants import DEFAULT_CORS_ORIGINS, DEFAULT_HOST, DEFAULT_PORT

logger = logging.getLogger(__name__)

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""


@dataclass(slots=True, frozen=True)
class Settings:
    database_url: str
    host: str
    port: int
    log_level: str
    cors_origins: tuple[str, ...]


def get_database_url() -> str:
    return os.getenv("FEEDBACK_DATABASE_URL", DEFAULT_DATABASE_URL)


def get_host() -> str:
    return os.getenv("FEEDBACK_HOST", DEFAULT_HOST)


def get_port() -> int:
    raw_value = os.getenv("FEEDBACK_PORT")
    if raw_value is None or not raw_value.strip():
        return DEFAULT_PORT
    try:
        port = int(raw_value)
    except ValueError as exc:
        raise ConfigurationError(f"FEEDBACK_PORT must be an integer, got '{raw_value}'.") from exc
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"FEEDBACK_PORT must be between 1 and 65535, got {port}.")
    return port


def get_log_level() -> str:
    """Get log level from environment, default to INFO."""
    level = os.getenv("FEEDBACK_LOG_LEVEL", "INFO").upper()
    if level not in _VALID_LOG_LEVELS:
        logger.warning("Invalid log level '%s', defaulting to INFO", level)
        return "INFO"
    return level


def get_cors_origins() -> tuple[str, ...]:
    raw_value = os.getenv("FEEDBACK_CORS_ORIGINS")
    if raw_value is None:
        return DEFAULT_CORS_ORIGINS
    origins = tuple(origin.strip() for origin in raw_value.split(",") if origin.strip())
    return origins or DEFAULT_CORS_ORIGINS


def load_settings(env_file: str | None = ".env") -> Settings:
    """Load ``env_file`` if present (without overriding the real environment) and read settings."""
    if env_file:
        load_dotenv(env_file, override=False)
    return Settings(
        database_url=get_database_url(),
        host=get_host(),
        port=get_port(),
        log_level=get_log_level(),
        cors_origins=get_cors_origins(),
    )
