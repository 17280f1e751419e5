"""Spam guard configuration.

Settings are loaded from environment variables. Invalid values fail fast at
startup with a clear error instead of surfacing per request.
"""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger("spam-guard.config")


class ConfigurationError(Exception):
    """Raised when configuration or reference data is missing or invalid."""

    pass


def _int_env(key: str, default: int, description: str) -> int:
    """Get an integer env var or raise clear error."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for environment variable: {key}={raw!r}\n"
            f"Description: {description}\n"
            f"Expected a whole number, e.g. {key}={default}"
        ) from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}")
    return value


def _list_env(key: str) -> list[str]:
    """Comma-separated env var as a list, empty entries dropped."""
    return [item.strip() for item in os.getenv(key, "").split(",") if item.strip()]


@dataclass
class SpamGuardSettings:
    """Runtime settings for the spam guard and its service."""

    redis_url: str | None = None
    store_timeout_ms: int = 250
    reference_data_path: str | None = None
    sweep_interval_seconds: int = 60
    audit_queue_size: int = 1000
    admin_api_key: str | None = None
    audit_database_url: str | None = None
    turnstile_secret_key: str | None = None
    rate_limit_max_requests: int = 3
    rate_limit_window_seconds: int = 600
    trusted_proxies: list[str] = field(default_factory=list)
    environment: str = "development"

    @property
    def store_timeout_seconds(self) -> float:
        return self.store_timeout_ms / 1000

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "SpamGuardSettings":
        """Load settings from environment variables."""
        settings = cls(
            redis_url=os.getenv("REDIS_URL") or None,
            store_timeout_ms=_int_env(
                "SPAM_GUARD_STORE_TIMEOUT_MS",
                250,
                "Timeout in milliseconds for each key-value store call",
            ),
            reference_data_path=os.getenv("SPAM_GUARD_REFERENCE_DATA") or None,
            sweep_interval_seconds=_int_env(
                "SPAM_GUARD_SWEEP_INTERVAL_SECONDS",
                60,
                "How often the in-memory store drops expired keys",
            ),
            audit_queue_size=_int_env(
                "SPAM_GUARD_AUDIT_QUEUE_SIZE",
                1000,
                "Maximum number of pending audit events",
            ),
            admin_api_key=os.getenv("SPAM_GUARD_ADMIN_API_KEY") or None,
            audit_database_url=os.getenv("AUDIT_DATABASE_URL") or None,
            turnstile_secret_key=os.getenv("TURNSTILE_SECRET_KEY") or None,
            rate_limit_max_requests=_int_env(
                "SPAM_GUARD_RATE_LIMIT_MAX_REQUESTS",
                3,
                "Registration checks allowed per address in one window",
            ),
            rate_limit_window_seconds=_int_env(
                "SPAM_GUARD_RATE_LIMIT_WINDOW_SECONDS",
                600,
                "Length of the registration rate limit window in seconds",
            ),
            trusted_proxies=_list_env("SPAM_GUARD_TRUSTED_PROXIES"),
            environment=os.getenv("ENVIRONMENT", "development"),
        )

        if settings.reference_data_path and not os.path.isfile(
            settings.reference_data_path
        ):
            raise ConfigurationError(
                f"SPAM_GUARD_REFERENCE_DATA points to a missing file: "
                f"{settings.reference_data_path}"
            )

        if not settings.redis_url and settings.is_production:
            logger.warning(
                "REDIS_URL not set - reputation and timing tokens are kept in memory"
            )

        return settings
