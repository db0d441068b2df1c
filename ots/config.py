"""Runtime configuration loaded from environment variables."""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./ots.db"


def _env_int(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to default.

    Zero, negative and unparseable values are treated as unset.
    """
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Non-positive value for {name}: {value}, using default {default}")
        return default
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Service settings.

    All durations are in seconds. The TTL range is inclusive on both ends.
    """

    database_url: str = DEFAULT_DATABASE_URL
    max_secret_size: int = 32768
    default_ttl: int = 3600
    min_ttl: int = 300
    max_ttl: int = 86400
    cleanup_interval: int = 300
    rate_limit_requests: int = 30
    rate_limit_window: int = 60
    rate_limit_reap_interval: int = 60
    request_timeout: int = 30
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    environment: str = "development"
    log_level: str = "INFO"
    testing: bool = False
    debug: bool = False
    port: int = 8080

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        settings = cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            max_secret_size=_env_int("MAX_SECRET_SIZE", 32768),
            default_ttl=_env_int("DEFAULT_TTL", 3600),
            min_ttl=_env_int("MIN_TTL", 300),
            max_ttl=_env_int("MAX_TTL", 86400),
            cleanup_interval=_env_int("CLEANUP_INTERVAL", 300),
            rate_limit_requests=_env_int("RATE_LIMIT_REQUESTS", 30),
            rate_limit_window=_env_int("RATE_LIMIT_WINDOW", 60),
            rate_limit_reap_interval=_env_int("RATE_LIMIT_REAP_INTERVAL", 60),
            request_timeout=_env_int("REQUEST_TIMEOUT", 30),
            cors_origins=_env_list("CORS_ORIGINS", ["*"]),
            environment=os.getenv("ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            testing=_env_bool("OTS_TESTING"),
            debug=_env_bool("OTS_DEBUG"),
            port=_env_int("PORT", 8080),
        )

        if settings.min_ttl > settings.max_ttl:
            raise ValueError(
                f"MIN_TTL ({settings.min_ttl}) must not exceed MAX_TTL ({settings.max_ttl})"
            )

        return settings
