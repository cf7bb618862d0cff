"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Components never reach for a global: the CLI builds one ``Settings``
instance and passes it into every constructor.

Usage:
    from alert_relay.core.config import get_settings
    settings = get_settings()
    print(settings.DATABASE_URL)
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ntfy topic names: letters, digits, underscore, hyphen
TOPIC_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

MIN_POLL_SECONDS = 60
MIN_MAINTENANCE_SECONDS = 3600


def is_valid_topic_name(topic: Optional[str]) -> bool:
    """True when ``topic`` is non-empty and uses only the allowed characters."""
    if topic is None:
        return False
    topic = topic.strip()
    return bool(topic) and TOPIC_PATTERN.match(topic) is not None


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "alert-relay"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL
    CONTACT_EMAIL: str = "you@example.com"

    # ── Database ──
    DATABASE_URL: str = "sqlite:///data/alerts.sqlite"
    DATABASE_BUSY_TIMEOUT: int = 30  # seconds a writer waits on a locked db
    DATABASE_ECHO: bool = False  # log SQL queries

    # ── Upstream feed ──
    WEATHER_API_URL: str = "https://api.weather.gov/alerts/active"
    FEED_TIMEOUT_SECONDS: float = 20.0
    API_RATE_PER_MINUTE: int = 4

    # ── Scheduler ──
    POLL_MINUTES: int = 3
    VACUUM_HOURS: int = 24
    SENT_RETENTION_DAYS: int = 30

    # ── Message composition ──
    TIMEZONE: str = "America/Indianapolis"  # fallback for subscribers without one

    # ── Pushover ──
    PUSHOVER_ENABLED: bool = True
    PUSHOVER_API_URL: str = "https://api.pushover.net/1/messages.json"
    PUSHOVER_RATE_SECONDS: float = 2.0  # minimum gap between sends
    PUSHOVER_TIMEOUT_SECONDS: float = 15.0

    # ── ntfy ──
    NTFY_ENABLED: bool = False
    NTFY_BASE_URL: str = "https://ntfy.sh"
    NTFY_TOPIC: str = ""  # fallback when a subscriber has no topic
    NTFY_USER: Optional[str] = None
    NTFY_PASSWORD: Optional[str] = None
    NTFY_TOKEN: Optional[str] = None
    NTFY_TITLE_PREFIX: Optional[str] = None
    NTFY_RATE_PER_MINUTE: int = 60
    NTFY_TIMEOUT_SECONDS: float = 15.0
    NTFY_RETRY_DELAY_SECONDS: float = 0.5

    # ── Delivery ──
    DELIVERY_MAX_ATTEMPTS: int = 3
    DELIVERY_WORKERS: int = 1  # >1 fans deliveries out over a thread pool

    # ── Enrichment ──
    MAP_CLICK_URL: str = (
        "https://forecast.weather.gov/MapClick.php"
        "?lat={lat}&lon={lon}&lg=english&FcstType=graphical&menu=1"
    )

    @model_validator(mode="after")
    def _check_ntfy_topic(self) -> "Settings":
        if self.NTFY_ENABLED and self.NTFY_TOPIC and not is_valid_topic_name(self.NTFY_TOPIC):
            raise ValueError(
                f'Invalid NTFY_TOPIC "{self.NTFY_TOPIC}": topic names can only contain '
                "letters (A-Z, a-z), numbers (0-9), underscores (_), and hyphens (-)"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def poll_interval_seconds(self) -> int:
        return max(MIN_POLL_SECONDS, self.POLL_MINUTES * 60)

    @property
    def maintenance_interval_seconds(self) -> int:
        return max(MIN_MAINTENANCE_SECONDS, self.VACUUM_HOURS * 3600)

    @property
    def user_agent(self) -> str:
        # weather.gov asks callers to identify themselves with a contact
        return f"{self.APP_NAME}/{self.APP_VERSION} ({self.CONTACT_EMAIL})"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings for process bootstrap."""
    return Settings()
