"""
Application configuration using 12-factor environment variables.
"""
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Pingchat Marketplace Service")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Security
    webhook_secret: Optional[str] = Field(default=None, description="HMAC-SHA256 secret for signed write requests")

    # Databases
    database_url: str = Field(default="sqlite+aiosqlite:///./data/pingchat.db")
    offline_queue_url: str = Field(default="sqlite+aiosqlite:///./data/offline_queue.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    # Message content
    message_max_length: int = Field(default=500, ge=1)
    message_spam_threshold: int = Field(default=5, ge=0)
    forbidden_patterns: List[str] = Field(
        default=[r"javascript\s*:", r"<\s*script", r"\bon(load|error)\s*="],
        description="Regexes that reject a message outright",
    )

    # Rate limits (per user, per action kind)
    ping_rate_capacity: int = Field(default=5, ge=1)
    ping_rate_window_seconds: int = Field(default=86400, ge=1)
    message_rate_capacity: int = Field(default=30, ge=1)
    message_rate_window_seconds: int = Field(default=60, ge=1)
    rate_limit_fail_open: bool = Field(
        default=False,
        description="Admit actions when the limiter store is unreachable",
    )

    # Offline queue
    offline_queue_max_retries: int = Field(default=3, ge=0)
    offline_queue_max_size: int = Field(default=100, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=15.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    backoff_jitter: float = Field(default=0.2, ge=0, le=1)

    # Connectivity checks while the store is unreachable
    connectivity_check_interval_seconds: float = Field(default=5.0, gt=0)

    @property
    def is_webhook_secret_configured(self) -> bool:
        """Check if the request signing secret is properly configured."""
        return bool(self.webhook_secret and len(self.webhook_secret) > 0)

    def rate_policy(self, action_kind: str) -> Tuple[int, int]:
        """Return (capacity, window_seconds) for an action kind."""
        policies = {
            "ping": (self.ping_rate_capacity, self.ping_rate_window_seconds),
            "message": (self.message_rate_capacity, self.message_rate_window_seconds),
        }
        if action_kind not in policies:
            raise ValueError(f"Unknown rate-limited action kind: {action_kind}")
        return policies[action_kind]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
