"""Collector configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings

DEFAULT_CSRF_TTL_MINUTES = 15


class CollectorSettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///collector.db"
    echo_sql: bool = False
    app_title: str = "FormFlow Collector"
    log_level: str = "INFO"
    cors_allow_origins: str = "*"

    # CSRF tokens for public submissions. No secret means issuance is unavailable.
    csrf_secret: str | None = None
    csrf_ttl_minutes: int = DEFAULT_CSRF_TTL_MINUTES

    # Request admission
    max_body_bytes: int = 100_000
    max_message_chars: int = 4000

    # Proof-of-work (ALTCHA) challenges
    altcha_hmac_key: str | None = None
    altcha_max_number: int = 100_000
    altcha_ttl_seconds: int = 600

    # Throttle store maintenance
    throttle_sweep_interval_seconds: float = 300.0
    throttle_entry_max_age_seconds: int = 7200
    throttle_shards: int = 64

    # Integration job worker
    worker_enabled: bool = True
    worker_poll_interval_seconds: float = 1.0
    delivery_timeout_seconds: float = 10.0

    model_config = {"env_prefix": "COLLECTOR_", "env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}

    @property
    def csrf_ttl_seconds(self) -> int:
        minutes = self.csrf_ttl_minutes
        if minutes <= 0:
            minutes = DEFAULT_CSRF_TTL_MINUTES
        return minutes * 60

    @property
    def csrf_configured(self) -> bool:
        return bool(self.csrf_secret and self.csrf_secret.strip())

    @property
    def altcha_configured(self) -> bool:
        return bool(self.altcha_hmac_key and self.altcha_hmac_key.strip())

    @property
    def cors_origins_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]
        return origins or ["*"]


settings = CollectorSettings()
