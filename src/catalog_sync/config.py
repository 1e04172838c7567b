from typing import Optional

from pydantic_settings import BaseSettings

from catalog_sync.shopify.errors import ConfigurationError


class Settings(BaseSettings):
    shopify_store_domain: str = ""
    shopify_access_token: str = ""
    shopify_api_version: str = "2024-01"
    shopify_webhook_secret: str = ""
    database_url: str = "sqlite:///./catalog_sync.db"

    # Sync lifecycle
    sync_poll_interval_seconds: float = 3.0
    sync_max_wait_seconds: float = 600.0
    sync_lease_minutes: int = 15
    sync_orphan_minutes: int = 30
    sync_schedule_hours: int = 6
    sync_use_field_mappings: bool = False
    transform_skip_backup: bool = False

    # Remote retry policy
    retry_max_attempts: int = 4
    retry_base_delay_seconds: float = 2.0
    retry_max_jitter_seconds: float = 0.5

    # Health monitor
    health_window_hours: int = 24
    health_success_rate_threshold: float = 0.8
    health_consecutive_failure_threshold: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def require_shopify(self) -> None:
        """Raise ConfigurationError unless store domain and token are set."""
        missing = [
            name
            for name, value in (
                ("SHOPIFY_STORE_DOMAIN", self.shopify_store_domain),
                ("SHOPIFY_ACCESS_TOKEN", self.shopify_access_token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Shopify is not configured; set {', '.join(missing)}"
            )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
