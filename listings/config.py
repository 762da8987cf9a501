"""Listings configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class ListingsSettings(BaseSettings):
    environment: str = "development"
    app_title: str = "Listings Sync"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///listings.db"
    echo_sql: bool = False

    # External business-profile APIs
    gbp_account_api_url: str = "https://mybusinessaccountmanagement.googleapis.com/v1"
    gbp_business_info_api_url: str = "https://mybusinessbusinessinformation.googleapis.com/v1"
    gbp_v4_api_url: str = "https://mybusiness.googleapis.com/v4"
    gbp_performance_api_url: str = "https://businessprofileperformance.googleapis.com/v1"
    google_userinfo_url: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    gbp_request_timeout_seconds: float = 60.0
    gbp_request_max_attempts: int = 3

    # Sync pipeline
    sync_max_concurrent_locations: int = 5
    sync_heartbeat_interval_seconds: float = 15.0
    sync_save_max_retries: int = 3
    sync_save_base_delay_seconds: float = 1.0
    sync_save_max_delay_seconds: float = 30.0
    sync_fetch_timeout_seconds: float = 120.0
    sync_save_timeout_seconds: float = 120.0
    sync_insights_lookback_days: int = 120
    sync_keywords_lookback_months: int = 3
    sync_event_queue_size: int = 1000

    # Run summary cache
    response_cache_max_entries: int = 80
    response_cache_ttl_seconds: int = 300

    model_config = {"env_prefix": "LISTINGS_", "env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url


settings = ListingsSettings()
