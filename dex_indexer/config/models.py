"""Configuration models for the indexer, sync driver and API"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_SYNC_PAGE_SIZE = 100


class SyncConfig(BaseSettings):
    """Configuration for the upstream feed and the sync driver"""

    rpc_api: str
    page_size: int = MAX_SYNC_PAGE_SIZE
    poll_interval_seconds: float = 5.0
    request_timeout_seconds: float = 30.0
    max_connect_backoff_seconds: float = 60.0

    model_config = SettingsConfigDict(frozen=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: str = Field(alias="DATABASE_URL")
    db_min_pool_size: int = Field(default=5, alias="DB_MIN_POOL_SIZE")
    db_max_pool_size: int = Field(default=20, alias="DB_MAX_POOL_SIZE")

    # Redis (optional shared cache tier)
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")

    # Upstream chain feed
    rpc_api: str = Field(alias="RPC_API")
    sync_page_size: int = Field(default=MAX_SYNC_PAGE_SIZE, alias="SYNC_PAGE_SIZE")
    poll_interval_seconds: float = Field(default=5.0, alias="POLL_INTERVAL_SECONDS")
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")

    # Live delivery and caching
    long_poll_timeout_seconds: float = Field(default=180.0, alias="LONG_POLL_TIMEOUT_SECONDS")
    cache_generate_timeout_seconds: float = Field(
        default=20.0, alias="CACHE_GENERATE_TIMEOUT_SECONDS"
    )
    cache_max_entries: int = Field(default=1000, alias="CACHE_MAX_ENTRIES")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_allowed_origins: str = Field(default="", alias="CORS_ALLOWED_ORIGINS")
    debug_routes: bool = Field(default=False, alias="DEBUG_ROUTES")

    # Monitoring
    prometheus_port: int = Field(default=9090, alias="PROMETHEUS_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def get_cors_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into list"""
        return [
            origin.strip()
            for origin in self.cors_allowed_origins.split(",")
            if origin.strip()
        ]

    def get_sync_config(self) -> SyncConfig:
        """Get sync driver configuration"""
        # page size is restricted to 1..100, falling back to 100 when unset
        page_size = max(1, min(MAX_SYNC_PAGE_SIZE, self.sync_page_size or MAX_SYNC_PAGE_SIZE))
        return SyncConfig(
            rpc_api=self.rpc_api.rstrip("/"),
            page_size=page_size,
            poll_interval_seconds=self.poll_interval_seconds,
            request_timeout_seconds=self.request_timeout_seconds,
        )
