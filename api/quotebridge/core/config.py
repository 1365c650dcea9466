from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "quotebridge-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    quote_expiry_days: float = 5.0
    sweep_default_batch_size: int = 100
    sweep_max_batch_size: int = 1000
    digest_batch_size: int = 200
    notification_webhook_url: str | None = None
    notification_webhook_token: str | None = None
    notification_timeout_seconds: float = 10.0
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "quotebridge-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="QB_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
