from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    log_level: str = "INFO"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "local-maintenance"
    api_key: str = "local-maintenance-key"
    request_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 60.0
    max_backoff_seconds: float = 900.0
    expiry_sweep_interval_seconds: float = 86400.0
    expiry_sweep_batch_size: int = 100
    expiry_sweep_max_batches: int = 20
    job_digest_enabled: bool = True
    job_digest_interval_seconds: float = 86400.0
    job_digest_batch_size: int = 200
    job_digest_max_pages: int = 50
    otel_enabled: bool = True
    otel_service_name: str = "quotebridge-workers"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="QB_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
