from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "campaign-notifier-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    machine_credentials_json: str | None = None
    heartbeat_interval_seconds: float = 30.0
    sse_connection_timeout_seconds: float = 1800.0
    sse_queue_max_size: int = 100
    sse_poll_seconds: float = 1.0
    otel_enabled: bool = True
    otel_service_name: str = "campaign-notifier-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: dict[str, str] = {}
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="CN_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
