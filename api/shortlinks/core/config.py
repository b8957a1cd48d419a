from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PLATFORM_DOMAINS = [
    "dub.sh",
    "dub.link",
    "chatg.pt",
    "amzn.id",
    "spti.fi",
    "git.new",
    "cal.link",
    "fig.page",
    "ggl.link",
    "figma.link",
]


class Settings(BaseSettings):
    app_name: str = "shortlinks-api"
    environment: str = "dev"
    app_domain: str = "http://localhost:8888"
    internal_api_key: str | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    redis_url: str = "redis://localhost:6379/0"
    storage_base_url: str = "http://localhost:9000/shortlinks"
    storage_access_token: str | None = None
    storage_timeout_seconds: float = 30.0
    qstash_url: str = "https://qstash.upstash.io"
    qstash_token: str | None = None
    qstash_current_signing_key: str | None = None
    qstash_next_signing_key: str | None = None
    qstash_allow_unsigned: bool = False
    qstash_timeout_seconds: float = 10.0
    vercel_api_url: str = "https://api.vercel.com"
    vercel_api_token: str | None = None
    vercel_project_id: str | None = None
    vercel_team_id: str | None = None
    resend_api_url: str = "https://api.resend.com"
    resend_api_key: str | None = None
    email_from: str = "Shortlinks <system@localhost>"
    csv_import_max_rows_per_execution: int = 25
    platform_domains: list[str] = DEFAULT_PLATFORM_DOMAINS
    otel_enabled: bool = True
    otel_service_name: str = "shortlinks-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="SL_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
