"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (queue executor, delivery dedup, heartbeats, alert cooldowns)
    redis_url: str = "redis://localhost:6379/0"

    # Signature verification escape hatch - ignored when app_env == "production"
    allow_unsigned_webhooks: bool = False

    # Processing
    webhook_executor: str = "inline"  # inline, queue
    webhook_handler_timeout_seconds: float = 30.0
    webhook_worker_concurrency: int = 10
    webhook_worker_in_process: bool = True  # run the queue worker inside the API process
    retry_poll_interval_seconds: int = 30
    retry_batch_size: int = 50
    processing_timeout_minutes: int = 10
    delivery_dedup_window_seconds: int = 86400

    # Operator listing
    webhook_list_limit: int = 100
    dashboard_jwt_secret: str = ""
    allowed_origins: str = ""  # Comma-separated CORS origins

    # Sentry
    sentry_dsn: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
