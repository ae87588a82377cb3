"""Configuration management for the helpdesk service."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./helpdesk.db"

    # Public URL of the web UI, used for ticket links in payloads and emails
    public_base_url: str = "http://localhost:5173"

    # Primary administrator (created on startup, protected from edits)
    admin_email: str = "admin@example.com"
    admin_name: str = "Administrator"

    # ClickUp (fallback when no config is stored in the database)
    clickup_api_token: str = ""
    clickup_list_id: str = ""
    clickup_webhook_secret: str = ""

    # n8n inbound webhooks
    n8n_webhook_secret: str = ""

    # Outbound webhooks
    webhook_timeout_seconds: float = 30.0
    webhook_max_retries: int = 3
    webhook_queue_max_attempts: int = 3
    webhook_queue_batch_size: int = 10
    webhook_queue_interval_minutes: int = 1
    webhook_queue_retention_days: int = 7

    # Slack
    slack_bot_token: str = ""
    slack_channel: str = ""
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "07:00"

    # Email
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = "helpdesk@example.com"
    smtp_use_tls: bool = True

    # Scheduling
    deadline_check_interval_minutes: int = 15

    # Collaborative comment threads
    collab_max_connections: int = 20
    collab_connection_timeout_seconds: float = 5.0
    collab_max_retries: int = 5
    collab_retry_delay_seconds: float = 2.0

    # Notification rules
    notifications_config_path: str = "config/notifications.yaml"

    # App
    log_level: str = "INFO"
    env: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
