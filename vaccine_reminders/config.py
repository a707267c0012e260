"""Application configuration settings."""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "sqlite"
    db_password: str = ""
    db_name: str = "vaccine_reminders"

    # Application Settings
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"

    # Scheduler Settings
    dispatcher_enabled: bool = True
    dispatch_interval_seconds: int = 60
    dispatch_max_workers: int = 4
    delivery_timeout_seconds: float = 10.0
    lock_timeout_seconds: float = 5.0

    # Reminder Defaults
    default_notification_methods: List[str] = ["website", "email"]
    default_advance_notification_days: List[int] = [7, 1]
    default_time_of_day: str = "09:00"
    default_scheduled_time: str = "09:00"

    # Government Schedule Sync
    government_sync_max_age_months: int = 72
    government_sync_time: str = "09:00"

    # Push (website) delivery
    push_server_url: str = "https://ntfy.sh"
    push_topic_prefix: str = "vaccine-reminders"

    # SMS / WhatsApp gateway
    sms_gateway_url: Optional[str] = None
    whatsapp_gateway_url: Optional[str] = None
    gateway_api_key: Optional[str] = None

    # Email delivery
    smtp_server: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    from_email: str = "reminders@localhost"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def database_url(self) -> str:
        """Construct database URL from configuration."""
        # Use SQLite if DB_USER is 'sqlite'
        if self.db_user.lower() == 'sqlite':
            return f"sqlite:///./{self.db_name}.db"
        return f"mysql+pymysql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"


# Global settings instance
settings = Settings()
