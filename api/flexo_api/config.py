"""Application configuration."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    postgres_host: str = "postgres"
    postgres_port: int = 5432
    postgres_user: str = "flexo"
    postgres_password: str = "changeme"
    postgres_db: str = "flexo_programs_db"
    database_url_override: Optional[str] = None

    # Redis (used by the redis notifier backend)
    redis_url: str = "redis://redis:6379/0"
    redis_channel: str = "flexo:machine-programs"

    # Notifications: memory, redis or none
    notifier_backend: str = "memory"
    notifier_queue_size: int = 100

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = True

    # Machine fleet
    machine_number_min: int = 11
    machine_number_max: int = 21

    # Snapshot archive storage: local or s3
    snapshot_storage_provider: str = "local"
    snapshot_storage_path: str = "./backups/machines"
    snapshot_s3_bucket: Optional[str] = None
    snapshot_s3_region: str = "us-east-1"
    snapshot_s3_endpoint_url: Optional[str] = None
    snapshot_s3_access_key_id: Optional[str] = None
    snapshot_s3_secret_access_key: Optional[str] = None

    # Automatic snapshots
    snapshot_scheduler_enabled: bool = True
    snapshot_interval_hours: float = 24.0
    snapshot_initial_delay_seconds: float = 300.0
    snapshot_retention_days: int = 30

    # Snapshot format
    snapshot_format_version: str = "1.0"
    application_version: str = "flexo-programs 0.1.0"

    # Environment
    environment: str = "development"

    @property
    def database_url(self) -> str:
        """Build database URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


settings = Settings()
