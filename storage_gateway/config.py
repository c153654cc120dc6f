# storage_gateway/config.py
"""
Configuration management using Pydantic Settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    DATABASE_URL: str = "sqlite+aiosqlite:///./storage_gateway.db"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    SLACK_WEBHOOK_URL: Optional[str] = None
    # Secret used to encrypt provider credentials stored in the catalog
    ENCRYPTION_SECRET: Optional[str] = None
    SCHEDULER_ENABLED: bool = True
    EXPIRED_FILE_PURGE_MINUTES: int = 60
    METRICS_PRUNE_HOUR: int = 3
    # Performance metrics ring buffer
    METRICS_MAX_ENTRIES: int = 10000
    METRICS_RETENTION_DAYS: int = 7
    # Optional memory ceiling for the health check; system memory is used when unset
    MEMORY_LIMIT_MB: Optional[float] = None
    MAX_UPLOAD_SIZE_MB: int = 10

    # Google Cloud Storage
    GOOGLE_CLOUD_PROJECT_ID: Optional[str] = None
    GOOGLE_CLOUD_BUCKET_NAME: Optional[str] = None
    GOOGLE_CLOUD_KEYFILE_PATH: Optional[str] = None
    GOOGLE_CLOUD_API_KEY: Optional[str] = None

    # Dropbox (refresh-token trio is optional; access token alone works)
    DROPBOX_ACCESS_TOKEN: Optional[str] = None
    DROPBOX_APP_KEY: Optional[str] = None
    DROPBOX_APP_SECRET: Optional[str] = None
    DROPBOX_REFRESH_TOKEN: Optional[str] = None

    # Mega
    MEGA_EMAIL: Optional[str] = None
    MEGA_PASSWORD: Optional[str] = None

    # Google Drive
    GOOGLE_DRIVE_CLIENT_ID: Optional[str] = None
    GOOGLE_DRIVE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_DRIVE_REFRESH_TOKEN: Optional[str] = None

    # Backblaze B2
    B2_KEY_ID: Optional[str] = None
    B2_APPLICATION_KEY: Optional[str] = None
    B2_BUCKET_NAME: Optional[str] = None

    # Microsoft Graph / OneDrive
    MS_GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    ONEDRIVE_CLIENT_ID: Optional[str] = None
    ONEDRIVE_CLIENT_SECRET: Optional[str] = None
    ONEDRIVE_REFRESH_TOKEN: Optional[str] = None
    ONEDRIVE_TENANT_ID: Optional[str] = None

settings = Settings()
