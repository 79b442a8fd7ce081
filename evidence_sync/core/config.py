"""Configuration settings for the evidence sync service."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Service Configuration
    service_name: str = "evidence-sync-service"
    port: int = 8000
    environment: str = "development"
    debug: bool = False

    # Security
    encryption_key: Optional[str] = None
    encryption_salt: str = "evidence-sync-vault"

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "evidence_sync"
    redis_url: str = "redis://localhost:6379"

    # OAuth2 client-credentials token cache
    token_cache_enabled: bool = False

    # Outbound HTTP
    http_timeout: float = 30.0
    http_retry_attempts: int = 2

    # Sandboxed code execution
    sandbox_timeout: float = 30.0
    sandbox_cpu_seconds: int = 10
    sandbox_memory_mb: int = 512
    sandbox_max_requests: int = 100
    sandbox_max_output_bytes: int = 16 * 1024 * 1024
    sandbox_max_script_bytes: int = 100 * 1024

    # Evidence blob storage
    storage_backend: str = "local"
    storage_local_path: str = "./data/evidence"
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None

    # Failure notifications
    notification_webhook_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
