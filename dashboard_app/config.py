from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    
    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """
    
    # Environment
    environment: str = "development"
    
    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    
    # Cache defaults (milliseconds)
    cache_default_ttl_ms: int = 5 * 60 * 1000  # 5 minutes
    cache_default_storage: str = "memory"  # Options: "memory", "redis", "sqlite"
    cache_persist_on_set: bool = False
    
    # Redis tier (small, prefixed key/value store)
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "monday_ai_"
    redis_quota_bytes: int = 5 * 1024 * 1024  # 5 MiB
    redis_fallback_to_memory: bool = True
    
    # SQLite tier (durable structured store)
    sqlite_path: str = "monday_ai_cache.db"
    sqlite_store_name: str = "cache_store"
    sqlite_schema_version: int = 1
    
    # Connectivity watcher
    connectivity_probe_url: str = "https://api.monday.com/v2"
    connectivity_probe_timeout: float = 3.0  # seconds
    connectivity_poll_interval: float = 10.0  # seconds
    
    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
