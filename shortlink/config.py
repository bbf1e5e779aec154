"""Configuration management for the shortlink core.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram - get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 - Import**::
    from shortlink.config import get_settings

**Step 2 - Get settings**::
    settings = get_settings()
    salt = settings.HASHIDS_SALT

**Step 3 - Pick backends once at start-up**::
    if settings.ALLOCATOR_BACKEND is AllocatorBackend.REDIS:
        ...

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Backend selectors are parsed into enums, unknown values fail validation.
- Only the runtime (shortlink.dependencies) reads settings to wire backends;
  the orchestrator receives everything it needs explicitly.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortlink.enums import AllocatorBackend, CacheBackend


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Durable store
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (cache + counter)
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # Short code codec
    HASHIDS_SALT: str = "change-me"
    HASHIDS_MIN_LENGTH: int = 5
    SHORT_CODE_MAX_LENGTH: int = 32

    # Cache-aside lookup
    CACHE_BACKEND: CacheBackend = CacheBackend.REDIS
    CACHE_TTL_SECONDS: int = 604800  # 7 days
    CACHE_KEY_PREFIX: str = "shortlink"

    # Sequential ID allocator
    ALLOCATOR_BACKEND: AllocatorBackend = AllocatorBackend.REDIS
    ID_COUNTER_KEY: str = "url_shortener:id_counter"
    KEYGEN_SERVICE_URL: str = "http://keygen:8010"
    KEYGEN_TIMEOUT_SECONDS: float = 2.0

    # Deduplication scope
    OWNER_FALLBACK_TO_ANONYMOUS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
