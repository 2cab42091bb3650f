from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_instance_id: str = Field(
        default="aequanimitas-v4.5.1-fix",
        description="Application instance id used to namespace remote paths and local keys",
    )
    timezone: str = Field(
        default="",
        description="IANA timezone for calendar-day boundaries (empty = system local)",
    )

    common_moods_limit: int = Field(default=2, description="Number of most frequent moods reported")

    local_cache_path: str = Field(default="data/local_cache.db", description="SQLite fallback cache path")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/reflection_sync.log", description="Log file path")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "REFLECTION_",
        "extra": "ignore",
    }


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
