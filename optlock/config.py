from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "optlock"
    # Local SQLite file unless OPTLOCK_DATABASE_URL points elsewhere
    database_url: str = "sqlite+aiosqlite:///./optlock.db"

    # echo=True makes SQLAlchemy log every statement it emits
    echo_sql: bool = False

    log_level: str = "INFO"
    # JSON log lines are also appended here when set
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="OPTLOCK_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
