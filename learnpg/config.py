"""
Configuration settings for the learnpg exercise sandbox.

Uses Pydantic Settings to load environment variables for the three credential
profiles (learner, admin, pooled gateway), statement/session bounds, and the
locations of the exercise catalog and attempt log.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database (learner profile)
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5433, alias="DB_PORT")
    db_user: str = Field("learnpg", alias="DB_USER")
    db_password: str = Field("learnpg_dev", alias="DB_PASSWORD")
    db_name: str = Field("exercises", alias="DB_NAME")
    db_connect_timeout: int = Field(5, alias="DB_CONNECT_TIMEOUT")

    # Elevated profile, used by exercises that need internals access
    db_admin_user: str = Field("learnpg_admin", alias="DB_ADMIN_USER")
    db_admin_password: str = Field("learnpg_admin_dev", alias="DB_ADMIN_PASSWORD")

    # Pooled gateway profile (pgbouncer/pgdog in front of the same database)
    db_pooler_host: str = Field("localhost", alias="DB_POOLER_HOST")
    db_pooler_port: int = Field(6432, alias="DB_POOLER_PORT")

    # Execution bounds
    db_statement_timeout_ms: int = Field(5000, alias="DB_STATEMENT_TIMEOUT_MS")
    session_max_age_seconds: float = Field(30 * 60, alias="SESSION_MAX_AGE_SECONDS")
    session_sweep_interval_seconds: float = Field(5 * 60, alias="SESSION_SWEEP_INTERVAL_SECONDS")
    session_step_timeout_seconds: float = Field(30, alias="SESSION_STEP_TIMEOUT_SECONDS")

    # Exercise catalog and attempt log
    catalog_path: Optional[str] = Field(None, alias="CATALOG_PATH")
    attempts_path: str = Field("results/attempts.jsonl", alias="ATTEMPTS_PATH")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
