# ean_intake/settings.py
"""
EAN Intake Settings - PostgreSQL row store + local bucket blob store.
"""
from __future__ import annotations
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs, supplier upload bucket)
    # =========================================================================
    EAN_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "ean-data"),
        validation_alias=AliasChoices("EAN_DATA_ROOT", "ean_data_root", "data_root"),
    )
    STORAGE_BUCKET: str = Field(default="supplier-uploads", validation_alias="STORAGE_BUCKET")

    # =========================================================================
    # PostgreSQL Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="ean_intake", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Full async URL override (e.g. sqlite+aiosqlite:///./ean.db)
    DB_URL: str = Field(default="", validation_alias=AliasChoices("DB_URL", "EAN_DB_URL"))

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")
    DB_CREATE_SCHEMA: bool = Field(
        default=False,
        validation_alias="DB_CREATE_SCHEMA",
        description="Create missing tables on startup",
    )

    # =========================================================================
    # Upload / conversion limits
    # =========================================================================
    MAX_UPLOAD_BYTES: int = Field(default=50 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")
    MAX_JSON_BYTES: int = Field(default=50 * 1024 * 1024, validation_alias="MAX_JSON_BYTES")

    # =========================================================================
    # EAN policy
    # =========================================================================
    EAN_SAMPLE_ROWS: int = Field(default=100, validation_alias="EAN_SAMPLE_ROWS")
    EAN_COLUMN_MIN_VALUES: int = Field(default=5, validation_alias="EAN_COLUMN_MIN_VALUES")
    EAN_COLUMN_MIN_RATIO: float = Field(default=0.8, validation_alias="EAN_COLUMN_MIN_RATIO")
    EAN_ACCEPT_PERCENT: float = Field(default=95.0, validation_alias="EAN_ACCEPT_PERCENT")

    # =========================================================================
    # Pipeline
    # =========================================================================
    ACTIVATION_BATCH_SIZE: int = Field(default=500, validation_alias="ACTIVATION_BATCH_SIZE")
    STUCK_ANALYSIS_MINUTES: int = Field(default=5, validation_alias="STUCK_ANALYSIS_MINUTES")
    AUTO_DRAIN: bool = Field(
        default=True,
        validation_alias="AUTO_DRAIN",
        description="Drain the next queue in a background task after a stage succeeds",
    )

    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"],
        validation_alias="CORS_ORIGINS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
