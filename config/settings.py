#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Centralized configuration management
"""

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings

from .constants import (
    INGEST_SLICE_SIZE,
    INGEST_INTER_SLICE_DELAY_MS,
    INGEST_INTER_TARGET_DELAY_MS,
    INGEST_MAX_RETRIES,
    INGEST_RETRY_BACKOFF_BASE_MS,
    INGEST_HARD_TIMEOUT_MS,
    INGEST_EXHAUSTED_RETRY_POLICY,
    RUN_STORE_FILE,
)


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    # ========== Remote processor ==========
    # Base URL of the functions gateway, e.g. https://<project>.supabase.co/functions/v1
    remote_base_url: str = "http://localhost:54321/functions/v1"
    remote_api_key: str = ""
    # Table and object storage endpoints used by the document preparation step
    rest_base_url: str = "http://localhost:54321/rest/v1"
    storage_base_url: str = "http://localhost:54321/storage/v1"
    storage_bucket: str = "pdf-documents"

    # ========== Engine (all overridable from .env) ==========
    slice_size: int = INGEST_SLICE_SIZE
    inter_slice_delay_ms: int = INGEST_INTER_SLICE_DELAY_MS
    inter_target_delay_ms: int = INGEST_INTER_TARGET_DELAY_MS
    max_retries: int = INGEST_MAX_RETRIES
    retry_backoff_base_ms: int = INGEST_RETRY_BACKOFF_BASE_MS
    hard_timeout_ms: int = INGEST_HARD_TIMEOUT_MS
    exhausted_retry_policy: str = INGEST_EXHAUSTED_RETRY_POLICY  # abort | skip

    # ========== Run persistence ==========
    run_store_path: Path = BASE_DIR / RUN_STORE_FILE
    run_store_enabled: bool = True

    # ========== Logging ==========
    log_level: str = "INFO"

    # ========== Directories ==========
    data_dir: Path = BASE_DIR / "data"
    logs_dir: Path = BASE_DIR / "logs"

    # Country code sent with legal ingestion calls
    country_code: Optional[str] = "MA"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env that aren't defined in model

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Create directories
        for dir_path in [
            self.data_dir,
            self.logs_dir,
            self.run_store_path.parent,
        ]:
            dir_path.mkdir(exist_ok=True, parents=True)

    def engine_summary(self) -> dict:
        """Engine knobs as a plain dict (logged at CLI start-up)"""
        return {
            "slice_size": self.slice_size,
            "inter_slice_delay_ms": self.inter_slice_delay_ms,
            "inter_target_delay_ms": self.inter_target_delay_ms,
            "max_retries": self.max_retries,
            "retry_backoff_base_ms": self.retry_backoff_base_ms,
            "hard_timeout_ms": self.hard_timeout_ms,
            "exhausted_retry_policy": self.exhausted_retry_policy,
        }


# Global settings instance
settings = Settings()
