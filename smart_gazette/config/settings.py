from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SMART_GAZETTE_",
        extra="ignore",
    )

    sqlite_path: Path = Path("data/smart_gazette.sqlite3")
    pdf_storage_dir: Path = Path("data/gazettes")

    pipeline_config_path: Path = Path("smart_gazette/config/pipeline.yaml")
    prompts_root: Path = Path("smart_gazette/prompts")
    schemas_dir: Path = Path("smart_gazette/prompts/schemas/field")

    default_provider: str = "google"
    text_model: str = "gemini-2.5-pro"
    fast_model: str = "gemini-2.5-flash"
    vision_model: str = "gemini-2.5-flash"

    max_attempts: int = Field(default=3, ge=1)
    text_retry_base_delay_seconds: float = Field(default=2.0, ge=0)
    vision_retry_base_delay_seconds: float = Field(default=5.0, ge=0)
    notice_pacing_seconds: float = Field(default=0.5, ge=0)

    ocr_dpi: int = Field(default=300, ge=72, le=600)
    header_char_limit: int = Field(default=2_000, ge=1)
    triage_char_limit: int = Field(default=4_000, ge=1)
    significance_threshold: int = Field(default=8, ge=1, le=10)

    webhook_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "SMART_GAZETTE_WEBHOOK_URL",
            "IFTTT_WEBHOOK_URL",
        ),
    )
    webhook_timeout_seconds: float = Field(default=10.0, gt=0)

    log_level: str = "INFO"
    log_file: Path | None = None

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SMART_GAZETTE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    google_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SMART_GAZETTE_GOOGLE_API_KEY", "GOOGLE_API_KEY"),
    )

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_sqlite_path(self) -> Path:
        return self._resolve_path(self.sqlite_path)

    @property
    def resolved_pdf_storage_dir(self) -> Path:
        return self._resolve_path(self.pdf_storage_dir)

    @property
    def resolved_pipeline_config_path(self) -> Path:
        return self._resolve_path(self.pipeline_config_path)

    @property
    def resolved_prompts_root(self) -> Path:
        return self._resolve_path(self.prompts_root)

    @property
    def resolved_schemas_dir(self) -> Path:
        return self._resolve_path(self.schemas_dir)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def pipeline_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_pipeline_config_path)

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
