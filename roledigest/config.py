"""Application configuration loaded from config.yaml and environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from roledigest.capabilities import Capabilities

PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_YAML_PATH = PROJECT_ROOT / "config.yaml"


# --- YAML sub-models ---


class ScheduleConfig(BaseModel):
    """Weekly digest trigger settings."""

    day_of_week: str = "mon"
    hour: int = 8
    minute: int = 0
    timezone: str = "America/Los_Angeles"


class DigestConfig(BaseModel):
    """Digest pipeline limits."""

    max_items: int = 12
    fallback_items: int = 6
    history_digests: int = 6
    summary_batch_size: int = 10
    min_useful_text: int = 160
    max_source_text: int = 12_000


class SearchConfig(BaseModel):
    """Search and knowledge-base provider settings."""

    result_count: int = 10
    timeout_seconds: float = 10.0


class GeminiConfig(BaseModel):
    """Gemini model configuration."""

    model: str = "gemini-2.5-flash"
    timeout_seconds: float = 60.0


# --- Main settings ---


class Settings(BaseSettings):
    """Application settings combining .env secrets and config.yaml values."""

    # App config
    env: str = Field(default="dev")
    log_format: Literal["text", "json"] = Field(default="text")
    enable_internal_scheduler: bool = Field(default=True)
    cors_origins: str = Field(default="http://localhost:5173")
    client_origin: str = Field(default="http://localhost:5173")
    pipeline_trigger_token: str = Field(default="")

    # Provider secrets and feature flags
    gemini_api_key: str = Field(default="")
    serper_api_key: str = Field(default="")
    allow_wikidata_lookup: bool = Field(default=True)
    allow_source_fetch: bool = Field(default=False)

    # Storage
    storage_backend: Literal["supabase", "sqlite"] = Field(default="supabase")
    sqlite_path: str = Field(default=str(PROJECT_ROOT / "data" / "roledigest.db"))
    supabase_url: str = Field(default="")
    supabase_publishable_key: str = Field(default="")
    supabase_anon_key: str = Field(default="")
    supabase_secret_key: str = Field(default="")
    supabase_service_role_key: str = Field(default="")
    supabase_jwt_secret: str = Field(default="")

    # Email
    smtp_url: str = Field(default="")
    email_from: str = Field(default="Role Model Digest <digest@rolemodeldigest.com>")

    # YAML-sourced config (populated via model_validator)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)

    model_config = {
        "env_file": str(PROJECT_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def __init__(self, **kwargs: Any) -> None:
        yaml_data = _load_yaml_config()
        merged = {**yaml_data, **kwargs}
        super().__init__(**merged)

    @property
    def effective_supabase_publishable_key(self) -> str:
        """Prefer the new publishable key, falling back to the legacy anon key."""
        return self.supabase_publishable_key or self.supabase_anon_key

    @property
    def effective_supabase_secret_key(self) -> str:
        """Prefer the new secret key, falling back to the legacy service role key."""
        return self.supabase_secret_key or self.supabase_service_role_key

    @property
    def capabilities(self) -> Capabilities:
        """Feature switches derived from configured credentials and flags."""
        return Capabilities.from_settings(self)


def _load_yaml_config() -> dict[str, Any]:
    """Read and parse config.yaml, returning an empty dict on failure."""
    if not CONFIG_YAML_PATH.exists():
        return {}
    with CONFIG_YAML_PATH.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
