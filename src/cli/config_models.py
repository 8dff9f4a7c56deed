"""Pydantic configuration models for the trip concierge."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

VALID_LLM_PROVIDERS = {"auto", "claude", "openai"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
VALID_STORAGE_BACKENDS = {"memory", "sqlite"}
WEEKDAY_NAMES = {"monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"}


def _expand_env(value: Optional[str]) -> Optional[str]:
    """``${VAR}`` -> value of VAR (empty string when unset)."""
    if value and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1], "")
    return value


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    provider: str = "auto"
    model: Optional[str] = None  # None = use provider default
    cheap_model: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: int = 3000
    reducer_max_tokens: int = 1500

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v not in VALID_LLM_PROVIDERS:
            raise ValueError(f"Invalid LLM provider: {v}. Must be one of {VALID_LLM_PROVIDERS}")
        return v


class CatalogConfig(BaseModel):
    """Service catalog source: an HTTP API when base_url is set, else a local fixture file."""

    base_url: Optional[str] = None
    api_key: Optional[str] = None
    fixture: Optional[Path] = Path("data/austin_catalog.yaml")
    max_results: int = 50
    timeout: float = 15.0
    concurrency: int = 4

    @model_validator(mode="after")
    def check_source(self):
        if self.fixture is not None:
            self.fixture = self.fixture.expanduser()
        if not self.base_url and self.fixture is None:
            raise ValueError("catalog needs either base_url or fixture")
        return self

    @property
    def uses_http(self) -> bool:
        return bool(self.base_url)


class PlannerConfig(BaseModel):
    """Conversation and planning behaviour."""

    supported_city: str = "Austin"
    recent_messages: int = 6
    guided_weekdays: list[str] = Field(default_factory=lambda: ["friday", "saturday"])
    max_catalog_items: int = 80

    @field_validator("guided_weekdays")
    @classmethod
    def validate_weekdays(cls, v: list[str]) -> list[str]:
        lowered = [d.strip().lower() for d in v]
        unknown = [d for d in lowered if d not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Invalid weekday(s) in guided_weekdays: {unknown}")
        return lowered


class StorageConfig(BaseModel):
    """Conversation persistence."""

    backend: str = "memory"
    sqlite_path: Path = Path("~/.concierge/conversations.db")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in VALID_STORAGE_BACKENDS:
            raise ValueError(f"Invalid storage backend: {v}. Must be one of {VALID_STORAGE_BACKENDS}")
        return v

    @model_validator(mode="after")
    def expand_paths(self):
        self.sqlite_path = self.sqlite_path.expanduser()
        return self


class RetryConfig(BaseModel):
    """Retry behaviour for catalog and LLM calls."""

    max_attempts: int = 3
    min_wait: float = 2.0
    max_wait: float = 10.0
    llm_max_wait: float = 30.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_mode: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v


class ConciergeConfig(BaseModel):
    """Main configuration model."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def expand_env_vars(self):
        """Expand ${VAR} patterns in API keys."""
        self.llm.api_key = _expand_env(self.llm.api_key)
        self.catalog.api_key = _expand_env(self.catalog.api_key)
        self.catalog.base_url = _expand_env(self.catalog.base_url)
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "ConciergeConfig":
        """Create config from a parsed YAML dict."""
        catalog = data.get("catalog")
        if isinstance(catalog, dict) and isinstance(catalog.get("fixture"), str):
            catalog["fixture"] = Path(catalog["fixture"])
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        return self.model_dump(mode="python")
