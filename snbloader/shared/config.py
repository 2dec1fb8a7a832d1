# Configuration loader with environment variable support
# Loader tuning comes from an optional YAML file plus command-line overrides;
# store credentials come from the environment.

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import LoaderBaseModel

logger = logging.getLogger(__name__)

DEFAULT_REPORT_FORMAT = "LFDT"


class TransactionConfig(LoaderBaseModel):
    """Batch size and retry/backoff tuning for store commits"""

    size: int = Field(default=128, gt=0)
    retries: int = Field(default=10, ge=0)
    backoff_ms: int = Field(default=1000, ge=0)
    backoff_ceiling_ms: int = Field(default=10000, ge=0)

    @model_validator(mode="after")
    def validate_ceiling(self):
        if self.backoff_ceiling_ms < self.backoff_ms:
            raise ValueError(
                f"backoff_ceiling_ms ({self.backoff_ceiling_ms}) must be >= "
                f"backoff_ms ({self.backoff_ms})"
            )
        return self


class ReportConfig(LoaderBaseModel):
    """Progress report cadence and column selection"""

    interval_seconds: int = Field(default=10, gt=0)
    format: str = DEFAULT_REPORT_FORMAT


class LoaderConfig(LoaderBaseModel):
    """Main loader configuration model"""

    num_loaders: int = Field(default=1, ge=1)
    loader_idx: int = Field(default=0, ge=0)
    num_threads: int = Field(default=1, ge=1)
    seed: Optional[int] = None
    tx: TransactionConfig = Field(default_factory=TransactionConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)

    @model_validator(mode="after")
    def validate_loader_idx(self):
        if self.loader_idx >= self.num_loaders:
            raise ValueError(
                f"loader_idx must be in [0, {self.num_loaders}), got {self.loader_idx}"
            )
        return self


class Settings(BaseSettings):
    """Environment-based settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")

    # Neo4j
    neo4j_uri: str = Field(default="bolt://localhost:7687", alias="NEO4J_URI")
    neo4j_user: str = Field(default="neo4j", alias="NEO4J_USER")
    neo4j_password: str = Field(..., alias="NEO4J_PASSWORD")
    neo4j_database: Optional[str] = Field(default=None, alias="NEO4J_DATABASE")

    # Logging / metrics
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_port: Optional[int] = Field(default=None, alias="METRICS_PORT")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v}")
        return level


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """Return the ``loader`` mapping of a YAML config file."""
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    section = data.get("loader", {}) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'loader' section of {config_path} must be a mapping")
    return section


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> tuple[LoaderConfig, Settings]:
    """
    Load configuration from YAML file, command-line overrides and environment.

    Returns:
        tuple: (LoaderConfig, Settings)

    Raises:
        FileNotFoundError: If a named config file does not exist
        ValueError: If configuration validation fails
    """
    settings = Settings()

    path = config_path or settings.config_path
    config_dict: Dict[str, Any] = read_config_file(Path(path)) if path else {}
    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    try:
        config = LoaderConfig(**config_dict)
    except ValidationError as e:
        raise ValueError(f"Invalid loader configuration: {e}") from e

    return config, settings
