"""Configuration management using Pydantic for validation."""

from pathlib import Path
from typing import Any, Dict, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NormalizationConfig(BaseSettings):
    """Value normalization configuration."""

    days_per_month: int = Field(default=30, ge=1)
    max_default_value_length: int = Field(default=100, ge=1)


class UnificationConfig(BaseSettings):
    """Entity unification configuration."""

    # Relative tolerance for numeric values (0.001 == 0.1% of the larger magnitude)
    numeric_tolerance: float = Field(default=0.001, ge=0.0)
    excerpt_max_length: int = Field(default=200, ge=1)
    default_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    dedup_key_length: int = Field(default=16, ge=4, le=64)


class TimelineConfig(BaseSettings):
    """Timeline resolution configuration."""

    critical_window_days: int = Field(default=30, ge=0)
    default_importance: Literal["CRITICAL", "HIGH", "MEDIUM", "LOW"] = "MEDIUM"


class BatchConfig(BaseSettings):
    """Page batching configuration."""

    word_cap: int = Field(default=8000, ge=1)
    max_pages_per_batch: int = Field(default=10, ge=1)
    context_entity_limit: int = Field(default=50, ge=0)


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "text"] = "text"
    file: str | None = "logs/licitagraph.log"
    max_size_mb: int = 100
    backup_count: int = 5

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate the log level name."""
        valid = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"Invalid log level '{v}'. Must be one of {sorted(valid)}.")
        return upper


class DatabaseConfig(BaseSettings):
    """Database configuration from environment variables."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    storage_backend: Literal["memory", "neo4j"] = Field(default="memory")

    # Neo4j
    neo4j_uri: str = Field(default="bolt://localhost:7687")
    neo4j_user: str = Field(default="neo4j")
    neo4j_password: str = Field(default="licitagraph")
    neo4j_database: str = Field(default="neo4j")


class Config(BaseSettings):
    """Main configuration class."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    normalization: NormalizationConfig = Field(default_factory=NormalizationConfig)
    unification: UnificationConfig = Field(default_factory=UnificationConfig)
    timeline: TimelineConfig = Field(default_factory=TimelineConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @staticmethod
    def _deep_merge_dict(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge two dicts (overrides win)."""
        merged: Dict[str, Any] = dict(base)
        for key, value in overrides.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = Config._deep_merge_dict(merged[key], value)
            else:
                merged[key] = value
        return merged

    @classmethod
    def from_yaml(cls, yaml_path: str | Path = "config/config.yaml") -> "Config":
        """Load configuration from YAML file and environment variables.

        Precedence (highest to lowest):
        1) Environment variables / .env
        2) YAML file
        3) Model defaults

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If the YAML root is not a mapping
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError(f"YAML config root must be a mapping/dict: {yaml_path}")

        # Nested BaseSettings (DatabaseConfig) do not pick up plain env vars such as
        # NEO4J_PASSWORD through the parent model, so compute them separately.
        env_overrides = cls().model_dump(exclude_defaults=True)

        db_env_overrides = DatabaseConfig().model_dump(exclude_defaults=True)
        if db_env_overrides:
            yaml_db = yaml_config.get("database", {})
            env_overrides["database"] = cls._deep_merge_dict(
                yaml_db if isinstance(yaml_db, dict) else {},
                db_env_overrides,
            )

        merged = cls._deep_merge_dict(yaml_config, env_overrides)

        return cls(**merged)


def load_config(yaml_path: str | Path | None = "config/config.yaml") -> Config:
    """Load configuration, falling back to defaults when no file is given.

    Args:
        yaml_path: Path to YAML configuration file, or None for defaults + env

    Returns:
        Loaded Config instance
    """
    if yaml_path is None:
        return Config()
    return Config.from_yaml(yaml_path)
