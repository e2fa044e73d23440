"""Shared utilities: configuration and logging."""

from licitagraph.utils.config import (
    BatchConfig,
    Config,
    DatabaseConfig,
    LoggingConfig,
    NormalizationConfig,
    TimelineConfig,
    UnificationConfig,
    load_config,
)
from licitagraph.utils.logging import configure_logging

__all__ = [
    "BatchConfig",
    "Config",
    "DatabaseConfig",
    "LoggingConfig",
    "NormalizationConfig",
    "TimelineConfig",
    "UnificationConfig",
    "configure_logging",
    "load_config",
]
