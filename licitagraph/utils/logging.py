"""Loguru sink configuration shared by scripts and the CLI."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from licitagraph.utils.config import LoggingConfig

_TEXT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level> | {extra}"
)


def configure_logging(config: LoggingConfig | None = None, *, level: str | None = None) -> None:
    """Replace the default Loguru handler with console (and optional file) sinks."""
    config = config or LoggingConfig()
    console_level = (level or config.level).upper()
    serialize = config.format == "json"

    logger.remove()
    logger.add(
        sys.stderr,
        level=console_level,
        format=_TEXT_FORMAT,
        serialize=serialize,
    )

    if config.file:
        target = Path(config.file)
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(target),
            level="DEBUG",
            rotation=f"{config.max_size_mb} MB",
            retention=config.backup_count,
            serialize=serialize,
        )
