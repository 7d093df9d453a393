"""Logging setup for the link: one rotating file, optional console, per-component levels."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Mapping

from robot_link.config.models import LoggingConfig

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("app.logging")


def configure_logging(config: LoggingConfig) -> Path:
    """Install handlers on the root logger and apply component overrides.

    Handlers carry no level of their own, so a component raised to DEBUG
    (say ``sync.engine`` while chasing retries) reaches the file even when
    the root stays at INFO. Returns the resolved log file path.
    """

    root_level = _parse_level(config.level)
    overrides = _component_levels(config.levels)
    logging.captureWarnings(True)

    log_path = config.resolved_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [_rotating_file_handler(log_path, config, formatter)]
    if config.console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(level=root_level, handlers=handlers, force=True)
    for name, level in overrides.items():
        logging.getLogger(name).setLevel(level)

    logger.debug(
        "Logging to %s at %s; overrides: %s",
        log_path,
        logging.getLevelName(root_level),
        {name: logging.getLevelName(level) for name, level in overrides.items()} or "none",
    )
    return log_path


def _rotating_file_handler(
    log_path: Path, config: LoggingConfig, formatter: logging.Formatter
) -> logging.handlers.RotatingFileHandler:
    handler = logging.handlers.RotatingFileHandler(
        filename=log_path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def _component_levels(levels: Mapping[str, str]) -> Dict[str, int]:
    return {name: _parse_level(level) for name, level in levels.items()}


def _parse_level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level {name!r}")
    return level
