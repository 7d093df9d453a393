"""Configuration loader utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import yaml

from .models import DEFAULT_COMPONENT_LEVELS, Config, LoggingConfig, SerialLinkConfig, SyncConfig


def _normalize_path(path: Path | str) -> Path:
    return path if isinstance(path, Path) else Path(path)


def _load_raw_config(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found at {config_path}")

    suffix = config_path.suffix.lower()
    with config_path.open("r", encoding="utf-8") as stream:
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(stream) or {}
        if suffix == ".json":
            return json.load(stream)
        raise ValueError(f"Unsupported config format: {suffix}")


def load_config(config_path: Path | str) -> Config:
    """Load configuration file and construct Config dataclass."""

    config_path = _normalize_path(config_path)
    raw = _load_raw_config(config_path)
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__}")

    serial = _load_serial_config(raw.get("serial"), SerialLinkConfig())
    sync = SyncConfig(**_section(raw, "sync"))

    logging_raw = _section(raw, "logging")
    log_path = logging_raw.get("filepath")
    if log_path:
        # Relative log paths follow the config file, not the working directory.
        logging_raw["filepath"] = (config_path.parent / log_path).resolve()
    if "levels" in logging_raw:
        logging_raw["levels"] = _load_component_levels(logging_raw["levels"])
    logging = LoggingConfig(**logging_raw)

    return Config(serial=serial, sync=sync, logging=logging)


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping.")
    return dict(value)


def _load_serial_config(raw_serial: Any, defaults: SerialLinkConfig) -> SerialLinkConfig:
    if not isinstance(raw_serial, dict) or not raw_serial:
        return defaults
    serial_raw = dict(raw_serial)
    simulated = serial_raw.get("simulated_ports")
    if simulated is not None:
        serial_raw["simulated_ports"] = tuple(str(port) for port in simulated)
    return SerialLinkConfig(**serial_raw)


def _load_component_levels(raw_levels: Any) -> Dict[str, str]:
    if raw_levels is None:
        raw_levels = {}
    if not isinstance(raw_levels, dict):
        raise ValueError("logging.levels must map logger names to level names.")
    levels = dict(DEFAULT_COMPONENT_LEVELS)
    levels.update({str(name): str(level).upper() for name, level in raw_levels.items()})
    return levels
