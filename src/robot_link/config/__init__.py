"""Configuration package for the robot link."""

from .loader import load_config
from .models import Config, LoggingConfig, SerialLinkConfig, SyncConfig

__all__ = [
    "Config",
    "LoggingConfig",
    "SerialLinkConfig",
    "SyncConfig",
    "load_config",
]
