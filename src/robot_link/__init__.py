"""Serial link keeping a 6-axis robot arm in sync with the operator's target state."""

from __future__ import annotations

from .config import Config, load_config
from .core.entities import RobotState, StateDelta, diff
from .core.errors import (
    AlreadyConnected,
    AlreadyConnecting,
    ConnectError,
    DecodeError,
    LinkLost,
    LinkTimeout,
    NotConnected,
    RobotLinkError,
)
from .services.events import ConnectionStatus, ConnectionStatusEvent
from .services.state_store import StateStore
from .session import RobotLinkSession

__version__ = "0.1.0"

__all__ = [
    "AlreadyConnected",
    "AlreadyConnecting",
    "Config",
    "ConnectError",
    "ConnectionStatus",
    "ConnectionStatusEvent",
    "DecodeError",
    "LinkLost",
    "LinkTimeout",
    "NotConnected",
    "RobotLinkError",
    "RobotLinkSession",
    "RobotState",
    "StateDelta",
    "StateStore",
    "diff",
    "load_config",
]
