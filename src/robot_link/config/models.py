"""Configuration dataclasses for the robot link."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping, Sequence

# The state machine library logs every callback at DEBUG.
DEFAULT_COMPONENT_LEVELS: Mapping[str, str] = {"statemachine": "WARNING"}


@dataclass(frozen=True)
class SerialLinkConfig:
    """Serial parameters for the arm controller and how frames are encoded."""

    port: str = "COM-sim"
    baudrate: int = 9600
    bytesize: int = 8
    parity: Literal["N", "E", "O", "M", "S"] = "N"
    stopbits: float = 1
    timeout: float = 0.05
    write_timeout: float = 0.5
    read_chunk_size: int = 64
    codec: Literal["binary", "text"] = "binary"
    simulated_ports: Sequence[str] = ("COM-sim",)


@dataclass(frozen=True)
class SyncConfig:
    """Pacing of the poll/command loop and its retry policy."""

    poll_interval_ms: int = 1000
    ack_timeout_ms: int = 500
    max_retries: int = 3
    backoff_base_ms: int = 100
    backoff_factor: float = 2.0
    backoff_cap_ms: int = 1000

    def __post_init__(self) -> None:
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive.")
        if self.ack_timeout_ms <= 0:
            raise ValueError("ack_timeout_ms must be positive.")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1.")
        if self.backoff_base_ms < 0 or self.backoff_cap_ms < 0:
            raise ValueError("backoff delays cannot be negative.")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.")

    def backoff_delay_s(self, failures: int) -> float:
        """Delay before resending after ``failures`` consecutive failures."""
        if failures <= 0:
            return 0.0
        delay_ms = self.backoff_base_ms * (self.backoff_factor ** (failures - 1))
        return min(delay_ms, self.backoff_cap_ms) / 1000.0


@dataclass(frozen=True)
class LoggingConfig:
    """Root level, per-component levels, rotating file location and console toggle.

    ``levels`` maps logger names (``serial.connection``, ``sync.engine``,
    ``statemachine``, ...) to a level that overrides the root one.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    filepath: Path = Path("logs/robot_link.log")
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 5
    console: bool = True
    levels: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_COMPONENT_LEVELS))

    def resolved_path(self) -> Path:
        path = self.filepath if isinstance(self.filepath, Path) else Path(self.filepath)
        return path.expanduser().resolve()


@dataclass(frozen=True)
class Config:
    """Root configuration object."""

    serial: SerialLinkConfig = field(default_factory=SerialLinkConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
