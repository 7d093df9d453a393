"""Events published by the robot link to its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto

from robot_link.core.entities import RobotState


class EventType(Enum):
    """Categories of events carried on the event bus."""

    CONNECTION_STATUS = auto()
    CURRENT_STATE = auto()
    TARGET_STATE = auto()
    STOP = auto()


class ConnectionStatus(Enum):
    """Lifecycle of the serial connection."""

    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    FAULTED = "faulted"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConnectionStatusEvent:
    """A status transition, carrying the error that caused it when there was one."""

    status: ConnectionStatus
    error: Exception | None = None
    port: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    type: EventType = field(init=False, default=EventType.CONNECTION_STATUS)

    @property
    def reason(self) -> str | None:
        return str(self.error) if self.error is not None else None


@dataclass(frozen=True)
class CurrentStateEvent:
    """The hardware-confirmed state changed."""

    state: RobotState
    created_at: datetime = field(default_factory=_utc_now)
    type: EventType = field(init=False, default=EventType.CURRENT_STATE)


@dataclass(frozen=True)
class TargetStateEvent:
    """The operator target changed."""

    state: RobotState
    created_at: datetime = field(default_factory=_utc_now)
    type: EventType = field(init=False, default=EventType.TARGET_STATE)


@dataclass(frozen=True)
class StopEvent:
    """Ask consumers of the bus to stop, with an optional reason."""

    reason: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    type: EventType = field(init=False, default=EventType.STOP)
