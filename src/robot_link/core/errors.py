"""Error taxonomy for the robot link."""

from __future__ import annotations


class RobotLinkError(Exception):
    """Base class for every error raised by the robot link."""


class ConnectError(RobotLinkError):
    """The transport could not be opened (port missing, busy, permission)."""

    def __init__(self, reason: str, port: str | None = None) -> None:
        super().__init__(f"{port}: {reason}" if port else reason)
        self.reason = reason
        self.port = port


class ConnectionBusy(RobotLinkError):
    """A lifecycle operation is already in progress."""


class AlreadyConnecting(ConnectionBusy):
    pass


class AlreadyConnected(ConnectionBusy):
    pass


class NotConnected(RobotLinkError):
    """I/O was attempted while the connection is not open."""


class EncodeError(RobotLinkError, ValueError):
    """A state handed to the codec is outside its domain."""


class DecodeError(RobotLinkError, ValueError):
    """An inbound frame is truncated, corrupted or out of range."""


class LinkTimeout(RobotLinkError):
    """No response arrived within the per-command budget."""


class LinkLost(RobotLinkError):
    """Retries were exhausted; the connection stays faulted until reconnect."""


class TransportFault(RobotLinkError):
    """The transport reported an I/O error during send or receive."""


class ExchangeAborted(RobotLinkError):
    """A disconnect was requested while a request was in flight."""


class StoreDisposed(RobotLinkError, RuntimeError):
    """The state store was used after ``dispose()``."""
