"""Synchronization engine and its link state machine."""

from .engine import LinkStateMachine, PendingCommand, SyncEngine

__all__ = [
    "LinkStateMachine",
    "PendingCommand",
    "SyncEngine",
]
