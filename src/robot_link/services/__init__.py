"""Shared services: state store, events and the event bus."""

from .event_bus import LinkEvent, LinkEventBus
from .events import (
    ConnectionStatus,
    ConnectionStatusEvent,
    CurrentStateEvent,
    EventType,
    StopEvent,
    TargetStateEvent,
)
from .state_store import StateStore, Subscription

__all__ = [
    "ConnectionStatus",
    "ConnectionStatusEvent",
    "CurrentStateEvent",
    "EventType",
    "LinkEvent",
    "LinkEventBus",
    "StateStore",
    "StopEvent",
    "Subscription",
    "TargetStateEvent",
]
