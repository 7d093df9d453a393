"""Link event bus carrying connection and state events to a single consumer thread."""

from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from typing import Deque, Optional, Union

from robot_link.core.entities import RobotState

from .events import ConnectionStatusEvent, CurrentStateEvent, StopEvent, TargetStateEvent

logger = logging.getLogger("services.event_bus")

LinkEvent = Union[ConnectionStatusEvent, CurrentStateEvent, TargetStateEvent, StopEvent]

_SNAPSHOT_EVENTS = (CurrentStateEvent, TargetStateEvent)


class LinkEventBus:
    """Bounded FIFO of link events; publishers never block.

    State snapshots supersede each other: a ``CurrentStateEvent`` (or
    ``TargetStateEvent``) published while an older one is still queued takes
    its place, so a slow consumer only ever sees the latest snapshot. Status
    transitions are kept in order and only dropped when the bus is full.
    A ``StopEvent`` is always accepted.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._events: Deque[LinkEvent] = deque()
        self._maxsize = maxsize
        self._cond = threading.Condition()
        self.dropped = 0
        self.coalesced = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._events)

    def publish(self, event: LinkEvent) -> None:
        with self._cond:
            if isinstance(event, _SNAPSHOT_EVENTS):
                for index, queued in enumerate(self._events):
                    if type(queued) is type(event):
                        self._events[index] = event
                        self.coalesced += 1
                        return
            if len(self._events) >= self._maxsize and not isinstance(event, StopEvent):
                self.dropped += 1
                logger.warning("Link event bus full; dropping %s", type(event).__name__)
                return
            self._events.append(event)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> LinkEvent:
        """Next event; raises ``queue.Empty`` once ``timeout`` elapses."""
        with self._cond:
            if not self._cond.wait_for(lambda: bool(self._events), timeout):
                raise queue.Empty
            return self._events.popleft()

    def stop(self, reason: str | None = None) -> None:
        """Publish a StopEvent so the consumer loop can exit."""
        self.publish(StopEvent(reason=reason))

    # Observer adapters, registered by RobotLinkSession.publish_to().

    def on_status(self, event: ConnectionStatusEvent) -> None:
        self.publish(event)

    def on_current(self, state: RobotState) -> None:
        self.publish(CurrentStateEvent(state=state))

    def on_target(self, state: RobotState) -> None:
        self.publish(TargetStateEvent(state=state))
