"""Process-scoped holder of the current and target robot states."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from robot_link.core.entities import (
    INPUT_FIELDS,
    RobotState,
    canonical_field,
    clamp,
    field_range,
)
from robot_link.core.errors import StoreDisposed

logger = logging.getLogger("services.state_store")

StateObserver = Callable[[RobotState], None]


@dataclass
class Subscription:
    """Handle returned by ``observe_*``; ``cancel()`` stops notifications."""

    store: "StateStore"
    channel: str
    observer_id: int

    def cancel(self) -> None:
        self.store._remove_observer(self.channel, self.observer_id)


class _Channel:
    """Observers of one snapshot plus the last snapshot they were told about."""

    def __init__(self, initial: RobotState) -> None:
        self.observers: Dict[int, StateObserver] = {}
        self.notified: RobotState = initial


class StateStore:
    """Storage and domain clamping only; no synchronization logic lives here.

    ``target`` is written by the operator-facing API, ``current`` by the
    synchronization engine. Observers are called from
    ``flush_notifications()``, which the engine invokes once per tick outside
    its own critical section.
    """

    CURRENT = "current"
    TARGET = "target"

    def __init__(self, initial: Optional[RobotState] = None) -> None:
        start = (initial or RobotState()).clamped()
        self._current = start
        self._target = start
        self._lock = threading.Lock()
        self._channels = {self.CURRENT: _Channel(start), self.TARGET: _Channel(start)}
        self._next_observer_id = 0
        self._disposed = False

    @classmethod
    def create(cls, initial: Optional[RobotState] = None) -> "StateStore":
        store = cls(initial)
        logger.debug("State store created with %s", store._current)
        return store

    def dispose(self) -> None:
        """Drop every observer; further use raises StoreDisposed."""
        with self._lock:
            self._disposed = True
            for channel in self._channels.values():
                channel.observers.clear()
        logger.debug("State store disposed.")

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def current(self) -> RobotState:
        return self._current

    @property
    def target(self) -> RobotState:
        return self._target

    def set_target(self, partial: Optional[Mapping[str, Any]] = None, **fields: Any) -> RobotState:
        """Merge ``partial``/``fields`` into the target, clamping numbers into range."""
        self._ensure_alive()
        updates: Dict[str, Any] = dict(partial or {})
        updates.update(fields)
        changes = {}
        for name, value in updates.items():
            key = canonical_field(name)
            if key in INPUT_FIELDS:
                raise ValueError(f"{key} is a digital input and cannot be targeted")
            changes[key] = _normalise(key, value)
        with self._lock:
            self._target = self._target.with_changes(**changes)
            target = self._target
        if changes:
            logger.debug("Target updated: %s", changes)
        return target

    def update_current(self, state: RobotState) -> RobotState:
        """Replace the hardware-confirmed snapshot. Reserved for the engine."""
        self._ensure_alive()
        with self._lock:
            self._current = state.clamped()
            return self._current

    # Observers -------------------------------------------------------------------

    def observe_current(self, observer: StateObserver) -> Subscription:
        return self._add_observer(self.CURRENT, observer)

    def observe_target(self, observer: StateObserver) -> Subscription:
        return self._add_observer(self.TARGET, observer)

    def flush_notifications(self) -> None:
        """Tell observers about snapshots that changed since the previous flush."""
        if self._disposed:
            return
        pending: List[tuple[List[StateObserver], RobotState]] = []
        with self._lock:
            for name, snapshot in ((self.CURRENT, self._current), (self.TARGET, self._target)):
                channel = self._channels[name]
                if snapshot == channel.notified:
                    continue
                channel.notified = snapshot
                pending.append((list(channel.observers.values()), snapshot))
        for observers, snapshot in pending:
            for observer in observers:
                try:
                    observer(snapshot)
                except Exception:
                    logger.exception("State observer failed.")

    def _add_observer(self, channel: str, observer: StateObserver) -> Subscription:
        self._ensure_alive()
        with self._lock:
            observer_id = self._next_observer_id
            self._next_observer_id += 1
            self._channels[channel].observers[observer_id] = observer
        return Subscription(store=self, channel=channel, observer_id=observer_id)

    def _remove_observer(self, channel: str, observer_id: int) -> None:
        with self._lock:
            self._channels[channel].observers.pop(observer_id, None)

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise StoreDisposed("State store has been disposed.")


def _normalise(name: str, value: Any) -> Any:
    bounds = field_range(name)
    if bounds is None:
        if not isinstance(value, (bool, int)):
            raise TypeError(f"{name} expects a bool, got {type(value).__name__}")
        return bool(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} expects a number, got {type(value).__name__}")
    return clamp(int(round(value)), bounds)
