"""Facade wiring the state store, connection manager and sync engine together."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional

from robot_link.config.models import Config
from robot_link.core.entities import RobotState
from robot_link.serial_io import ConnectionManager, get_codec, list_ports, open_transport
from robot_link.serial_io.connection import StatusListener, TransportFactory
from robot_link.services.event_bus import LinkEventBus
from robot_link.services.events import ConnectionStatus
from robot_link.services.state_store import StateObserver, StateStore, Subscription
from robot_link.state_machine import SyncEngine

logger = logging.getLogger("app.session")


class RobotLinkSession:
    """Everything the UI layer needs: targets, connection control and observation."""

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[StateStore] = None,
        transport_factory: TransportFactory = open_transport,
    ) -> None:
        self.config = config or Config()
        self.store = store or StateStore.create()
        self.connection = ConnectionManager(
            codec=get_codec(self.config.serial.codec),
            config=self.config.serial,
            transport_factory=transport_factory,
        )
        self.engine = SyncEngine(self.store, self.connection, self.config.sync)
        self._disposed = False

    @classmethod
    def create(
        cls,
        config: Optional[Config] = None,
        transport_factory: TransportFactory = open_transport,
        start: bool = True,
    ) -> "RobotLinkSession":
        """Build a session and, unless ``start`` is False, start its tick loop."""
        session = cls(config=config, transport_factory=transport_factory)
        if start:
            session.engine.start()
        return session

    def dispose(self) -> None:
        """Close the port, stop the loop and release the store."""
        if self._disposed:
            return
        self._disposed = True
        # A tick blocked in an exchange only returns once the port is closed.
        self.connection.disconnect()
        self.engine.stop()
        self.store.dispose()
        logger.info("Session disposed.")

    def __enter__(self) -> "RobotLinkSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    # Collaborator surface ----------------------------------------------------------

    def list_ports(self, include_simulated: bool = True) -> List[str]:
        return list_ports(include_simulated, self.config.serial.simulated_ports)

    def connect(self, port: Optional[str] = None, baudrate: Optional[int] = None) -> bool:
        return self.connection.connect(
            port or self.config.serial.port,
            baudrate or self.config.serial.baudrate,
        )

    def disconnect(self) -> None:
        self.connection.disconnect()

    def set_target(self, partial: Optional[Mapping[str, Any]] = None, **fields: Any) -> RobotState:
        return self.store.set_target(partial, **fields)

    def observe_current(self, observer: StateObserver) -> Subscription:
        return self.store.observe_current(observer)

    def observe_target(self, observer: StateObserver) -> Subscription:
        return self.store.observe_target(observer)

    def observe_status(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to connection status events; returns an unsubscribe callable."""
        listener_id = self.connection.subscribe(listener)
        return lambda: self.connection.unsubscribe(listener_id)

    def publish_to(self, bus: LinkEventBus) -> Callable[[], None]:
        """Forward status changes and state snapshots onto ``bus``; returns a detach callable."""
        unsubscribe_status = self.observe_status(bus.on_status)
        subscriptions = [self.observe_current(bus.on_current), self.observe_target(bus.on_target)]

        def detach() -> None:
            unsubscribe_status()
            for subscription in subscriptions:
                subscription.cancel()

        return detach

    @property
    def current(self) -> RobotState:
        return self.store.current

    @property
    def target(self) -> RobotState:
        return self.store.target

    @property
    def status(self) -> ConnectionStatus:
        return self.connection.status

    @property
    def last_error(self) -> Optional[Exception]:
        return self.connection.last_error

    @property
    def engine_state(self) -> str:
        return self.engine.state_name
