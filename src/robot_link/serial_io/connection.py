"""Ownership of the serial transport: lifecycle, health and serialized I/O."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from robot_link.config.models import SerialLinkConfig
from robot_link.core.errors import (
    AlreadyConnected,
    AlreadyConnecting,
    ConnectError,
    ConnectionBusy,
    ExchangeAborted,
    LinkTimeout,
    NotConnected,
    TransportFault,
)
from robot_link.services.events import ConnectionStatus, ConnectionStatusEvent

from .codec import FrameCodec
from .transport import Transport, open_transport

logger = logging.getLogger("serial.connection")

TransportFactory = Callable[[str, int, SerialLinkConfig], Transport]
StatusListener = Callable[[ConnectionStatusEvent], None]


class ConnectionManager:
    """Single owner of the transport.

    Two locks are used: ``_io_lock`` serialises every send/receive so only one
    request is ever on the wire, and ``_state_lock`` guards the lifecycle
    fields. When both are needed the I/O lock is taken first.
    """

    def __init__(
        self,
        codec: FrameCodec,
        config: SerialLinkConfig | None = None,
        transport_factory: TransportFactory = open_transport,
    ) -> None:
        self._codec = codec
        self._config = config or SerialLinkConfig()
        self._transport_factory = transport_factory
        self._transport: Optional[Transport] = None
        self._port: Optional[str] = None
        self._status = ConnectionStatus.CLOSED
        self._last_error: Optional[Exception] = None
        self._buffer = bytearray()

        self._state_lock = threading.Lock()
        self._io_lock = threading.RLock()
        self._abort = threading.Event()

        self._listeners_lock = threading.Lock()
        self._listeners: Dict[int, StatusListener] = {}
        self._next_listener_id = 0

    # Properties ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status is ConnectionStatus.OPEN

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    @property
    def port(self) -> Optional[str]:
        return self._port

    @property
    def codec(self) -> FrameCodec:
        return self._codec

    # Status stream ---------------------------------------------------------------

    def subscribe(self, callback: StatusListener) -> int:
        with self._listeners_lock:
            listener_id = self._next_listener_id
            self._next_listener_id += 1
            self._listeners[listener_id] = callback
            return listener_id

    def unsubscribe(self, listener_id: int) -> None:
        with self._listeners_lock:
            self._listeners.pop(listener_id, None)

    # Lifecycle -------------------------------------------------------------------

    def connect(self, port: str, baudrate: int) -> bool:
        """Open ``port``. Returns False and records a ConnectError when opening fails."""
        with self._state_lock:
            if self._status is ConnectionStatus.OPENING:
                raise AlreadyConnecting(f"Connection to {self._port} is already opening.")
            if self._status is ConnectionStatus.OPEN:
                raise AlreadyConnected(f"Already connected to {self._port}.")
            if self._status is ConnectionStatus.CLOSING:
                raise ConnectionBusy(f"Connection to {self._port} is closing.")
            self._abort.clear()
            self._port = port
            event = self._set_status(ConnectionStatus.OPENING, None)
        self._emit(event)

        logger.info("Connecting to %s @ %d baud", port, baudrate)
        transport: Optional[Transport] = None
        try:
            transport = self._transport_factory(port, baudrate, self._config)
            transport.open()
        except Exception as exc:
            # Any failure while opening ends in FAULTED, never in OPENING.
            error = ConnectError(str(exc) or type(exc).__name__, port=port)
            logger.warning("Cannot open %s: %s", port, exc)
            _close_quietly(transport)
            with self._state_lock:
                event = self._set_status(ConnectionStatus.FAULTED, error)
            self._emit(event)
            return False

        with self._state_lock:
            if self._abort.is_set():
                # disconnect() arrived while the port was opening.
                _close_quietly(transport)
                self._abort.clear()
                event = self._set_status(ConnectionStatus.CLOSED, None)
                opened = False
            else:
                self._transport = transport
                self._buffer.clear()
                event = self._set_status(ConnectionStatus.OPEN, None)
                opened = True
        self._emit(event)
        if opened:
            logger.info("Connected to %s", port)
        return opened

    def disconnect(self) -> None:
        """Abort any in-flight request, release the transport and end in CLOSED."""
        with self._state_lock:
            if self._status is ConnectionStatus.CLOSED:
                return
            self._abort.set()
            if self._status is ConnectionStatus.OPENING:
                return
            event = self._set_status(ConnectionStatus.CLOSING, self._last_error)
        self._emit(event)

        try:
            with self._io_lock:
                self._release_transport()
        finally:
            with self._state_lock:
                self._abort.clear()
                event = self._set_status(ConnectionStatus.CLOSED, None)
            self._emit(event)
            logger.info("Disconnected from %s", self._port)

    def mark_faulted(self, error: Exception) -> None:
        """Move an open connection to FAULTED, e.g. when the engine gives up on the link."""
        with self._io_lock:
            with self._state_lock:
                if self._status is not ConnectionStatus.OPEN:
                    return
                event = self._set_status(ConnectionStatus.FAULTED, error)
            self._release_transport()
        logger.error("Connection to %s faulted: %s", self._port, error)
        self._emit(event)

    # I/O -------------------------------------------------------------------------

    def send(self, frame: bytes) -> None:
        with self._io_lock:
            transport = self._require_open()
            try:
                transport.write(frame)
            except OSError as exc:
                raise self._fault(exc, "write") from exc
            logger.debug("%s: sent %d bytes -> %s", self._port, len(frame), frame.hex(" "))

    def receive(self, timeout_s: float) -> bytes | None:
        """Next complete frame, or None when ``timeout_s`` elapses first."""
        deadline = time.monotonic() + timeout_s
        chunk_size = max(1, self._config.read_chunk_size)
        with self._io_lock:
            while True:
                frames = self._codec.extract_frames(self._buffer)
                if frames:
                    if len(frames) > 1:
                        logger.debug("%s: %d extra frames dropped", self._port, len(frames) - 1)
                    return frames[0]
                if self._abort.is_set():
                    raise ExchangeAborted(f"{self._port}: disconnect requested")
                if time.monotonic() >= deadline:
                    return None
                transport = self._require_open()
                try:
                    data = transport.read(chunk_size)
                except OSError as exc:
                    raise self._fault(exc, "read") from exc
                if data:
                    self._buffer.extend(data)

    def exchange(self, frame: bytes, timeout_s: float) -> bytes:
        """Send one frame and wait for the single frame that answers it."""
        with self._io_lock:
            transport = self._require_open()
            self._buffer.clear()
            try:
                transport.reset_input_buffer()
            except OSError as exc:
                raise self._fault(exc, "flush") from exc
            self.send(frame)
            response = self.receive(timeout_s)
        if response is None:
            raise LinkTimeout(f"{self._port}: no response within {timeout_s * 1000:.0f} ms")
        logger.debug("%s: received %d bytes <- %s", self._port, len(response), response.hex(" "))
        return response

    def pause(self, delay_s: float) -> None:
        """Sleep for ``delay_s`` unless a disconnect is requested meanwhile."""
        if self._abort.wait(delay_s):
            raise ExchangeAborted(f"{self._port}: disconnect requested")

    # Internal helpers ------------------------------------------------------------

    def _require_open(self) -> Transport:
        if self._abort.is_set():
            raise ExchangeAborted(f"{self._port}: disconnect requested")
        transport = self._transport
        if self._status is not ConnectionStatus.OPEN or transport is None:
            raise NotConnected(f"Connection is {self._status.value}")
        return transport

    def _fault(self, exc: OSError, operation: str) -> TransportFault:
        error = TransportFault(f"{self._port}: {operation} failed: {exc}")
        logger.error("%s", error)
        with self._state_lock:
            event = self._set_status(ConnectionStatus.FAULTED, error)
        self._release_transport()
        self._emit(event)
        return error

    def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._buffer.clear()
        _close_quietly(transport)

    def _set_status(self, status: ConnectionStatus, error: Optional[Exception]) -> ConnectionStatusEvent:
        # Caller holds _state_lock.
        previous = self._status
        self._status = status
        if error is not None or status in (ConnectionStatus.OPEN, ConnectionStatus.CLOSED):
            self._last_error = error
        if previous is not status:
            logger.debug("Connection %s: %s -> %s", self._port, previous.value, status.value)
        return ConnectionStatusEvent(status=status, error=error, port=self._port)

    def _emit(self, event: ConnectionStatusEvent) -> None:
        with self._listeners_lock:
            listeners: List[StatusListener] = list(self._listeners.values())
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("Connection status listener failed.")


def _close_quietly(transport: Optional[Transport]) -> None:
    if transport is None:
        return
    try:
        transport.close()
    except Exception as exc:
        logger.warning("Error while closing %s: %s", getattr(transport, "port", "transport"), exc)
