"""Byte-stream transports underneath the connection manager."""

from __future__ import annotations

import abc
import logging
from typing import Optional

try:
    import serial
    from serial import SerialException
except ImportError as exc:  # pragma: no cover - dependency guard
    raise ImportError("pyserial is required. Install with `pip install pyserial`.") from exc

from robot_link.config.models import SerialLinkConfig

logger = logging.getLogger("serial.transport")


class Transport(abc.ABC):
    """Minimal byte pipe. ``read`` returns ``b""`` when its timeout elapses.

    I/O failures are reported as ``OSError`` (``SerialException`` is one).
    """

    port: str

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        ...

    @abc.abstractmethod
    def open(self) -> None:
        ...

    @abc.abstractmethod
    def close(self) -> None:
        ...

    @abc.abstractmethod
    def read(self, size: int) -> bytes:
        ...

    @abc.abstractmethod
    def write(self, data: bytes) -> None:
        ...

    def reset_input_buffer(self) -> None:
        """Drop bytes received but not yet read."""


class SerialTransport(Transport):
    """Transport over a real serial device through pyserial."""

    def __init__(self, port: str, baudrate: int, config: SerialLinkConfig) -> None:
        self.port = port
        self._baudrate = baudrate
        self._config = config
        self._serial: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return bool(self._serial and self._serial.is_open)

    def open(self) -> None:
        if self.is_open:
            return
        self._serial = serial.Serial(
            port=self.port,
            baudrate=self._baudrate,
            bytesize=self._config.bytesize,
            parity=self._config.parity,
            stopbits=self._config.stopbits,
            timeout=self._config.timeout,
            write_timeout=self._config.write_timeout,
        )
        logger.info("Opened serial port %s @ %d baud", self.port, self._baudrate)
        try:
            self._serial.reset_input_buffer()
            self._serial.reset_output_buffer()
        except SerialException as exc:
            logger.debug("Could not clear buffers on %s: %s", self.port, exc)

    def close(self) -> None:
        if self._serial and self._serial.is_open:
            logger.info("Closing serial port %s", self.port)
            self._serial.close()
        self._serial = None

    def read(self, size: int) -> bytes:
        return self._require_serial().read(size)

    def write(self, data: bytes) -> None:
        port = self._require_serial()
        port.write(data)
        port.flush()

    def reset_input_buffer(self) -> None:
        self._require_serial().reset_input_buffer()

    def _require_serial(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise SerialException(f"{self.port} is not open")
        return self._serial


def open_transport(port: str, baudrate: int, config: SerialLinkConfig) -> Transport:
    """Default transport factory: simulated controller for configured ids, pyserial otherwise."""
    if port in config.simulated_ports:
        from robot_link.simulators.arm import SimulatedArmTransport

        return SimulatedArmTransport(port=port, read_timeout=config.timeout, codec_name=config.codec)
    return SerialTransport(port, baudrate, config)
