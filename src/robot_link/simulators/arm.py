"""In-process stand-in for the arm controller, reachable as a transport."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import List, Optional

from serial import SerialException

from robot_link.core.entities import JOINT_FIELDS, RobotState
from robot_link.core.errors import DecodeError
from robot_link.serial_io.codec import FrameCodec, get_codec
from robot_link.serial_io.transport import Transport

logger = logging.getLogger("simulators.arm")


class SimulatedArmTransport(Transport):
    """Answers every command or state request with a state report, like the firmware.

    Faults can be injected: silent replies (timeouts), corrupted replies
    (decode failures), a failing ``open`` and failing writes.
    """

    def __init__(
        self,
        port: str = "COM-sim",
        read_timeout: float = 0.01,
        codec_name: str = "binary",
        codec: Optional[FrameCodec] = None,
        initial: Optional[RobotState] = None,
        motion_step: Optional[int] = None,
    ) -> None:
        self.port = port
        self.read_timeout = read_timeout
        self.codec = codec or get_codec(codec_name)
        self.state = initial or RobotState()
        self.motion_step = motion_step
        self.written: List[bytes] = []
        self.fail_open = False
        self.fail_writes = False

        self._commanded: Optional[RobotState] = None
        self._inbound = bytearray()
        self._outbound = bytearray()
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._open = False
        self._drop = 0
        self._corrupt = 0
        self._silent = False

    # Fault injection -------------------------------------------------------------

    def drop_replies(self, count: int) -> None:
        """Swallow the next ``count`` replies."""
        with self._lock:
            self._drop += count

    def corrupt_replies(self, count: int) -> None:
        """Mangle the next ``count`` replies so they fail to decode."""
        with self._lock:
            self._corrupt += count

    def stall(self, silent: bool = True) -> None:
        """Stop (or resume) answering altogether."""
        with self._lock:
            self._silent = silent

    def set_inputs(self, di_1: bool | None = None, di_2: bool | None = None, di_3: bool | None = None) -> None:
        changes = {
            name: value
            for name, value in (("di_1", di_1), ("di_2", di_2), ("di_3", di_3))
            if value is not None
        }
        with self._lock:
            self.state = replace(self.state, **changes)

    @property
    def command_frames(self) -> List[bytes]:
        return [frame for frame in self.written if not self.codec.is_state_request(frame)]

    @property
    def request_frames(self) -> List[bytes]:
        return [frame for frame in self.written if self.codec.is_state_request(frame)]

    # Transport -------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.fail_open:
            raise SerialException(f"could not open port {self.port}: device busy")
        with self._lock:
            self._open = True
            self._inbound.clear()
            self._outbound.clear()
        logger.info("Simulated arm on %s ready.", self.port)

    def close(self) -> None:
        with self._lock:
            self._open = False
        self._wakeup.set()

    def reset_input_buffer(self) -> None:
        with self._lock:
            self._outbound.clear()

    def write(self, data: bytes) -> None:
        if not self._open:
            raise SerialException(f"{self.port} is not open")
        if self.fail_writes:
            raise SerialException(f"write failed on {self.port}")
        with self._lock:
            self._inbound.extend(data)
            frames = self.codec.extract_frames(self._inbound)
            for frame in frames:
                self.written.append(frame)
                reply = self._handle(frame)
                if reply is not None:
                    self._outbound.extend(reply)
        self._wakeup.set()

    def read(self, size: int) -> bytes:
        if not self._open:
            raise SerialException(f"{self.port} is not open")
        with self._lock:
            if not self._outbound:
                self._wakeup.clear()
        if not self._outbound:
            self._wakeup.wait(self.read_timeout)
        with self._lock:
            data = bytes(self._outbound[:size])
            del self._outbound[:size]
        return data

    # Controller behaviour ---------------------------------------------------------

    def _handle(self, frame: bytes) -> Optional[bytes]:
        if not self.codec.is_state_request(frame):
            try:
                command = self.codec.decode(frame)
            except DecodeError as exc:
                logger.debug("Simulated arm ignored bad command: %s", exc)
                return None
            self._commanded = command
            self.state = replace(
                self.state,
                speed=command.speed,
                do_1=command.do_1,
                do_2=command.do_2,
                do_3=command.do_3,
            )
        self._advance()

        if self._silent:
            return None
        if self._drop:
            self._drop -= 1
            return None
        reply = self.codec.encode(self.state)
        if self._corrupt:
            self._corrupt -= 1
            return _corrupt(reply)
        return reply

    def _advance(self) -> None:
        if self._commanded is None:
            return
        changes = {}
        for name in JOINT_FIELDS:
            goal = getattr(self._commanded, name)
            position = getattr(self.state, name)
            if self.motion_step is None:
                changes[name] = goal
            else:
                step = max(-self.motion_step, min(self.motion_step, goal - position))
                changes[name] = position + step
        self.state = replace(self.state, **changes)


def _corrupt(reply: bytes) -> bytes:
    """Keep the framing intact but put a field out of range."""
    if reply.endswith(b"\n"):
        return b"S,corrupt\n"
    mangled = bytearray(reply)
    mangled[1] = 200
    return bytes(mangled)
