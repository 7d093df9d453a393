"""Frame encoding and decoding between RobotState snapshots and wire bytes."""

from __future__ import annotations

import abc
import logging
from typing import Dict, List, Type

from robot_link.core.entities import (
    INPUT_FIELDS,
    JOINT_FIELDS,
    JOINT_RANGE,
    OUTPUT_FIELDS,
    SPEED_RANGE,
    RobotState,
    StateDelta,
)
from robot_link.core.errors import DecodeError, EncodeError

logger = logging.getLogger("serial.codec")


class FrameCodec(abc.ABC):
    """Pluggable wire format. Implementations must be stateless and deterministic."""

    name: str = ""

    def encode(self, value: RobotState | StateDelta, base: RobotState | None = None) -> bytes:
        """Encode a full state, or a delta overlaid on ``base``, into one command frame."""
        if isinstance(value, StateDelta):
            if base is None:
                raise EncodeError("Encoding a delta requires a base state.")
            value = value.apply_to(base)
        if not isinstance(value, RobotState):
            raise EncodeError(f"Cannot encode {type(value).__name__}")
        problems = value.domain_violations()
        if problems:
            raise EncodeError("State outside domain: " + "; ".join(problems))
        return self._encode_state(value)

    @abc.abstractmethod
    def encode_state_request(self) -> bytes:
        """Frame asking the controller to report its state without changing it."""

    @abc.abstractmethod
    def is_state_request(self, frame: bytes) -> bool:
        """Whether ``frame`` is the state-read request of this codec."""

    @abc.abstractmethod
    def decode(self, frame: bytes) -> RobotState:
        """Decode a single frame. Raises DecodeError and nothing else on bad input."""

    @abc.abstractmethod
    def extract_frames(self, buffer: bytearray) -> List[bytes]:
        """Pop every complete frame from ``buffer``, resynchronising past garbage."""

    @abc.abstractmethod
    def _encode_state(self, state: RobotState) -> bytes:
        ...


class BinaryFrameCodec(FrameCodec):
    """Fixed 15 byte frame understood by the arm controller firmware.

    Layout: ``FD J1 J2 J3 J4 J5 J6 Di1 Di2 Di3 Do1 Do2 Do3 SPEED FE``. Every
    field fits in 0..180, so the start and end markers never occur inside a
    valid frame and the reader can resynchronise on them. The state request
    is the short frame ``FD 3F FE``.
    """

    name = "binary"

    START = 0xFD
    END = 0xFE
    REQUEST_MARK = 0x3F
    FRAME_SIZE = 15
    REQUEST = bytes((START, REQUEST_MARK, END))

    _JOINT_SLICE = slice(1, 7)
    _INPUT_SLICE = slice(7, 10)
    _OUTPUT_SLICE = slice(10, 13)
    _SPEED_INDEX = 13

    def _encode_state(self, state: RobotState) -> bytes:
        frame = bytearray(self.FRAME_SIZE)
        frame[0] = self.START
        frame[self._JOINT_SLICE] = bytes(state.joints)
        frame[self._INPUT_SLICE] = bytes(int(flag) for flag in state.inputs)
        frame[self._OUTPUT_SLICE] = bytes(int(flag) for flag in state.outputs)
        frame[self._SPEED_INDEX] = state.speed
        frame[-1] = self.END
        return bytes(frame)

    def encode_state_request(self) -> bytes:
        return self.REQUEST

    def is_state_request(self, frame: bytes) -> bool:
        return bytes(frame) == self.REQUEST

    def decode(self, frame: bytes) -> RobotState:
        if not isinstance(frame, (bytes, bytearray, memoryview)):
            raise DecodeError(f"Expected bytes, got {type(frame).__name__}")
        data = bytes(frame)
        if len(data) != self.FRAME_SIZE:
            raise DecodeError(f"Expected {self.FRAME_SIZE} bytes, got {len(data)}")
        if data[0] != self.START or data[-1] != self.END:
            raise DecodeError(f"Bad frame markers: {data[0]:02X}..{data[-1]:02X}")

        joints = data[self._JOINT_SLICE]
        for name, value in zip(JOINT_FIELDS, joints):
            if not JOINT_RANGE[0] <= value <= JOINT_RANGE[1]:
                raise DecodeError(f"{name}={value} outside {JOINT_RANGE}")
        speed = data[self._SPEED_INDEX]
        if not SPEED_RANGE[0] <= speed <= SPEED_RANGE[1]:
            raise DecodeError(f"speed={speed} outside {SPEED_RANGE}")

        values: Dict[str, object] = dict(zip(JOINT_FIELDS, joints))
        values["speed"] = speed
        values.update(zip(INPUT_FIELDS, _flags(data[self._INPUT_SLICE], INPUT_FIELDS)))
        values.update(zip(OUTPUT_FIELDS, _flags(data[self._OUTPUT_SLICE], OUTPUT_FIELDS)))
        return RobotState(**values)

    def extract_frames(self, buffer: bytearray) -> List[bytes]:
        frames: List[bytes] = []
        while buffer:
            start = buffer.find(self.START)
            if start < 0:
                buffer.clear()
                break
            if start > 0:
                logger.debug("Dropping %d bytes before frame start.", start)
                del buffer[:start]

            if len(buffer) >= len(self.REQUEST) and bytes(buffer[: len(self.REQUEST)]) == self.REQUEST:
                frames.append(self.REQUEST)
                del buffer[: len(self.REQUEST)]
                continue

            # A marker inside the candidate means the frame was cut short; resync on it.
            cut = _find_marker(buffer, 1, min(len(buffer), self.FRAME_SIZE - 1), (self.START, self.END))
            if cut >= 0:
                logger.debug("Truncated frame (%d bytes) discarded.", cut)
                del buffer[: cut if buffer[cut] == self.START else cut + 1]
                continue
            if len(buffer) < self.FRAME_SIZE:
                break
            if buffer[self.FRAME_SIZE - 1] != self.END:
                logger.debug("Missing end marker; resynchronising.")
                del buffer[0]
                continue
            frames.append(bytes(buffer[: self.FRAME_SIZE]))
            del buffer[: self.FRAME_SIZE]
        return frames


class TextFrameCodec(FrameCodec):
    """Line oriented ASCII frames: ``S,j1,..,j6,speed,do1,do2,do3,di1,di2,di3``."""

    name = "text"

    PREFIX = "S"
    REQUEST = b"?\n"
    MAX_LINE = 128
    FIELD_COUNT = 14

    def _encode_state(self, state: RobotState) -> bytes:
        values = [
            *state.joints,
            state.speed,
            *(int(flag) for flag in state.outputs),
            *(int(flag) for flag in state.inputs),
        ]
        return (",".join([self.PREFIX, *(str(value) for value in values)]) + "\n").encode("ascii")

    def encode_state_request(self) -> bytes:
        return self.REQUEST

    def is_state_request(self, frame: bytes) -> bool:
        return bytes(frame).strip() == self.REQUEST.strip()

    def decode(self, frame: bytes) -> RobotState:
        if not isinstance(frame, (bytes, bytearray, memoryview)):
            raise DecodeError(f"Expected bytes, got {type(frame).__name__}")
        try:
            line = bytes(frame).decode("ascii").strip()
        except UnicodeDecodeError as exc:
            raise DecodeError("Frame is not ASCII") from exc

        parts = line.split(",")
        if len(parts) != self.FIELD_COUNT or parts[0] != self.PREFIX:
            raise DecodeError(f"Malformed state line: {line[:40]!r}")
        try:
            numbers = [int(part) for part in parts[1:]]
        except ValueError as exc:
            raise DecodeError(f"Non numeric field in {line[:40]!r}") from exc

        joints, speed = numbers[:6], numbers[6]
        outputs, inputs = numbers[7:10], numbers[10:13]
        for name, value in zip(JOINT_FIELDS, joints):
            if not JOINT_RANGE[0] <= value <= JOINT_RANGE[1]:
                raise DecodeError(f"{name}={value} outside {JOINT_RANGE}")
        if not SPEED_RANGE[0] <= speed <= SPEED_RANGE[1]:
            raise DecodeError(f"speed={speed} outside {SPEED_RANGE}")

        values: Dict[str, object] = dict(zip(JOINT_FIELDS, joints))
        values["speed"] = speed
        values.update(zip(OUTPUT_FIELDS, _flags(outputs, OUTPUT_FIELDS)))
        values.update(zip(INPUT_FIELDS, _flags(inputs, INPUT_FIELDS)))
        return RobotState(**values)

    def extract_frames(self, buffer: bytearray) -> List[bytes]:
        frames: List[bytes] = []
        while True:
            newline = buffer.find(b"\n")
            if newline < 0:
                if len(buffer) > self.MAX_LINE:
                    logger.debug("Discarding %d bytes without line terminator.", len(buffer))
                    buffer.clear()
                break
            line = bytes(buffer[: newline + 1])
            del buffer[: newline + 1]
            if len(line) > self.MAX_LINE:
                logger.debug("Discarding over-long line (%d bytes).", len(line))
                continue
            if line.strip():
                frames.append(line)
        return frames


CODECS: Dict[str, Type[FrameCodec]] = {
    BinaryFrameCodec.name: BinaryFrameCodec,
    TextFrameCodec.name: TextFrameCodec,
}


def get_codec(name: str) -> FrameCodec:
    """Instantiate the codec registered under ``name``."""
    try:
        return CODECS[name]()
    except KeyError:
        raise ValueError(f"Unknown codec {name!r}; expected one of {sorted(CODECS)}") from None


def _flags(raw, names) -> List[bool]:
    flags: List[bool] = []
    for name, value in zip(names, raw):
        if value not in (0, 1):
            raise DecodeError(f"{name}={value} is not a boolean flag")
        flags.append(bool(value))
    return flags


def _find_marker(buffer: bytearray, start: int, stop: int, markers) -> int:
    for idx in range(start, stop):
        if buffer[idx] in markers:
            return idx
    return -1
