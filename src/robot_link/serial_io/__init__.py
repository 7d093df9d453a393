"""Serial communication helpers for the robot link."""

from .codec import CODECS, BinaryFrameCodec, FrameCodec, TextFrameCodec, get_codec
from .connection import ConnectionManager
from .ports import list_ports
from .transport import SerialTransport, Transport, open_transport

__all__ = [
    "CODECS",
    "BinaryFrameCodec",
    "ConnectionManager",
    "FrameCodec",
    "SerialTransport",
    "TextFrameCodec",
    "Transport",
    "get_codec",
    "list_ports",
    "open_transport",
]
