from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, List

import pytest

from robot_link.config.models import SerialLinkConfig, SyncConfig
from robot_link.serial_io.codec import BinaryFrameCodec, FrameCodec
from robot_link.serial_io.connection import ConnectionManager
from robot_link.services.events import ConnectionStatusEvent
from robot_link.services.state_store import StateStore
from robot_link.simulators.arm import SimulatedArmTransport
from robot_link.state_machine.engine import SyncEngine

FAST_SYNC = SyncConfig(
    poll_interval_ms=10,
    ack_timeout_ms=60,
    max_retries=3,
    backoff_base_ms=1,
    backoff_factor=2.0,
    backoff_cap_ms=5,
)
FAST_SERIAL = SerialLinkConfig(timeout=0.005)


@dataclass
class Link:
    store: StateStore
    connection: ConnectionManager
    engine: SyncEngine
    arm: SimulatedArmTransport
    events: List[ConnectionStatusEvent]

    @property
    def codec(self) -> FrameCodec:
        return self.connection.codec


def build_link(
    arm: SimulatedArmTransport | None = None,
    codec: FrameCodec | None = None,
    sync: SyncConfig = FAST_SYNC,
) -> Link:
    codec = codec or BinaryFrameCodec()
    arm = arm or SimulatedArmTransport(read_timeout=0.005, codec=codec)
    store = StateStore.create()
    connection = ConnectionManager(codec, FAST_SERIAL, transport_factory=lambda port, baud, cfg: arm)
    events: List[ConnectionStatusEvent] = []
    connection.subscribe(events.append)
    engine = SyncEngine(store, connection, sync)
    return Link(store=store, connection=connection, engine=engine, arm=arm, events=events)


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class BlockingArm(SimulatedArmTransport):
    """Simulator whose ``open`` waits until the test releases it."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def open(self) -> None:
        self.entered.set()
        self.release.wait(2.0)
        super().open()


@pytest.fixture
def link() -> Link:
    built = build_link()
    yield built
    built.connection.disconnect()


@pytest.fixture
def connected_link(link: Link) -> Link:
    assert link.connection.connect("COM-sim", 9600)
    return link
