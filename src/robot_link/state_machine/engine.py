"""Synchronization engine reconciling the operator target with the arm state."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from statemachine import State, StateMachine

from robot_link.config.models import SyncConfig
from robot_link.core.entities import RobotState, StateDelta, diff
from robot_link.core.errors import (
    DecodeError,
    ExchangeAborted,
    LinkLost,
    LinkTimeout,
    NotConnected,
    TransportFault,
)
from robot_link.serial_io.connection import ConnectionManager
from robot_link.services.events import ConnectionStatus
from robot_link.services.state_store import StateStore

logger = logging.getLogger("sync.engine")


class LinkStateMachine(StateMachine):
    """Per-connection states of the poll/command loop."""

    idle = State("Idle", initial=True)
    polling = State("Polling")
    awaiting_ack = State("AwaitingAck")
    faulted = State("Faulted")

    link_up = idle.to(polling) | faulted.to(polling)
    dispatch = polling.to(awaiting_ack)
    acknowledge = awaiting_ack.to(polling)
    fail = idle.to(faulted) | polling.to(faulted) | awaiting_ack.to(faulted) | faulted.to.itself()
    link_down = polling.to(idle) | awaiting_ack.to(idle) | faulted.to(idle) | idle.to.itself()

    def before_transition(self, event: str, source: object, target: object) -> None:
        source_name = getattr(source, "id", str(source))
        target_name = getattr(target, "id", str(target))
        if source_name != target_name:
            logger.debug("Link state %s -> %s (trigger: %s)", source_name, target_name, event)

    def on_enter_faulted(self) -> None:
        logger.warning("Link faulted; no frames will be sent until reconnect.")


@dataclass(frozen=True)
class PendingCommand:
    """The single frame in flight and what it was built from."""

    frame: bytes
    delta: StateDelta
    base: RobotState

    @property
    def is_poll(self) -> bool:
        return not self.delta

    def confirmed_state(self, report: RobotState) -> RobotState:
        """Merge a decoded report into the state the command was built from.

        Joints, speed and digital inputs come from the hardware report.
        Digital outputs are not echoed reliably, so they are taken from the
        command when it changed them, and kept as they were otherwise.
        """
        outputs_source = self.delta.apply_to(self.base) if self.delta.touches_outputs() else self.base
        return report.with_changes(
            do_1=outputs_source.do_1,
            do_2=outputs_source.do_2,
            do_3=outputs_source.do_3,
        )


class SyncEngine:
    """Drives the poll/command loop over a connection on a fixed tick.

    Exactly one frame is in flight at a time. Target changes made between
    ticks are coalesced into the next dispatch; a frame being retried is
    never replaced by a newer target.
    """

    def __init__(
        self,
        store: StateStore,
        connection: ConnectionManager,
        config: Optional[SyncConfig] = None,
        machine: Optional[LinkStateMachine] = None,
    ) -> None:
        self._store = store
        self._connection = connection
        self._codec = connection.codec
        self._config = config or SyncConfig()
        self._machine = machine or LinkStateMachine()
        self._tick_lock = threading.Lock()
        self._loop_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._pending: Optional[PendingCommand] = None
        self._failures = 0
        self.commands_sent = 0
        self.polls_sent = 0

    # Introspection ---------------------------------------------------------------

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def state_name(self) -> str:
        return self._machine.current_state.id

    @property
    def pending(self) -> Optional[PendingCommand]:
        return self._pending

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def is_running(self) -> bool:
        return bool(self._loop_thread and self._loop_thread.is_alive())

    # Loop control ----------------------------------------------------------------

    def start(self) -> None:
        """Run ``tick()`` every poll interval on a background thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._loop_thread = threading.Thread(target=self._tick_loop, name="SyncEngineTick", daemon=True)
        self._loop_thread.start()
        logger.info("Sync engine started (poll every %d ms).", self._config.poll_interval_ms)

    def stop(self) -> None:
        self._stop_event.set()
        if self._loop_thread:
            self._loop_thread.join(timeout=2.0)
        self._loop_thread = None
        logger.info("Sync engine stopped.")

    def _tick_loop(self) -> None:
        interval = self._config.poll_interval_ms / 1000.0
        while not self._stop_event.wait(interval):
            try:
                self.tick()
            except Exception:
                logger.exception("Sync tick failed.")

    # Core algorithm ----------------------------------------------------------------

    def tick(self) -> None:
        """One reconciliation step: dispatch at most one frame, then notify observers."""
        with self._tick_lock:
            self._reconcile_link()
            if self._machine.current_state == self._machine.polling:
                self._exchange_once()
                self._reconcile_link()
        self._store.flush_notifications()

    def _exchange_once(self) -> None:
        command = self._build_command()
        self._pending = command
        self._machine.dispatch()
        if command.is_poll:
            self.polls_sent += 1
        else:
            self.commands_sent += 1
            logger.info("Dispatching %s", dict(command.delta.changes))

        try:
            report = self._deliver(command)
        except (ExchangeAborted, NotConnected) as exc:
            logger.info("Link closed during exchange (%s); pending command dropped.", exc)
            self._pending = None
            self._machine.link_down()
            return
        except TransportFault as exc:
            logger.warning("Exchange failed: %s", exc)
            self._pending = None
            self._machine.fail()
            return
        except LinkLost as exc:
            self._pending = None
            self._connection.mark_faulted(exc)
            self._machine.fail()
            return

        self._pending = None
        self._store.update_current(command.confirmed_state(report))
        self._machine.acknowledge()

    def _build_command(self) -> PendingCommand:
        current = self._store.current
        delta = diff(self._store.target, current)
        if delta:
            frame = self._codec.encode(delta, base=current)
        else:
            frame = self._codec.encode_state_request()
        return PendingCommand(frame=frame, delta=delta, base=current)

    def _deliver(self, command: PendingCommand) -> RobotState:
        """Send ``command`` until it is answered, retrying the same bytes with backoff."""
        timeout_s = self._config.ack_timeout_ms / 1000.0
        while True:
            try:
                response = self._connection.exchange(command.frame, timeout_s)
                report = self._codec.decode(response)
            except (LinkTimeout, DecodeError) as exc:
                self._failures += 1
                logger.warning(
                    "Exchange attempt failed (%d/%d): %s",
                    self._failures,
                    self._config.max_retries,
                    exc,
                )
                if self._failures >= self._config.max_retries:
                    raise LinkLost(
                        f"No valid response after {self._failures} consecutive attempts"
                    ) from exc
                self._connection.pause(self._config.backoff_delay_s(self._failures))
                continue
            self._failures = 0
            return report

    def _reconcile_link(self) -> None:
        """Align the machine with the connection status observed right now."""
        status = self._connection.status
        current = self._machine.current_state
        if status is ConnectionStatus.OPEN:
            if current in (self._machine.idle, self._machine.faulted):
                self._failures = 0
                self._machine.link_up()
        elif status is ConnectionStatus.FAULTED:
            if current != self._machine.faulted:
                self._machine.fail()
        elif current != self._machine.idle:
            self._pending = None
            self._machine.link_down()
