"""Synchronization engine scenarios against the simulated arm."""

import threading

import pytest
from conftest import FAST_SYNC, build_link, wait_for
from statemachine.exceptions import TransitionNotAllowed

from robot_link.config.models import SyncConfig
from robot_link.core.entities import RobotState, StateDelta
from robot_link.core.errors import LinkLost, TransportFault
from robot_link.serial_io.codec import TextFrameCodec
from robot_link.services.events import ConnectionStatus
from robot_link.state_machine.engine import LinkStateMachine, PendingCommand


def test_machine_starts_idle_and_follows_connection(link):
    assert link.engine.state_name == "idle"
    link.engine.tick()
    assert link.engine.state_name == "idle"
    assert link.arm.written == []

    assert link.connection.connect("COM-sim", 9600)
    link.engine.tick()
    assert link.engine.state_name == "polling"

    link.connection.disconnect()
    link.engine.tick()
    assert link.engine.state_name == "idle"


def test_joint_target_reaches_arm_as_one_command(connected_link):
    link = connected_link
    link.store.set_target(joint_1=45)

    link.engine.tick()

    assert link.arm.command_frames == [link.codec.encode(RobotState(joint_1=45))]
    assert link.store.current.joint_1 == 45
    assert link.engine.commands_sent == 1


def test_targets_set_between_ticks_are_coalesced(connected_link):
    link = connected_link
    link.store.set_target(joint_1=10)
    link.store.set_target(joint_2=20)
    link.store.set_target(joint_1=30)

    link.engine.tick()

    assert link.arm.written == [link.codec.encode(RobotState(joint_1=30, joint_2=20))]
    assert link.store.current == RobotState(joint_1=30, joint_2=20)


def test_poll_when_nothing_to_send_refreshes_inputs(connected_link):
    link = connected_link
    link.arm.set_inputs(di_2=True)

    link.engine.tick()

    assert link.arm.written == [link.codec.encode_state_request()]
    assert link.engine.polls_sent == 1
    assert link.store.current == RobotState(di_2=True)


def test_converged_target_only_polls_afterwards(connected_link):
    link = connected_link
    link.store.set_target(joint_3=120, speed=80, do_1=True)
    link.engine.tick()
    link.engine.tick()
    link.engine.tick()

    assert len(link.arm.command_frames) == 1
    assert len(link.arm.request_frames) == 2
    assert link.store.current == link.store.target


def test_dropped_replies_resend_identical_frame(connected_link):
    link = connected_link
    link.store.set_target(joint_5=10)
    link.arm.drop_replies(2)

    link.engine.tick()

    expected = link.codec.encode(RobotState(joint_5=10))
    assert link.arm.written == [expected, expected, expected]
    assert link.store.current.joint_5 == 10
    assert link.engine.consecutive_failures == 0
    assert link.connection.status is ConnectionStatus.OPEN


def test_corrupt_reply_counts_as_failure_and_is_retried(connected_link):
    link = connected_link
    link.store.set_target(joint_2=15)
    link.arm.corrupt_replies(1)

    link.engine.tick()

    assert len(link.arm.written) == 2
    assert link.store.current.joint_2 == 15


def test_corrupt_reply_leaves_current_untouched_when_out_of_retries():
    link = build_link(sync=SyncConfig(poll_interval_ms=10, ack_timeout_ms=60, max_retries=1))
    assert link.connection.connect("COM-sim", 9600)
    before = link.store.current
    link.store.set_target(joint_2=15)
    link.arm.corrupt_replies(1)

    link.engine.tick()

    assert link.store.current == before
    assert link.engine.state_name == "faulted"
    assert isinstance(link.connection.last_error, LinkLost)
    link.connection.disconnect()


def test_three_timeouts_fault_the_link_until_reconnect(connected_link):
    link = connected_link
    link.store.set_target(joint_1=45)
    link.arm.stall()

    link.engine.tick()

    frame = link.codec.encode(RobotState(joint_1=45))
    assert link.arm.written == [frame] * FAST_SYNC.max_retries
    assert link.connection.status is ConnectionStatus.FAULTED
    assert isinstance(link.connection.last_error, LinkLost)
    assert link.events[-1].status is ConnectionStatus.FAULTED
    assert isinstance(link.events[-1].error, LinkLost)
    assert link.engine.state_name == "faulted"
    assert link.store.current.joint_1 == 90

    link.engine.tick()
    link.engine.tick()
    assert len(link.arm.written) == FAST_SYNC.max_retries

    link.arm.stall(False)
    assert link.connection.connect("COM-sim", 9600)
    link.engine.tick()
    assert link.engine.state_name == "polling"
    assert link.store.current.joint_1 == 45
    assert link.connection.last_error is None


def test_disconnect_while_awaiting_ack_cancels_without_retry():
    slow = SyncConfig(poll_interval_ms=10, ack_timeout_ms=5000, max_retries=3)
    link = build_link(sync=slow)
    assert link.connection.connect("COM-sim", 9600)
    link.store.set_target(joint_4=33)
    link.arm.stall()

    worker = threading.Thread(target=link.engine.tick)
    worker.start()
    assert wait_for(lambda: len(link.arm.written) == 1)
    assert link.engine.state_name == "awaiting_ack"

    link.connection.disconnect()
    worker.join(timeout=1.0)

    assert not worker.is_alive()
    assert link.connection.status is ConnectionStatus.CLOSED
    assert len(link.arm.written) == 1
    assert link.engine.state_name == "idle"
    assert link.engine.pending is None
    assert ConnectionStatus.FAULTED not in [event.status for event in link.events]


def test_write_failure_faults_link(connected_link):
    link = connected_link
    link.store.set_target(joint_6=1)
    link.arm.fail_writes = True

    link.engine.tick()

    assert link.engine.state_name == "faulted"
    assert link.connection.status is ConnectionStatus.FAULTED
    assert isinstance(link.connection.last_error, TransportFault)


def test_observers_run_outside_the_tick_lock(connected_link):
    link = connected_link
    lock_states = []
    link.store.observe_current(lambda _state: lock_states.append(link.engine._tick_lock.locked()))
    link.store.observe_target(lambda _state: lock_states.append(link.engine._tick_lock.locked()))
    link.store.set_target(joint_1=100)

    link.engine.tick()

    assert lock_states == [False, False]


def test_text_codec_end_to_end():
    link = build_link(codec=TextFrameCodec())
    assert link.connection.connect("COM-sim", 9600)
    link.store.set_target(joint_2=120, do_1=True)

    link.engine.tick()

    assert link.arm.written == [b"S,90,120,90,90,90,90,50,1,0,0,0,0,0\n"]
    assert link.store.current == RobotState(joint_2=120, do_1=True)
    link.connection.disconnect()


def test_background_loop_converges(connected_link):
    link = connected_link
    link.engine.start()
    try:
        link.store.set_target(joint_1=0, speed=100)
        assert wait_for(lambda: link.store.current.joint_1 == 0)
        assert link.store.current.speed == 100
    finally:
        link.engine.stop()
    assert not link.engine.is_running


def test_confirmed_state_keeps_commanded_outputs():
    base = RobotState(do_1=True)
    command = PendingCommand(frame=b"", delta=StateDelta({"do_1": False, "do_2": True}), base=base)
    report = RobotState(joint_1=12, do_1=True, do_3=True, di_1=True)

    confirmed = command.confirmed_state(report)

    assert confirmed == RobotState(joint_1=12, do_2=True, di_1=True)


def test_poll_keeps_previous_outputs():
    base = RobotState(do_3=True)
    poll = PendingCommand(frame=b"", delta=StateDelta({}), base=base)
    assert poll.is_poll
    assert poll.confirmed_state(RobotState(di_1=True)) == RobotState(do_3=True, di_1=True)


@pytest.mark.parametrize("trigger", ["dispatch", "acknowledge"])
def test_machine_rejects_io_events_while_idle(trigger):
    machine = LinkStateMachine()
    with pytest.raises(TransitionNotAllowed):
        getattr(machine, trigger)()
    assert machine.current_state.id == "idle"


def test_command_without_output_changes_keeps_previous_outputs():
    base = RobotState(do_2=True)
    command = PendingCommand(frame=b"", delta=StateDelta({"joint_1": 40}), base=base)
    assert not command.delta.touches_outputs()
    assert command.confirmed_state(RobotState(joint_1=40)) == RobotState(joint_1=40, do_2=True)


def _record_pauses(monkeypatch, link):
    delays = []
    original = link.connection.pause

    def recording_pause(delay_s):
        delays.append(delay_s)
        original(delay_s)

    monkeypatch.setattr(link.connection, "pause", recording_pause)
    return delays


def test_retries_wait_with_exponential_backoff(connected_link, monkeypatch):
    link = connected_link
    delays = _record_pauses(monkeypatch, link)
    link.store.set_target(joint_5=10)
    link.arm.drop_replies(2)

    link.engine.tick()

    assert delays == pytest.approx([0.001, 0.002])
    assert link.store.current.joint_5 == 10


def test_backoff_delay_stops_at_cap(monkeypatch):
    sync = SyncConfig(
        poll_interval_ms=10,
        ack_timeout_ms=30,
        max_retries=6,
        backoff_base_ms=2,
        backoff_factor=2.0,
        backoff_cap_ms=5,
    )
    link = build_link(sync=sync)
    assert link.connection.connect("COM-sim", 9600)
    delays = _record_pauses(monkeypatch, link)
    link.store.set_target(joint_1=1)
    link.arm.drop_replies(5)

    link.engine.tick()

    assert delays == pytest.approx([0.002, 0.004, 0.005, 0.005, 0.005])
    assert link.store.current.joint_1 == 1
    assert len(link.arm.written) == 6
    link.connection.disconnect()


def test_no_backoff_after_final_attempt(connected_link, monkeypatch):
    link = connected_link
    delays = _record_pauses(monkeypatch, link)
    link.store.set_target(joint_1=45)
    link.arm.stall()

    link.engine.tick()

    assert len(delays) == FAST_SYNC.max_retries - 1
    assert link.engine.state_name == "faulted"
