"""Command-line front end: connect to the arm and keep it in sync with a target."""

from __future__ import annotations

import argparse
import logging
import queue
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Dict, Optional, Sequence

from robot_link.config import Config, load_config
from robot_link.infra import configure_logging, install_exception_hook
from robot_link.serial_io import list_ports
from robot_link.services import (
    ConnectionStatusEvent,
    CurrentStateEvent,
    LinkEventBus,
    StopEvent,
    TargetStateEvent,
)
from robot_link.session import RobotLinkSession

logger = logging.getLogger("app.main")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep a 6-axis robot arm in sync over a serial link.")
    parser.add_argument("--config", type=Path, default=None, help="YAML/JSON configuration file.")
    parser.add_argument("--port", type=str, default=None, help="Serial port id (COM-sim for the simulator).")
    parser.add_argument("--baud", type=int, default=None, help="Baud rate, overrides the config file.")
    parser.add_argument("--list-ports", action="store_true", help="Print available ports and exit.")
    parser.add_argument(
        "--set",
        dest="assignments",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Target assignment, e.g. joint_1=45 or do_2=1. Repeatable.",
    )
    parser.add_argument("--duration", type=float, default=None, help="Seconds to run before exiting.")
    return parser.parse_args(argv)


def parse_assignments(items: Sequence[str]) -> Dict[str, int]:
    """Turn ``FIELD=VALUE`` strings into a partial target."""
    updates: Dict[str, int] = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected FIELD=VALUE, got {item!r}")
        try:
            updates[name.strip()] = int(value)
        except ValueError as exc:
            raise ValueError(f"Value for {name.strip()} must be an integer, got {value!r}") from exc
    return updates


def build_config(args: argparse.Namespace) -> Config:
    config = load_config(args.config) if args.config else Config()
    serial_changes = {}
    if args.port:
        serial_changes["port"] = args.port
    if args.baud:
        serial_changes["baudrate"] = args.baud
    if serial_changes:
        config = replace(config, serial=replace(config.serial, **serial_changes))
    return config


def run(session: RobotLinkSession, bus: LinkEventBus, duration: Optional[float]) -> None:
    """Log events from the bus until a StopEvent, Ctrl+C or ``duration`` elapses."""
    deadline = time.monotonic() + duration if duration is not None else None
    while deadline is None or time.monotonic() < deadline:
        try:
            event = bus.get(timeout=0.2)
        except queue.Empty:
            continue
        if isinstance(event, StopEvent):
            logger.info("Stopping: %s", event.reason)
            break
        if isinstance(event, ConnectionStatusEvent):
            if event.error is not None:
                logger.warning("Connection %s: %s", event.status.value, event.reason)
            else:
                logger.info("Connection %s", event.status.value)
        elif isinstance(event, CurrentStateEvent):
            logger.info("Current: %s", event.state.as_dict())
        elif isinstance(event, TargetStateEvent):
            logger.info("Target: %s", event.state.as_dict())


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = build_config(args)
        updates = parse_assignments(args.assignments)
    except (OSError, ValueError, TypeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.list_ports:
        for port in list_ports(include_simulated=True, simulated_ports=config.serial.simulated_ports):
            print(port)
        return 0

    configure_logging(config.logging)
    install_exception_hook()

    bus = LinkEventBus()
    session = RobotLinkSession.create(config)
    session.publish_to(bus)
    try:
        if not session.connect():
            logger.error("Could not connect: %s", session.last_error)
            return 1
        if updates:
            try:
                session.set_target(updates)
            except (KeyError, ValueError, TypeError) as exc:
                logger.error("Invalid target: %s", exc)
                return 2
        run(session, bus, args.duration)
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
    finally:
        bus.stop("shutdown")
        session.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
