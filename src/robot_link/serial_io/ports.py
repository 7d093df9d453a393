"""Serial port enumeration."""

from __future__ import annotations

import logging
from typing import List, Sequence

from serial.tools import list_ports as serial_list_ports

logger = logging.getLogger("serial.ports")


def list_ports(include_simulated: bool = False, simulated_ports: Sequence[str] = ("COM-sim",)) -> List[str]:
    """Return device names of the serial ports visible to the OS; empty when none exist."""
    ports = sorted(info.device for info in serial_list_ports.comports())
    logger.debug("Found %d serial ports: %s", len(ports), ports)
    if include_simulated:
        ports.extend(port for port in simulated_ports if port not in ports)
    return ports
