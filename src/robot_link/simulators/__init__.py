"""Simulated hardware for running the link without a serial device."""

from .arm import SimulatedArmTransport

__all__ = ["SimulatedArmTransport"]
