"""Core entities shared by the codec, the store and the synchronization engine."""

from .robot_state import (
    COMMAND_FIELDS,
    FIELD_ALIASES,
    INPUT_FIELDS,
    JOINT_FIELDS,
    JOINT_RANGE,
    OUTPUT_FIELDS,
    SPEED_FIELD,
    SPEED_RANGE,
    RobotState,
    StateDelta,
    canonical_field,
    clamp,
    diff,
    field_range,
)

__all__ = [
    "COMMAND_FIELDS",
    "FIELD_ALIASES",
    "INPUT_FIELDS",
    "JOINT_FIELDS",
    "JOINT_RANGE",
    "OUTPUT_FIELDS",
    "SPEED_FIELD",
    "SPEED_RANGE",
    "RobotState",
    "StateDelta",
    "canonical_field",
    "clamp",
    "diff",
    "field_range",
]
