"""Robot state snapshots and the field-wise delta used to build commands."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Tuple

JOINT_FIELDS: Tuple[str, ...] = tuple(f"joint_{index}" for index in range(1, 7))
OUTPUT_FIELDS: Tuple[str, ...] = ("do_1", "do_2", "do_3")
INPUT_FIELDS: Tuple[str, ...] = ("di_1", "di_2", "di_3")
SPEED_FIELD = "speed"

# Fields the host is allowed to command. Digital inputs are hardware-owned.
COMMAND_FIELDS: Tuple[str, ...] = JOINT_FIELDS + (SPEED_FIELD,) + OUTPUT_FIELDS

JOINT_RANGE: Tuple[int, int] = (0, 180)
SPEED_RANGE: Tuple[int, int] = (0, 100)

_NUMERIC_DOMAINS: Tuple[Tuple[str, Tuple[int, int]], ...] = tuple(
    (name, JOINT_RANGE) for name in JOINT_FIELDS
) + ((SPEED_FIELD, SPEED_RANGE),)

FIELD_ALIASES: Dict[str, str] = {
    **{f"J{index}": f"joint_{index}" for index in range(1, 7)},
    **{f"Do{index}": f"do_{index}" for index in range(1, 4)},
    **{f"Di{index}": f"di_{index}" for index in range(1, 4)},
    "robotSpeed": SPEED_FIELD,
    "robot_speed": SPEED_FIELD,
}


def field_range(name: str) -> Tuple[int, int] | None:
    """Return the inclusive domain of a numeric field, or None for booleans."""
    if name in JOINT_FIELDS:
        return JOINT_RANGE
    if name == SPEED_FIELD:
        return SPEED_RANGE
    return None


def canonical_field(name: str) -> str:
    """Map legacy UI names (J1, Do1, robotSpeed, ...) to RobotState field names."""
    resolved = FIELD_ALIASES.get(name, name)
    if resolved not in _ALL_FIELDS:
        raise KeyError(f"Unknown robot state field: {name!r}")
    return resolved


def clamp(value: int, bounds: Tuple[int, int]) -> int:
    low, high = bounds
    return max(low, min(high, value))


@dataclass(frozen=True)
class RobotState:
    """Immutable snapshot of joints, speed and digital I/O of the arm."""

    joint_1: int = 90
    joint_2: int = 90
    joint_3: int = 90
    joint_4: int = 90
    joint_5: int = 90
    joint_6: int = 90
    speed: int = 50
    do_1: bool = False
    do_2: bool = False
    do_3: bool = False
    di_1: bool = False
    di_2: bool = False
    di_3: bool = False

    @property
    def joints(self) -> Tuple[int, ...]:
        return tuple(getattr(self, name) for name in JOINT_FIELDS)

    @property
    def outputs(self) -> Tuple[bool, ...]:
        return tuple(getattr(self, name) for name in OUTPUT_FIELDS)

    @property
    def inputs(self) -> Tuple[bool, ...]:
        return tuple(getattr(self, name) for name in INPUT_FIELDS)

    def as_dict(self) -> Dict[str, Any]:
        """Plain dict export in canonical field order."""
        return asdict(self)

    def with_changes(self, **changes: Any) -> "RobotState":
        """Return a copy with ``changes`` applied, without any normalisation."""
        return replace(self, **changes)

    def clamped(self) -> "RobotState":
        """Return a copy whose numeric fields are forced into their domains."""
        changes: Dict[str, Any] = {}
        for name, bounds in _NUMERIC_DOMAINS:
            value = clamp(int(getattr(self, name)), bounds)
            if value != getattr(self, name):
                changes[name] = value
        return replace(self, **changes) if changes else self

    def domain_violations(self) -> list[str]:
        """List human readable descriptions of fields outside their domain."""
        problems: list[str] = []
        for item in fields(self):
            value = getattr(self, item.name)
            bounds = field_range(item.name)
            if bounds is None:
                if not isinstance(value, bool):
                    problems.append(f"{item.name}={value!r} is not a bool")
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                problems.append(f"{item.name}={value!r} is not an int")
            elif not bounds[0] <= value <= bounds[1]:
                problems.append(f"{item.name}={value} outside [{bounds[0]}, {bounds[1]}]")
        return problems


_ALL_FIELDS = frozenset(item.name for item in fields(RobotState))


@dataclass(frozen=True)
class StateDelta:
    """Command-encodable fields where the target differs from the current state."""

    changes: Mapping[str, Any]

    def __post_init__(self) -> None:
        unknown = [name for name in self.changes if name not in COMMAND_FIELDS]
        if unknown:
            raise KeyError(f"Delta may only contain command fields, got {unknown}")
        object.__setattr__(self, "changes", MappingProxyType(dict(self.changes)))

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.changes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateDelta):
            return NotImplemented
        return dict(self.changes) == dict(other.changes)

    def __hash__(self) -> int:
        return hash(tuple(sorted(self.changes.items())))

    def apply_to(self, base: RobotState) -> RobotState:
        """Overlay the delta on ``base``; digital inputs always come from ``base``."""
        return replace(base, **self.changes) if self.changes else base

    def touches_outputs(self) -> bool:
        return any(name in OUTPUT_FIELDS for name in self.changes)


def diff(target: RobotState, current: RobotState) -> StateDelta:
    """Field-wise comparison of the command fields of ``target`` against ``current``."""
    changes = {
        name: getattr(target, name)
        for name in COMMAND_FIELDS
        if getattr(target, name) != getattr(current, name)
    }
    return StateDelta(changes)
