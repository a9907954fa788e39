from __future__ import annotations

from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Sequence

from safeharbor.core.errors import InvalidActionError, ValidationError


class Capability(IntEnum):
    # Position of each capability in the mask and in the wire encoding.
    CREATE_IN = 0
    READ = 1
    WRITE = 2
    EXECUTE = 3
    DELETE = 4


WIRE_FIELD_NAMES = ("CreateIn", "Read", "Write", "Execute", "Delete")


@dataclass(frozen=True)
class PermissionMask:
    create_in: bool = False
    read: bool = False
    write: bool = False
    execute: bool = False
    delete: bool = False

    @classmethod
    def from_bits(cls, bits: Sequence[bool]) -> "PermissionMask":
        if len(bits) != len(Capability):
            raise ValidationError(f"Permission mask must have {len(Capability)} fields, got {len(bits)}")
        return cls(*(bool(bit) for bit in bits))

    @classmethod
    def of(cls, *capabilities: Capability) -> "PermissionMask":
        bits = [False] * len(Capability)
        for capability in capabilities:
            bits[int(capability)] = True
        return cls.from_bits(bits)

    @classmethod
    def full(cls) -> "PermissionMask":
        return cls.of(*Capability)

    @classmethod
    def from_wire(cls, values: Sequence[str]) -> "PermissionMask":
        # Each field travels as the literal string "true" or "false".
        if len(values) != len(WIRE_FIELD_NAMES):
            raise ValidationError(f"Permission mask must have {len(WIRE_FIELD_NAMES)} fields")
        bits = []
        for name, raw in zip(WIRE_FIELD_NAMES, values):
            if raw not in ("true", "false"):
                raise ValidationError(f"{name} must be 'true' or 'false', got {raw!r}")
            bits.append(raw == "true")
        return cls.from_bits(bits)

    @classmethod
    def from_wire_fields(cls, values: dict[str, str]) -> "PermissionMask":
        # Accept the named-field form (CreateIn=..., Read=...) used by form posts.
        missing = [name for name in WIRE_FIELD_NAMES if name not in values]
        if missing:
            raise ValidationError(f"Missing permission fields: {', '.join(missing)}")
        return cls.from_wire([values[name] for name in WIRE_FIELD_NAMES])

    def to_list(self) -> list[bool]:
        return [getattr(self, item.name) for item in fields(self)]

    def to_wire(self) -> list[str]:
        return ["true" if bit else "false" for bit in self.to_list()]

    def has(self, capability: Capability) -> bool:
        return self.to_list()[int(capability)]

    def union(self, other: "PermissionMask") -> "PermissionMask":
        return PermissionMask.from_bits([a or b for a, b in zip(self.to_list(), other.to_list())])

    def capabilities(self) -> list[Capability]:
        return [capability for capability in Capability if self.has(capability)]

    def single_capability(self) -> Capability:
        # Authorization questions name exactly one capability.
        granted = self.capabilities()
        if len(granted) != 1:
            raise InvalidActionError(
                f"Action mask must have exactly one capability set, found {len(granted)}"
            )
        return granted[0]


def as_capability(action: Capability | PermissionMask) -> Capability:
    if isinstance(action, PermissionMask):
        return action.single_capability()
    if isinstance(action, Capability):
        return action
    raise InvalidActionError(f"Unsupported action type: {type(action).__name__}")


CREATE_IN = PermissionMask.of(Capability.CREATE_IN)
READ = PermissionMask.of(Capability.READ)
WRITE = PermissionMask.of(Capability.WRITE)
EXECUTE = PermissionMask.of(Capability.EXECUTE)
DELETE = PermissionMask.of(Capability.DELETE)
