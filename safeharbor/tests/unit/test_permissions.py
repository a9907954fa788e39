from __future__ import annotations

import pytest

from safeharbor.core.errors import InvalidActionError, ValidationError
from safeharbor.domain.permissions import (
    READ,
    WRITE,
    Capability,
    PermissionMask,
    as_capability,
)


def test_wire_encoding_follows_capability_order() -> None:
    mask = PermissionMask.of(Capability.READ, Capability.DELETE)
    assert mask.to_wire() == ["false", "true", "false", "false", "true"]
    assert PermissionMask.from_wire(mask.to_wire()) == mask


def test_from_wire_rejects_wrong_length_and_bad_literals() -> None:
    with pytest.raises(ValidationError):
        PermissionMask.from_wire(["true", "false"])
    with pytest.raises(ValidationError):
        PermissionMask.from_wire(["true", "false", "yes", "false", "false"])


def test_from_wire_fields_requires_every_named_field() -> None:
    mask = PermissionMask.from_wire_fields(
        {"CreateIn": "false", "Read": "true", "Write": "true", "Execute": "false", "Delete": "false"}
    )
    assert mask == READ.union(WRITE)
    with pytest.raises(ValidationError):
        PermissionMask.from_wire_fields({"Read": "true"})


def test_union_is_bitwise_or() -> None:
    assert READ.union(WRITE).capabilities() == [Capability.READ, Capability.WRITE]
    assert READ.union(READ) == READ


def test_action_masks_must_name_exactly_one_capability() -> None:
    assert as_capability(WRITE) is Capability.WRITE
    assert as_capability(Capability.EXECUTE) is Capability.EXECUTE
    with pytest.raises(InvalidActionError):
        as_capability(PermissionMask())
    with pytest.raises(InvalidActionError):
        as_capability(READ.union(WRITE))
    with pytest.raises(InvalidActionError):
        as_capability("read")  # type: ignore[arg-type]


def test_full_mask_has_every_capability() -> None:
    full = PermissionMask.full()
    assert all(full.has(capability) for capability in Capability)
