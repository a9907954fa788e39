from __future__ import annotations

import logging

from pydantic import BaseModel

from safeharbor.core.errors import InternalError, NotFoundError
from safeharbor.domain.entities import ACLEntry, Party, Resource
from safeharbor.domain.permissions import PermissionMask
from safeharbor.persistence.object_store import ObjectStore


logger = logging.getLogger(__name__)


class ACLEntryDesc(BaseModel):
    # Outbound descriptor; the mask travels as five "true"/"false" strings.
    entry_id: str
    resource_id: str
    party_id: str
    mask: list[str]


def describe_entry(entry: ACLEntry) -> ACLEntryDesc:
    return ACLEntryDesc(
        entry_id=entry.id,
        resource_id=entry.resource_id,
        party_id=entry.party_id,
        mask=entry.mask.to_wire(),
    )


def _load_entry(store: ObjectStore, entry_id: str) -> ACLEntry:
    # An index that names a missing entry is a broken invariant, not a caller error.
    try:
        return store.get_acl_entry(entry_id)
    except NotFoundError as exc:
        logger.error("acl_entry_dangling entry_id=%s", entry_id)
        raise InternalError(f"ACL entry {entry_id} is indexed but does not exist") from exc


def entry_for_party(store: ObjectStore, party: Party, resource_id: str) -> ACLEntry | None:
    # Linear scan of the party's index for the entry naming the resource.
    for entry_id in party.acl_entry_ids:
        entry = _load_entry(store, entry_id)
        if entry.resource_id == resource_id:
            return entry
    return None


def entry_for_resource(store: ObjectStore, resource: Resource, party_id: str) -> ACLEntry | None:
    for entry_id in resource.acl_entry_ids:
        entry = _load_entry(store, entry_id)
        if entry.party_id == party_id:
            return entry
    return None


def _create_entry(store: ObjectStore, resource: Resource, party: Party, mask: PermissionMask) -> ACLEntry:
    # Link into both indices together so neither side ever sees a half-made entry.
    entry = ACLEntry(id=store.create_id(), resource_id=resource.id, party_id=party.id, mask=mask)
    store.add(entry)
    resource.acl_entry_ids.append(entry.id)
    party.acl_entry_ids.append(entry.id)
    store.update(resource)
    store.update(party)
    logger.info(
        "acl_entry_created entry_id=%s resource_id=%s party_id=%s mask=%s",
        entry.id,
        resource.id,
        party.id,
        ",".join(entry.mask.to_wire()),
    )
    return entry


def set_access(store: ObjectStore, resource: Resource, party: Party, mask: PermissionMask) -> ACLEntry:
    # Overwrite the pair's mask, creating the entry on first grant.
    entry = entry_for_party(store, party, resource.id)
    if entry is None:
        return _create_entry(store, resource, party, mask)
    entry.mask = mask
    store.update(entry)
    return entry


def add_access(store: ObjectStore, resource: Resource, party: Party, mask: PermissionMask) -> ACLEntry:
    # OR the new rights into the existing mask; granting twice is a no-op.
    entry = entry_for_party(store, party, resource.id)
    if entry is None:
        return _create_entry(store, resource, party, mask)
    entry.mask = entry.mask.union(mask)
    store.update(entry)
    return entry


def _unlink_entry(store: ObjectStore, entry: ACLEntry, resource: Resource, party: Party) -> None:
    if entry.id in resource.acl_entry_ids:
        resource.acl_entry_ids.remove(entry.id)
    if entry.id in party.acl_entry_ids:
        party.acl_entry_ids.remove(entry.id)
    store.update(resource)
    store.update(party)
    store.delete(entry.id)


def remove_access(store: ObjectStore, resource: Resource, party: Party) -> None:
    entry = entry_for_resource(store, resource, party.id)
    if entry is None:
        return
    _unlink_entry(store, entry, resource, party)
    logger.info("acl_entry_removed entry_id=%s resource_id=%s party_id=%s", entry.id, resource.id, party.id)


def _resolve_party(store: ObjectStore, entry: ACLEntry) -> Party:
    try:
        return store.get_party(entry.party_id)
    except NotFoundError as exc:
        logger.error("acl_entry_party_missing entry_id=%s party_id=%s", entry.id, entry.party_id)
        raise InternalError(f"ACL entry {entry.id} names missing party {entry.party_id}") from exc


def _resolve_resource(store: ObjectStore, entry: ACLEntry) -> Resource:
    try:
        return store.get_resource(entry.resource_id)
    except NotFoundError as exc:
        logger.error("acl_entry_resource_missing entry_id=%s resource_id=%s", entry.id, entry.resource_id)
        raise InternalError(f"ACL entry {entry.id} names missing resource {entry.resource_id}") from exc


def remove_all_access(store: ObjectStore, resource: Resource) -> int:
    # Strip every entry on the resource, removing each from its party's index too.
    removed = 0
    for entry_id in list(resource.acl_entry_ids):
        entry = _load_entry(store, entry_id)
        party = _resolve_party(store, entry)
        _unlink_entry(store, entry, resource, party)
        removed += 1
    if removed:
        logger.info("acl_entries_cleared resource_id=%s count=%s", resource.id, removed)
    return removed


def remove_all_party_access(store: ObjectStore, party: Party) -> int:
    removed = 0
    for entry_id in list(party.acl_entry_ids):
        entry = _load_entry(store, entry_id)
        resource = _resolve_resource(store, entry)
        _unlink_entry(store, entry, resource, party)
        removed += 1
    return removed


def list_resource_entries(store: ObjectStore, resource: Resource) -> list[ACLEntryDesc]:
    return [describe_entry(_load_entry(store, entry_id)) for entry_id in resource.acl_entry_ids]


async def grant_access(
    store: ObjectStore,
    resource: Resource,
    party: Party,
    mask: PermissionMask,
    *,
    merge: bool = False,
) -> ACLEntry:
    # Locked entry point for handlers: resource before party.
    async with store.locked(resource.id, party.id):
        if merge:
            return add_access(store, resource, party, mask)
        return set_access(store, resource, party, mask)


async def revoke_access(store: ObjectStore, resource: Resource, party: Party) -> None:
    async with store.locked(resource.id, party.id):
        remove_access(store, resource, party)
