from __future__ import annotations

from dataclasses import fields
from datetime import datetime
import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from safeharbor.core.errors import InternalError
from safeharbor.domain.entities import ENTITY_TYPES, ObjectKind, PersistedObject
from safeharbor.domain.permissions import PermissionMask
from safeharbor.persistence.ids import UniqueIdGenerator
from safeharbor.persistence.models import StoredCounter, StoredObject
from safeharbor.persistence.object_store import ObjectStore


logger = logging.getLogger(__name__)

ID_COUNTER_NAME = "object_ids"
_DATETIME_FIELDS = frozenset({"creation_time", "when"})


def encode_entity(entity: PersistedObject) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for item in fields(entity):
        value = getattr(entity, item.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, PermissionMask):
            value = value.to_list()
        elif isinstance(value, list):
            value = list(value)
        payload[item.name] = value
    return payload


def decode_entity(kind: str, payload: dict[str, Any]) -> PersistedObject:
    try:
        cls = ENTITY_TYPES[ObjectKind(kind)]
    except ValueError as exc:
        raise InternalError(f"Unknown stored object kind {kind}") from exc
    values = dict(payload)
    for name in _DATETIME_FIELDS & values.keys():
        values[name] = datetime.fromisoformat(values[name])
    if "mask" in values:
        values["mask"] = PermissionMask.from_bits(values["mask"])
    return cls(**values)


async def save_snapshot(session: AsyncSession, store: ObjectStore) -> int:
    """Replace the stored snapshot with the store's current contents.

    Live sessions are never written; a reload starts with none.
    """
    await session.execute(delete(StoredObject))
    count = 0
    for entity in store.entities():
        session.add(StoredObject(id=entity.id, kind=entity.kind.value, payload=encode_entity(entity)))
        count += 1
    counter = await session.get(StoredCounter, ID_COUNTER_NAME)
    if counter is None:
        session.add(StoredCounter(name=ID_COUNTER_NAME, value=store.id_generator.last_value))
    else:
        counter.value = store.id_generator.last_value
    await session.commit()
    logger.info("snapshot_saved objects=%s last_id=%s", count, store.id_generator.last_value)
    return count


async def load_snapshot(session: AsyncSession, *, lock_timeout_s: float = 5.0) -> ObjectStore:
    counter = await session.get(StoredCounter, ID_COUNTER_NAME)
    store = ObjectStore(UniqueIdGenerator(counter.value if counter else 0), lock_timeout_s=lock_timeout_s)
    # Insertion order of realms follows id order, which is creation order.
    rows = (await session.execute(select(StoredObject))).scalars().all()
    for row in sorted(rows, key=lambda item: (len(item.id), item.id)):
        store.add(decode_entity(row.kind, row.payload))
    logger.info("snapshot_loaded objects=%s last_id=%s", len(rows), store.id_generator.last_value)
    return store
