from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import threading
from typing import AsyncIterator, Iterator, TypeVar

from safeharbor.core.errors import InternalError, LockTimeoutError, NotFoundError
from safeharbor.domain.entities import (
    ACLEntry,
    Dockerfile,
    DockerfileExecEvent,
    DockerImage,
    Event,
    Flag,
    Group,
    ParameterValue,
    Party,
    PersistedObject,
    Realm,
    Repo,
    Resource,
    ScanConfig,
    ScanEvent,
    User,
)
from safeharbor.persistence.ids import UniqueIdGenerator


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=PersistedObject)


class ObjectStore:
    """Authoritative keyed collection of every persistent entity.

    Besides the id map the store maintains two auxiliary indices, users by
    login name and the ordered list of realm ids. ``add``, ``update`` and
    ``delete`` keep them consistent under a single mutex so a reader never
    observes an entity without its index entry.

    Per-object locks are real ``asyncio.Lock`` instances. Multi-step
    operations take them through :meth:`locked` in a fixed order, parent
    before child and resource before party.
    """

    def __init__(self, id_generator: UniqueIdGenerator | None = None, *, lock_timeout_s: float = 5.0) -> None:
        self._ids = id_generator or UniqueIdGenerator()
        self._lock_timeout_s = lock_timeout_s
        self._objects: dict[str, PersistedObject] = {}
        self._user_ids_by_login: dict[str, str] = {}
        self._login_by_user_id: dict[str, str] = {}
        self._realm_ids: list[str] = []
        self._index_mutex = threading.RLock()
        self._object_locks: dict[str, asyncio.Lock] = {}
        self._deleted_while_locked: set[str] = set()

    # Ids -----------------------------------------------------------------

    @property
    def id_generator(self) -> UniqueIdGenerator:
        return self._ids

    def create_id(self) -> str:
        return self._ids.next_id()

    # Core CRUD -------------------------------------------------------------

    def add(self, entity: PersistedObject) -> None:
        with self._index_mutex:
            if entity.id in self._objects:
                # A collision means the id generator is broken, not the caller.
                logger.error("object_store_id_collision id=%s kind=%s", entity.id, entity.kind.value)
                raise InternalError(f"Object with id {entity.id} already exists")
            if isinstance(entity, User):
                self._index_user(entity)
            self._objects[entity.id] = entity
            if isinstance(entity, Realm):
                self._realm_ids.append(entity.id)

    def get(self, object_id: str) -> PersistedObject:
        obj = self._objects.get(object_id)
        if obj is None:
            raise NotFoundError(f"Object with id {object_id} not found")
        return obj

    def contains(self, object_id: str) -> bool:
        return object_id in self._objects

    def update(self, entity: PersistedObject) -> None:
        with self._index_mutex:
            current = self._objects.get(entity.id)
            if current is None:
                raise NotFoundError(f"Object with id {entity.id} not found")
            if type(current) is not type(entity):
                raise InternalError(
                    f"Object {entity.id} cannot change type from {current.kind.value} to {entity.kind.value}"
                )
            if isinstance(entity, User):
                self._unindex_user(entity.id)
                self._index_user(entity)
            self._objects[entity.id] = entity

    def delete(self, object_id: str) -> PersistedObject:
        with self._index_mutex:
            obj = self._objects.pop(object_id, None)
            if obj is None:
                raise NotFoundError(f"Object with id {object_id} not found")
            if isinstance(obj, User):
                self._unindex_user(object_id)
            if isinstance(obj, Realm):
                self._realm_ids.remove(object_id)
            lock = self._object_locks.get(object_id)
            if lock is not None and not lock.locked():
                del self._object_locks[object_id]
            elif lock is not None:
                self._deleted_while_locked.add(object_id)
            return obj

    def entities(self) -> Iterator[PersistedObject]:
        return iter(list(self._objects.values()))

    def reset(self) -> None:
        # Explicit teardown for tests and snapshot reloads.
        with self._index_mutex:
            self._objects.clear()
            self._user_ids_by_login.clear()
            self._login_by_user_id.clear()
            self._realm_ids.clear()
            self._object_locks.clear()
            self._deleted_while_locked.clear()

    # Auxiliary indices -----------------------------------------------------

    def _index_user(self, user: User) -> None:
        existing = self._user_ids_by_login.get(user.login_name)
        if existing is not None and existing != user.id:
            raise InternalError(f"Login name {user.login_name} already indexed for {existing}")
        self._user_ids_by_login[user.login_name] = user.id
        self._login_by_user_id[user.id] = user.login_name

    def _unindex_user(self, user_id: str) -> None:
        login_name = self._login_by_user_id.pop(user_id, None)
        if login_name is not None:
            self._user_ids_by_login.pop(login_name, None)

    def user_by_login_name(self, login_name: str) -> User | None:
        user_id = self._user_ids_by_login.get(login_name)
        if user_id is None:
            return None
        return self.get_user(user_id)

    def realm_ids(self) -> list[str]:
        return list(self._realm_ids)

    def realm_by_name(self, name: str) -> Realm | None:
        for realm_id in self._realm_ids:
            realm = self.get_realm(realm_id)
            if realm.name == name:
                return realm
        return None

    # Typed accessors -------------------------------------------------------

    def get_typed(self, object_id: str, expected: type[T]) -> T:
        obj = self.get(object_id)
        if not isinstance(obj, expected):
            raise NotFoundError(f"Object with id {object_id} is not a {expected.__name__}")
        return obj

    def get_user(self, object_id: str) -> User:
        return self.get_typed(object_id, User)

    def get_group(self, object_id: str) -> Group:
        return self.get_typed(object_id, Group)

    def get_party(self, object_id: str) -> Party:
        return self.get_typed(object_id, Party)

    def get_acl_entry(self, object_id: str) -> ACLEntry:
        return self.get_typed(object_id, ACLEntry)

    def get_resource(self, object_id: str) -> Resource:
        return self.get_typed(object_id, Resource)

    def get_realm(self, object_id: str) -> Realm:
        return self.get_typed(object_id, Realm)

    def get_repo(self, object_id: str) -> Repo:
        return self.get_typed(object_id, Repo)

    def get_dockerfile(self, object_id: str) -> Dockerfile:
        return self.get_typed(object_id, Dockerfile)

    def get_docker_image(self, object_id: str) -> DockerImage:
        return self.get_typed(object_id, DockerImage)

    def get_scan_config(self, object_id: str) -> ScanConfig:
        return self.get_typed(object_id, ScanConfig)

    def get_flag(self, object_id: str) -> Flag:
        return self.get_typed(object_id, Flag)

    def get_parameter_value(self, object_id: str) -> ParameterValue:
        return self.get_typed(object_id, ParameterValue)

    def get_event(self, object_id: str) -> Event:
        return self.get_typed(object_id, Event)

    def get_scan_event(self, object_id: str) -> ScanEvent:
        return self.get_typed(object_id, ScanEvent)

    def get_exec_event(self, object_id: str) -> DockerfileExecEvent:
        return self.get_typed(object_id, DockerfileExecEvent)

    # Per-object locks ------------------------------------------------------

    def _lock_for(self, object_id: str) -> asyncio.Lock:
        lock = self._object_locks.get(object_id)
        if lock is None:
            lock = asyncio.Lock()
            self._object_locks[object_id] = lock
        return lock

    async def acquire(self, object_id: str, timeout: float | None = None) -> None:
        wait_s = self._lock_timeout_s if timeout is None else timeout
        try:
            await asyncio.wait_for(self._lock_for(object_id).acquire(), timeout=wait_s)
        except asyncio.TimeoutError as exc:
            logger.warning("object_lock_timeout id=%s timeout_s=%s", object_id, wait_s)
            raise LockTimeoutError(f"Timed out waiting for lock on {object_id}") from exc

    def release(self, object_id: str) -> None:
        lock = self._object_locks.get(object_id)
        if lock is None or not lock.locked():
            raise InternalError(f"Lock on {object_id} is not held")
        lock.release()
        # Objects deleted while locked drop their lock once the holder lets go.
        with self._index_mutex:
            if object_id in self._deleted_while_locked and not lock.locked():
                self._deleted_while_locked.discard(object_id)
                self._object_locks.pop(object_id, None)

    def lock_count(self) -> int:
        return len(self._object_locks)

    @asynccontextmanager
    async def locked(self, *object_ids: str, timeout: float | None = None) -> AsyncIterator[None]:
        # Callers list ids in lock order; duplicates and blanks are skipped.
        ordered: list[str] = []
        for object_id in object_ids:
            if object_id and object_id not in ordered:
                ordered.append(object_id)
        held: list[str] = []
        try:
            for object_id in ordered:
                await self.acquire(object_id, timeout)
                held.append(object_id)
            yield
        finally:
            for object_id in reversed(held):
                self.release(object_id)
