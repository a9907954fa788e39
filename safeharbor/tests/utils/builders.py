from __future__ import annotations

from safeharbor.domain.entities import ACLEntry, Party, Realm, Repo, Resource, User
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services.auth.sessions import SessionManager
from safeharbor.services.parties import create_realm_with_admin, create_user
from safeharbor.services.resources import create_repo


TEST_SALT = "test-salt"
TEST_PASSWORD = "correct horse"


class FakeClock:
    # Settable wall clock for throttle tests.
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_store() -> ObjectStore:
    # Short lock bound so contention tests fail fast.
    return ObjectStore(lock_timeout_s=0.2)


def make_sessions(store: ObjectStore, **kwargs) -> SessionManager:
    return SessionManager(store, secret_salt=TEST_SALT, **kwargs)


async def seed_realm(
    store: ObjectStore,
    sessions: SessionManager,
    *,
    realm_name: str = "acme",
    login_name: str = "alice",
    password: str = TEST_PASSWORD,
) -> tuple[Realm, User]:
    return await create_realm_with_admin(
        store,
        sessions,
        realm_name=realm_name,
        org_full_name=f"{realm_name.title()} Inc",
        description=f"{realm_name} realm",
        login_name=login_name,
        user_name=login_name.title(),
        email_address=f"{login_name}@example.com",
        password=password,
        file_repo_root="/srv/safeharbor",
    )


async def seed_member(
    store: ObjectStore,
    sessions: SessionManager,
    realm: Realm,
    login_name: str,
    *,
    password: str = TEST_PASSWORD,
) -> User:
    return await create_user(
        store,
        sessions,
        realm,
        login_name=login_name,
        name=login_name.title(),
        email_address=f"{login_name}@example.com",
        password=password,
    )


async def seed_repo(store: ObjectStore, realm: Realm, name: str = "webapp") -> Repo:
    return await create_repo(store, realm, name, f"{name} repo")


def assert_acl_bidirectional(store: ObjectStore) -> None:
    # Every entry sits in both its resource's and its party's index, and nothing else is indexed.
    entries = {obj.id: obj for obj in store.entities() if isinstance(obj, ACLEntry)}
    for entry in entries.values():
        assert entry.id in store.get_resource(entry.resource_id).acl_entry_ids
        assert entry.id in store.get_party(entry.party_id).acl_entry_ids
    for obj in store.entities():
        if isinstance(obj, (Party, Resource)):
            assert set(obj.acl_entry_ids) <= set(entries)
