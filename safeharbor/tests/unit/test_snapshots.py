from __future__ import annotations

import pytest

from safeharbor.domain.permissions import READ, Capability
from safeharbor.persistence.db import build_engine, build_sessionmaker, create_schema
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.persistence.snapshots import load_snapshot, save_snapshot
from safeharbor.services import acl
from safeharbor.services.auth.sessions import Credentials, SessionManager
from safeharbor.services.authz import authorize
from safeharbor.services.parties import add_user_to_group, create_group
from safeharbor.services.resources import create_scan_config
from safeharbor.tests.utils.builders import TEST_PASSWORD, make_sessions, seed_member, seed_realm, seed_repo


@pytest.mark.asyncio
async def test_snapshot_round_trip_restores_indices(store: ObjectStore, sessions: SessionManager) -> None:
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    session_factory = build_sessionmaker(engine)
    try:
        await create_schema(engine)
        acme, _alice = await seed_realm(store, sessions)
        await seed_realm(store, sessions, realm_name="globex", login_name="bill")
        repo = await seed_repo(store, acme, "webapp")
        bob = await seed_member(store, sessions, acme, "bob")
        devs = await create_group(store, acme, "devs")
        await add_user_to_group(store, devs, bob)
        await acl.grant_access(store, repo, devs, READ)
        await create_scan_config(store, repo, "nightly", provider_name="clair", parameters={"a": "1"})
        last_id = store.id_generator.last_value

        async with session_factory() as session:
            saved = await save_snapshot(session, store)
        async with session_factory() as session:
            restored = await load_snapshot(session)

        assert saved == len(list(store.entities()))
        assert restored.id_generator.last_value == last_id
        assert int(restored.create_id()) == last_id + 1
        assert [restored.get_realm(item).name for item in restored.realm_ids()] == ["acme", "globex"]
        restored_bob = restored.user_by_login_name("bob")
        assert restored_bob is not None
        assert restored_bob.group_ids == [devs.id]
        assert restored.get_acl_entry(restored.get_repo(repo.id).acl_entry_ids[0]).mask == READ
        assert restored.get_repo(repo.id).creation_time == repo.creation_time
        assert authorize(restored, restored_bob, Capability.READ, repo.id)

        # Sessions are not part of the snapshot; the restored store still supports fresh logins.
        fresh = make_sessions(restored)
        token = fresh.login(Credentials(login_id="bob", password=TEST_PASSWORD))
        assert fresh.authenticate(token.session_id) is not None

        # A second save replaces rather than appends.
        async with session_factory() as session:
            assert await save_snapshot(session, restored) == len(list(restored.entities()))
    finally:
        await engine.dispose()
