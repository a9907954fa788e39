from __future__ import annotations

import pytest

from safeharbor.core.errors import UnauthorizedError
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services.auth.sessions import Credentials, SessionManager
from safeharbor.tests.utils.builders import TEST_PASSWORD, FakeClock, make_sessions, seed_member, seed_realm


def test_session_id_format_and_integrity(sessions: SessionManager) -> None:
    session_id = sessions.mint_session_id()
    nonce, digest = session_id.split(":")

    assert nonce.isdigit()
    assert len(digest) == 128
    assert sessions.structurally_valid(session_id)
    assert not sessions.structurally_valid(f"{nonce}:{'0' * 128}")
    assert not sessions.structurally_valid(nonce)
    assert not sessions.structurally_valid(f"{session_id}:extra")


def test_non_ascii_digest_fails_integrity_gate(sessions: SessionManager) -> None:
    nonce = sessions.mint_session_id().split(":")[0]
    assert not sessions.structurally_valid(f"{nonce}:é")
    assert not sessions.structurally_valid("1700000000:" + "é" * 128)
    assert sessions.authenticate(f"{nonce}:é") is None


def test_mint_nonces_strictly_increase_within_a_tick(store: ObjectStore) -> None:
    manager = make_sessions(store, nanos=lambda: 1000)
    first = manager.mint_session_id()
    second = manager.mint_session_id()
    assert first.split(":")[0] == "1000"
    assert second.split(":")[0] == "1001"


def test_different_salt_rejects_token(store: ObjectStore, sessions: SessionManager) -> None:
    other = SessionManager(store, secret_salt="another-salt")
    assert not other.structurally_valid(sessions.mint_session_id())


@pytest.mark.asyncio
async def test_login_issues_token_with_realm_context(store: ObjectStore, sessions: SessionManager) -> None:
    realm, _alice = await seed_realm(store, sessions)
    await seed_member(store, sessions, realm, "bob")

    alice_token = sessions.login(Credentials(login_id="alice", password=TEST_PASSWORD))
    bob_token = sessions.login(Credentials(login_id="bob", password=TEST_PASSWORD))

    assert alice_token.authenticated_user_id == "alice"
    assert alice_token.realm_id == realm.id
    assert alice_token.is_admin_user is True
    assert bob_token.is_admin_user is False
    assert sessions.authenticate(alice_token.session_id) == alice_token
    assert sessions.resolve_user(bob_token).login_name == "bob"


@pytest.mark.asyncio
async def test_logout_fails_liveness_gate(store: ObjectStore, sessions: SessionManager) -> None:
    await seed_realm(store, sessions)
    token = sessions.login(Credentials(login_id="alice", password=TEST_PASSWORD))

    sessions.invalidate_session(token.session_id)

    assert sessions.structurally_valid(token.session_id)
    assert not sessions.is_live(token.session_id)
    assert sessions.authenticate(token.session_id) is None
    with pytest.raises(UnauthorizedError):
        sessions.require_session(token.session_id)


@pytest.mark.asyncio
async def test_forged_digest_fails_integrity_gate(store: ObjectStore, sessions: SessionManager) -> None:
    await seed_realm(store, sessions)
    token = sessions.login(Credentials(login_id="alice", password=TEST_PASSWORD))
    nonce, digest = token.session_id.split(":")
    forged = f"{nonce}:{digest[:-1]}{'0' if digest[-1] != '0' else '1'}"
    # Plant a live entry under the forged id so only the digest check can reject it.
    sessions._live_sessions[forged] = Credentials(login_id="alice", password="")

    assert sessions.authenticate(forged) is None


def test_unknown_or_missing_session_is_unauthorized(sessions: SessionManager) -> None:
    with pytest.raises(UnauthorizedError):
        sessions.require_session(None)
    with pytest.raises(UnauthorizedError):
        sessions.require_session(sessions.mint_session_id())


@pytest.mark.asyncio
async def test_live_table_keeps_no_password(store: ObjectStore, sessions: SessionManager) -> None:
    await seed_realm(store, sessions)
    token = sessions.login(Credentials(login_id="alice", password=TEST_PASSWORD))
    assert sessions._live_sessions[token.session_id].password == ""


@pytest.mark.asyncio
async def test_bad_credentials_and_inactive_users(store: ObjectStore, sessions: SessionManager) -> None:
    realm, _alice = await seed_realm(store, sessions)
    bob = await seed_member(store, sessions, realm, "bob")

    with pytest.raises(UnauthorizedError):
        sessions.login(Credentials(login_id="nobody", password=TEST_PASSWORD))
    with pytest.raises(UnauthorizedError):
        sessions.login(Credentials(login_id="bob", password="wrong"))

    bob.is_active = False
    store.update(bob)
    with pytest.raises(UnauthorizedError):
        sessions.login(Credentials(login_id="bob", password=TEST_PASSWORD))


@pytest.mark.asyncio
async def test_login_throttle_window(store: ObjectStore) -> None:
    clock = FakeClock()
    manager = make_sessions(store, clock=clock)
    _realm, alice = await seed_realm(store, manager)

    for _ in range(5):
        with pytest.raises(UnauthorizedError):
            manager.login(Credentials(login_id="alice", password="wrong"))
        clock.advance(1)
    assert len(alice.recent_login_attempts) == 5

    # Correct password is still refused while the window is full.
    with pytest.raises(UnauthorizedError, match="Too many"):
        manager.login(Credentials(login_id="alice", password=TEST_PASSWORD))
    assert len(alice.recent_login_attempts) == 5

    clock.advance(601)
    token = manager.login(Credentials(login_id="alice", password=TEST_PASSWORD))
    assert token.authenticated_user_id == "alice"


@pytest.mark.asyncio
async def test_hmac_mode_round_trips(store: ObjectStore) -> None:
    plain = make_sessions(store)
    keyed = make_sessions(store, hash_mode="hmac_sha512")
    await seed_realm(store, keyed)

    token = keyed.login(Credentials(login_id="alice", password=TEST_PASSWORD))

    assert keyed.authenticate(token.session_id) is not None
    assert not plain.structurally_valid(token.session_id)


@pytest.mark.asyncio
async def test_clear_all_sessions_drops_live_table(store: ObjectStore, sessions: SessionManager) -> None:
    await seed_realm(store, sessions)
    token = sessions.login(Credentials(login_id="alice", password=TEST_PASSWORD))

    sessions.clear_all_sessions()

    assert sessions.authenticate(token.session_id) is None
