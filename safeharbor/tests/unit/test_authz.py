from __future__ import annotations

import pytest

from safeharbor.core.errors import ForbiddenError, InternalError, InvalidActionError, NotFoundError
from safeharbor.domain.permissions import READ, WRITE, Capability, PermissionMask
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services import acl
from safeharbor.services.auth.sessions import SessionManager
from safeharbor.services.authz import (
    REASON_DENIED,
    REASON_GRANTED,
    REASON_RESOURCE_NOT_FOUND,
    REASON_SELF,
    authorize,
    require_authorized,
)
from safeharbor.services.parties import add_user_to_group, create_group
from safeharbor.services.resources import create_dockerfile
from safeharbor.tests.utils.builders import seed_member, seed_realm, seed_repo


@pytest.mark.asyncio
async def test_realm_grant_reaches_repo_but_not_its_leaves(store: ObjectStore, sessions: SessionManager) -> None:
    realm, alice = await seed_realm(store, sessions)
    repo = await seed_repo(store, realm, "webapp")
    dockerfile = await create_dockerfile(store, repo, "Dockerfile1", external_file_path="/srv/Dockerfile1")

    assert acl.entry_for_party(store, alice, repo.id) is None
    decision = authorize(store, alice, Capability.READ, repo.id)
    assert decision.allowed
    assert decision.matched_resource_id == realm.id

    assert not authorize(store, alice, Capability.READ, dockerfile.id)

    await acl.grant_access(store, repo, alice, READ)
    assert authorize(store, alice, Capability.READ, dockerfile.id)


@pytest.mark.asyncio
async def test_group_grant_authorizes_member(store: ObjectStore, sessions: SessionManager) -> None:
    realm, _alice = await seed_realm(store, sessions)
    repo = await seed_repo(store, realm, "webapp")
    bob = await seed_member(store, sessions, realm, "bob")
    devs = await create_group(store, realm, "devs")
    await add_user_to_group(store, devs, bob)
    await acl.grant_access(store, repo, devs, WRITE)

    assert bob.acl_entry_ids == []
    decision = authorize(store, bob, Capability.WRITE, repo.id)
    assert decision.allowed
    assert decision.reason == REASON_GRANTED
    assert decision.matched_party_id == devs.id
    assert not authorize(store, bob, Capability.DELETE, repo.id)


@pytest.mark.asyncio
async def test_self_access_needs_no_entries(store: ObjectStore, sessions: SessionManager) -> None:
    realm, _alice = await seed_realm(store, sessions)
    bob = await seed_member(store, sessions, realm, "bob")

    for capability in Capability:
        decision = authorize(store, bob, capability, bob.id)
        assert decision.allowed
        assert decision.reason == REASON_SELF


@pytest.mark.asyncio
async def test_action_mask_must_have_single_bit(store: ObjectStore, sessions: SessionManager) -> None:
    realm, alice = await seed_realm(store, sessions)
    assert authorize(store, alice, WRITE, realm.id)
    with pytest.raises(InvalidActionError):
        authorize(store, alice, PermissionMask(), realm.id)
    with pytest.raises(InvalidActionError):
        authorize(store, alice, PermissionMask.full(), alice.id)


@pytest.mark.asyncio
async def test_missing_resource_and_denial(store: ObjectStore, sessions: SessionManager) -> None:
    realm, _alice = await seed_realm(store, sessions)
    bob = await seed_member(store, sessions, realm, "bob")

    missing = authorize(store, bob, Capability.READ, "no-such-id")
    assert not missing
    assert missing.reason == REASON_RESOURCE_NOT_FOUND
    with pytest.raises(NotFoundError):
        require_authorized(store, bob, Capability.READ, "no-such-id")

    denied = authorize(store, bob, Capability.READ, realm.id)
    assert denied.reason == REASON_DENIED
    with pytest.raises(ForbiddenError):
        require_authorized(store, bob, Capability.READ, realm.id)


@pytest.mark.asyncio
async def test_dangling_group_membership_is_internal_error(store: ObjectStore, sessions: SessionManager) -> None:
    realm, _alice = await seed_realm(store, sessions)
    bob = await seed_member(store, sessions, realm, "bob")
    bob.group_ids.append("ghost")

    with pytest.raises(InternalError):
        authorize(store, bob, Capability.READ, realm.id)
