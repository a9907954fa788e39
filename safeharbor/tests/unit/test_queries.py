from __future__ import annotations

import pytest

from safeharbor.domain.descriptors import DockerImageDesc, RealmDesc, UserDesc, describe
from safeharbor.domain.permissions import EXECUTE, READ, WRITE
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services import acl
from safeharbor.services.auth.sessions import SessionManager
from safeharbor.services.parties import add_user_to_group, create_group
from safeharbor.services.queries import (
    my_docker_images,
    my_dockerfiles,
    my_realms,
    my_repos,
    realms_administered_by,
)
from safeharbor.services.resources import create_docker_image, create_dockerfile
from safeharbor.tests.utils.builders import seed_member, seed_realm, seed_repo


@pytest.mark.asyncio
async def test_realm_grant_reaches_repos_and_their_leaves(store: ObjectStore, sessions: SessionManager) -> None:
    acme, alice = await seed_realm(store, sessions)
    await seed_realm(store, sessions, realm_name="globex", login_name="bill")
    webapp = await seed_repo(store, acme, "webapp")
    api = await seed_repo(store, acme, "api")
    dockerfile = await create_dockerfile(store, webapp, "Dockerfile1")
    image = await create_docker_image(store, api, "api-image")

    assert my_realms(store, alice) == [acme]
    assert realms_administered_by(store, alice) == [acme]
    assert my_repos(store, alice) == [webapp, api]
    assert my_dockerfiles(store, alice) == [dockerfile]
    assert my_docker_images(store, alice) == [image]


@pytest.mark.asyncio
async def test_any_mask_counts_for_listings(store: ObjectStore, sessions: SessionManager) -> None:
    acme, _alice = await seed_realm(store, sessions)
    webapp = await seed_repo(store, acme, "webapp")
    api = await seed_repo(store, acme, "api")
    dockerfile = await create_dockerfile(store, webapp, "Dockerfile1")
    bob = await seed_member(store, sessions, acme, "bob")
    carol = await seed_member(store, sessions, acme, "carol")
    await acl.grant_access(store, webapp, bob, WRITE)
    await acl.grant_access(store, acme, carol, EXECUTE)

    assert my_realms(store, bob) == []
    assert my_repos(store, bob) == [webapp]
    assert my_dockerfiles(store, bob) == [dockerfile]
    assert my_realms(store, carol) == [acme]
    assert realms_administered_by(store, carol) == []
    assert my_repos(store, carol) == [webapp, api]


@pytest.mark.asyncio
async def test_direct_leaf_grants_are_listed_once(store: ObjectStore, sessions: SessionManager) -> None:
    acme, alice = await seed_realm(store, sessions)
    webapp = await seed_repo(store, acme, "webapp")
    dockerfile = await create_dockerfile(store, webapp, "Dockerfile1")
    bob = await seed_member(store, sessions, acme, "bob")
    await acl.grant_access(store, dockerfile, bob, READ)
    await acl.grant_access(store, dockerfile, alice, READ)

    assert my_repos(store, bob) == []
    assert my_dockerfiles(store, bob) == [dockerfile]
    assert my_dockerfiles(store, alice) == [dockerfile]


@pytest.mark.asyncio
async def test_group_grants_show_up_in_listings(store: ObjectStore, sessions: SessionManager) -> None:
    acme, _alice = await seed_realm(store, sessions)
    webapp = await seed_repo(store, acme, "webapp")
    await seed_repo(store, acme, "api")
    bob = await seed_member(store, sessions, acme, "bob")
    devs = await create_group(store, acme, "devs")
    await add_user_to_group(store, devs, bob)
    await acl.grant_access(store, webapp, devs, WRITE.union(READ))

    assert my_realms(store, bob) == []
    assert realms_administered_by(store, bob) == []
    assert my_repos(store, bob) == [webapp]


@pytest.mark.asyncio
async def test_descriptors_by_kind(store: ObjectStore, sessions: SessionManager) -> None:
    acme, alice = await seed_realm(store, sessions)
    repo = await seed_repo(store, acme)
    image = await create_docker_image(store, repo, "webapp-image", content_signature="abc")

    user_desc = describe(alice)
    assert isinstance(user_desc, UserDesc)
    assert user_desc.user_id == "alice"
    assert user_desc.object_type == "user"

    realm_desc = describe(acme)
    assert isinstance(realm_desc, RealmDesc)
    assert realm_desc.admin_user_id == "alice"

    image_desc = describe(image)
    assert isinstance(image_desc, DockerImageDesc)
    assert image_desc.signature == "abc"
    assert image_desc.most_recent_scan_event_id is None
