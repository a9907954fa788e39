from __future__ import annotations

import logging

from safeharbor.core.errors import (
    AlreadyExistsError,
    NotFoundError,
    ReferentialIntegrityError,
    SafeHarborError,
    ValidationError,
)
from safeharbor.domain.entities import Group, Realm, User
from safeharbor.domain.permissions import PermissionMask
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services import acl
from safeharbor.services.auth.sessions import SessionManager
from safeharbor.services.resources import create_realm


logger = logging.getLogger(__name__)


def group_by_name(store: ObjectStore, realm: Realm, name: str) -> Group | None:
    for group_id in realm.group_ids:
        group = store.get_group(group_id)
        if group.name == name:
            return group
    return None


async def create_user(
    store: ObjectStore,
    sessions: SessionManager,
    realm: Realm,
    *,
    login_name: str,
    name: str,
    email_address: str,
    password: str,
) -> User:
    async with store.locked(realm.id):
        # Login names are the external identity, so they are unique store-wide.
        if store.user_by_login_name(login_name) is not None:
            raise AlreadyExistsError(f"A user with login id {login_name} already exists")
        user = User(
            id=store.create_id(),
            name=name,
            realm_id=realm.id,
            login_name=login_name,
            email_address=email_address,
            password_hash=sessions.hash_password(password),
        )
        store.add(user)
        realm.member_user_ids.append(user.id)
        store.update(realm)
    logger.info("user_created user_id=%s realm_id=%s", user.id, realm.id)
    return user


async def _discard_signup(store: ObjectStore, realm: Realm, user: User | None) -> None:
    # Undo a partial signup so the realm name and login name are free again.
    async with store.locked(realm.id, user.id if user is not None else ""):
        acl.remove_all_access(store, realm)
        if user is not None and store.contains(user.id):
            acl.remove_all_party_access(store, user)
            store.delete(user.id)
        store.delete(realm.id)
    logger.warning("realm_signup_rolled_back realm_id=%s name=%s", realm.id, realm.name)


async def create_realm_with_admin(
    store: ObjectStore,
    sessions: SessionManager,
    *,
    realm_name: str,
    org_full_name: str,
    description: str,
    login_name: str,
    user_name: str,
    email_address: str,
    password: str,
    file_repo_root: str = "./repo",
) -> tuple[Realm, User]:
    # Self-service signup: a realm, its first user, and full rights for that user.
    if store.user_by_login_name(login_name) is not None:
        raise AlreadyExistsError(f"A user with login id {login_name} already exists")
    realm = await create_realm(
        store,
        name=realm_name,
        org_full_name=org_full_name,
        description=description,
        admin_user_id=login_name,
        file_repo_root=file_repo_root,
    )
    user: User | None = None
    try:
        user = await create_user(
            store,
            sessions,
            realm,
            login_name=login_name,
            name=user_name,
            email_address=email_address,
            password=password,
        )
        await acl.grant_access(store, realm, user, PermissionMask.full())
    except SafeHarborError:
        await _discard_signup(store, realm, user)
        raise
    return realm, user


async def add_user_to_realm(store: ObjectStore, realm: Realm, user: User) -> None:
    async with store.locked(realm.id, user.id):
        if user.realm_id:
            raise ReferentialIntegrityError(f"User {user.id} already belongs to realm {user.realm_id}")
        realm.member_user_ids.append(user.id)
        user.realm_id = realm.id
        store.update(realm)
        store.update(user)


async def remove_user_from_realm(store: ObjectStore, realm: Realm, user: User) -> None:
    async with store.locked(realm.id, user.id):
        if user.realm_id != realm.id or user.id not in realm.member_user_ids:
            raise NotFoundError(f"User {user.id} is not a member of realm {realm.id}")
        realm.member_user_ids.remove(user.id)
        user.realm_id = ""
        store.update(realm)
        store.update(user)


async def create_group(store: ObjectStore, realm: Realm, name: str, description: str = "") -> Group:
    async with store.locked(realm.id):
        if group_by_name(store, realm, name) is not None:
            raise AlreadyExistsError(f"Group named {name} already exists within realm {realm.name}")
        group = Group(id=store.create_id(), name=name, realm_id=realm.id, description=description)
        store.add(group)
        realm.group_ids.append(group.id)
        store.update(realm)
    logger.info("group_created group_id=%s realm_id=%s", group.id, realm.id)
    return group


def _require_user(store: ObjectStore, party_id: str) -> User:
    # Groups hold users only; a group id here would nest groups.
    obj = store.get(party_id)
    if not isinstance(obj, User):
        raise ValidationError(f"Object with id {party_id} is not a User; groups may not contain groups")
    return obj


def _unlink_member(store: ObjectStore, group: Group, user: User) -> None:
    group.member_user_ids.remove(user.id)
    if group.id in user.group_ids:
        user.group_ids.remove(group.id)
    store.update(group)
    store.update(user)


async def add_user_to_group(store: ObjectStore, group: Group, user: User | Group) -> None:
    member = _require_user(store, user.id)
    async with store.locked(group.id, member.id):
        if member.id in group.member_user_ids:
            raise AlreadyExistsError(f"User with id {member.id} is already in group {group.name}")
        group.member_user_ids.append(member.id)
        member.group_ids.append(group.id)
        store.update(member)
        store.update(group)
    logger.info("group_member_added group_id=%s user_id=%s", group.id, member.id)


async def remove_user_from_group(store: ObjectStore, group: Group, user: User) -> None:
    # Membership only; ACL entries held by the group are untouched.
    async with store.locked(group.id, user.id):
        if user.id not in group.member_user_ids:
            raise NotFoundError(f"User with id {user.id} is not in group {group.name}")
        _unlink_member(store, group, user)
    logger.info("group_member_removed group_id=%s user_id=%s", group.id, user.id)


async def delete_group(store: ObjectStore, group: Group) -> None:
    realm = store.get_realm(group.realm_id)
    members = [store.get_user(user_id) for user_id in group.member_user_ids]
    resources = [store.get_resource(store.get_acl_entry(entry_id).resource_id) for entry_id in group.acl_entry_ids]
    async with store.locked(
        realm.id,
        *(resource.id for resource in resources),
        group.id,
        *(member.id for member in members),
    ):
        for member in members:
            _unlink_member(store, group, member)
        acl.remove_all_party_access(store, group)
        realm.group_ids.remove(group.id)
        store.update(realm)
        store.delete(group.id)
    logger.info("group_deleted group_id=%s realm_id=%s", group.id, realm.id)
