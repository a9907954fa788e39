from __future__ import annotations

from dataclasses import dataclass
import logging
import re

from safeharbor.core.errors import AlreadyExistsError, ReferentialIntegrityError, ValidationError
from safeharbor.domain.entities import (
    Dockerfile,
    DockerImage,
    Flag,
    ObjectKind,
    ParameterValue,
    Realm,
    Repo,
    Resource,
    ScanConfig,
)
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services import acl, events


logger = logging.getLogger(__name__)

# Docker repository name component rules, minus periods.
_NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:[_-][a-z0-9]+)*$")


def validate_name(name: str) -> None:
    if "." in name:
        raise ValidationError(f"Periods are not allowed in names: {name}")
    if not _NAME_PATTERN.match(name):
        raise ValidationError(f"Name '{name}' does not conform to the rules [a-z0-9]+(?:[_-][a-z0-9]+)*")


def _sorted_ids(ids) -> list[str]:
    # Siblings lock in ascending id order.
    return sorted(set(ids), key=lambda value: (len(value), value))


def _acl_party_ids(store: ObjectStore, resources: list[Resource]) -> list[str]:
    party_ids = [store.get_acl_entry(entry_id).party_id for resource in resources for entry_id in resource.acl_entry_ids]
    return _sorted_ids(party_ids)


def repo_children(store: ObjectStore, repo: Repo) -> list[Resource]:
    children: list[Resource] = []
    children.extend(store.get_dockerfile(item) for item in repo.dockerfile_ids)
    children.extend(store.get_docker_image(item) for item in repo.docker_image_ids)
    children.extend(store.get_scan_config(item) for item in repo.scan_config_ids)
    children.extend(store.get_flag(item) for item in repo.flag_ids)
    return children


def repo_by_name(store: ObjectStore, realm: Realm, name: str) -> Repo | None:
    for repo_id in realm.repo_ids:
        repo = store.get_repo(repo_id)
        if repo.name == name:
            return repo
    return None


def scan_config_by_name(store: ObjectStore, repo: Repo, name: str) -> ScanConfig | None:
    for config_id in repo.scan_config_ids:
        config = store.get_scan_config(config_id)
        if config.name == name:
            return config
    return None


# Realms ----------------------------------------------------------------------


async def create_realm(
    store: ObjectStore,
    *,
    name: str,
    org_full_name: str = "",
    description: str = "",
    admin_user_id: str = "",
    file_repo_root: str = "./repo",
) -> Realm:
    # No ACL is granted here; callers grant the admin separately.
    validate_name(name)
    if store.realm_by_name(name) is not None:
        raise AlreadyExistsError(f"A realm with name {name} already exists")
    realm_id = store.create_id()
    realm = Realm(
        id=realm_id,
        name=name,
        description=description,
        admin_user_id=admin_user_id,
        org_full_name=org_full_name,
        file_directory=f"{file_repo_root.rstrip('/')}/{realm_id}",
    )
    store.add(realm)
    logger.info("realm_created realm_id=%s name=%s", realm.id, realm.name)
    return realm


async def deactivate_realm(store: ObjectStore, realm: Realm) -> None:
    """Strip every ACL entry in the realm's tree and disable its parties.

    Terminal: there is no reactivation. Users and groups stay in the store
    with ``is_active`` cleared.
    """
    repos = [store.get_repo(repo_id) for repo_id in realm.repo_ids]
    leaves = [child for repo in repos for child in repo_children(store, repo)]
    tree: list[Resource] = [realm, *repos, *leaves]
    users = [store.get_user(user_id) for user_id in realm.member_user_ids]
    groups = [store.get_group(group_id) for group_id in realm.group_ids]
    party_ids = _sorted_ids(
        [*_acl_party_ids(store, tree), *(group.id for group in groups), *(user.id for user in users)]
    )
    async with store.locked(
        realm.id,
        *_sorted_ids(repo.id for repo in repos),
        *_sorted_ids(leaf.id for leaf in leaves),
        *party_ids,
    ):
        removed = 0
        for resource in tree:
            removed += acl.remove_all_access(store, resource)
        for user in users:
            user.is_active = False
            store.update(user)
        for group in groups:
            group.is_active = False
            store.update(group)
    logger.info(
        "realm_deactivated realm_id=%s acl_entries_removed=%s users=%s groups=%s",
        realm.id,
        removed,
        len(users),
        len(groups),
    )


# Repos and leaves ------------------------------------------------------------


async def create_repo(store: ObjectStore, realm: Realm, name: str, description: str = "") -> Repo:
    validate_name(name)
    async with store.locked(realm.id):
        if repo_by_name(store, realm, name) is not None:
            raise AlreadyExistsError(f"A repo named {name} already exists in realm {realm.name}")
        repo_id = store.create_id()
        repo = Repo(
            id=repo_id,
            name=name,
            description=description,
            parent_id=realm.id,
            file_directory=f"{realm.file_directory}/{repo_id}",
        )
        store.add(repo)
        realm.repo_ids.append(repo.id)
        store.update(realm)
    logger.info("repo_created repo_id=%s realm_id=%s", repo.id, realm.id)
    return repo


async def create_dockerfile(
    store: ObjectStore,
    repo: Repo,
    name: str,
    description: str = "",
    external_file_path: str = "",
) -> Dockerfile:
    async with store.locked(repo.id):
        dockerfile = Dockerfile(
            id=store.create_id(),
            name=name,
            description=description,
            parent_id=repo.id,
            external_file_path=external_file_path,
        )
        store.add(dockerfile)
        repo.dockerfile_ids.append(dockerfile.id)
        store.update(repo)
    logger.info("dockerfile_created dockerfile_id=%s repo_id=%s", dockerfile.id, repo.id)
    return dockerfile


async def create_docker_image(
    store: ObjectStore,
    repo: Repo,
    name: str,
    description: str = "",
    *,
    content_signature: str = "",
    build_output: str = "",
) -> DockerImage:
    async with store.locked(repo.id):
        image = DockerImage(
            id=store.create_id(),
            name=name,
            description=description,
            parent_id=repo.id,
            content_signature=content_signature,
            build_output=build_output,
        )
        store.add(image)
        repo.docker_image_ids.append(image.id)
        store.update(repo)
    logger.info("docker_image_created image_id=%s repo_id=%s", image.id, repo.id)
    return image


def _add_parameter_values(store: ObjectStore, config: ScanConfig, parameters: dict[str, str]) -> None:
    for name, value in parameters.items():
        param = ParameterValue(id=store.create_id(), name=name, value=value, config_id=config.id)
        store.add(param)
        config.parameter_value_ids.append(param.id)


def _delete_parameter_values(store: ObjectStore, config: ScanConfig) -> None:
    for param_id in config.parameter_value_ids:
        store.delete(param_id)
    config.parameter_value_ids = []


async def create_scan_config(
    store: ObjectStore,
    repo: Repo,
    name: str,
    description: str = "",
    *,
    provider_name: str,
    success_expression: str = "",
    flag_id: str = "",
    parameters: dict[str, str] | None = None,
) -> ScanConfig:
    flag = store.get_flag(flag_id) if flag_id else None
    if flag is not None and flag.parent_id != repo.id:
        raise ReferentialIntegrityError(f"Flag {flag.id} does not belong to repo {repo.id}")
    async with store.locked(repo.id, flag.id if flag else ""):
        if scan_config_by_name(store, repo, name) is not None:
            raise AlreadyExistsError(f"A scan config named {name} already exists in repo {repo.name}")
        config = ScanConfig(
            id=store.create_id(),
            name=name,
            description=description,
            parent_id=repo.id,
            provider_name=provider_name,
            success_expression=success_expression,
            flag_id=flag_id,
        )
        store.add(config)
        _add_parameter_values(store, config, parameters or {})
        store.update(config)
        repo.scan_config_ids.append(config.id)
        store.update(repo)
        if flag is not None:
            flag.used_by_scan_config_ids.append(config.id)
            store.update(flag)
    logger.info("scan_config_created scan_config_id=%s repo_id=%s", config.id, repo.id)
    return config


async def create_flag(
    store: ObjectStore,
    repo: Repo,
    name: str,
    description: str = "",
    success_image_path: str = "",
) -> Flag:
    async with store.locked(repo.id):
        flag = Flag(
            id=store.create_id(),
            name=name,
            description=description,
            parent_id=repo.id,
            success_image_path=success_image_path,
        )
        store.add(flag)
        repo.flag_ids.append(flag.id)
        store.update(repo)
    logger.info("flag_created flag_id=%s repo_id=%s", flag.id, repo.id)
    return flag


# Deletion --------------------------------------------------------------------


def _unlink_from_repo(store: ObjectStore, repo: Repo, resource: Resource) -> None:
    if resource.kind is ObjectKind.DOCKERFILE:
        repo.dockerfile_ids.remove(resource.id)
    elif resource.kind is ObjectKind.DOCKER_IMAGE:
        repo.docker_image_ids.remove(resource.id)
    elif resource.kind is ObjectKind.SCAN_CONFIG:
        repo.scan_config_ids.remove(resource.id)
    elif resource.kind is ObjectKind.FLAG:
        repo.flag_ids.remove(resource.id)
    else:
        raise ValidationError(f"{resource.kind.value} {resource.id} is not a repo member")
    store.update(repo)


def _exec_events_for_repo(store: ObjectStore, repo: Repo):
    for dockerfile_id in repo.dockerfile_ids:
        for event_id in store.get_dockerfile(dockerfile_id).exec_event_ids:
            yield store.get_exec_event(event_id)


def _delete_flag(store: ObjectStore, repo: Repo, flag: Flag) -> None:
    if flag.used_by_scan_config_ids:
        raise ReferentialIntegrityError(
            f"Cannot remove Flag {flag.id}: it is referenced by scan config(s) "
            f"{', '.join(flag.used_by_scan_config_ids)}"
        )
    acl.remove_all_access(store, flag)
    _unlink_from_repo(store, repo, flag)
    store.delete(flag.id)


def _delete_scan_config(store: ObjectStore, repo: Repo, config: ScanConfig) -> None:
    if config.scan_event_ids:
        raise ReferentialIntegrityError(
            f"Cannot remove ScanConfig {config.id}: it is referenced by scan events; "
            "the scanned images must be removed first"
        )
    _delete_parameter_values(store, config)
    if config.flag_id:
        flag = store.get_flag(config.flag_id)
        if config.id in flag.used_by_scan_config_ids:
            flag.used_by_scan_config_ids.remove(config.id)
            store.update(flag)
    acl.remove_all_access(store, config)
    _unlink_from_repo(store, repo, config)
    store.delete(config.id)


def _delete_docker_image(store: ObjectStore, repo: Repo, image: DockerImage) -> None:
    for event_id in list(image.scan_event_ids):
        events.discard_scan_event(store, store.get_scan_event(event_id))
    for exec_event in _exec_events_for_repo(store, repo):
        if exec_event.docker_image_id == image.id:
            exec_event.docker_image_id = ""
            store.update(exec_event)
    acl.remove_all_access(store, image)
    _unlink_from_repo(store, repo, image)
    store.delete(image.id)


def _delete_dockerfile(store: ObjectStore, repo: Repo, dockerfile: Dockerfile) -> None:
    # Exec events outlive the Dockerfile; only their back reference is cleared.
    for event_id in dockerfile.exec_event_ids:
        exec_event = store.get_exec_event(event_id)
        exec_event.dockerfile_id = ""
        store.update(exec_event)
    acl.remove_all_access(store, dockerfile)
    _unlink_from_repo(store, repo, dockerfile)
    store.delete(dockerfile.id)


def _scan_event_lock_ids(store: ObjectStore, image: DockerImage) -> tuple[list[str], list[str]]:
    config_ids: list[str] = []
    user_ids: list[str] = []
    for event_id in image.scan_event_ids:
        event = store.get_scan_event(event_id)
        config_ids.append(event.scan_config_id)
        user_ids.append(event.user_id)
    return config_ids, user_ids


async def delete_flag(store: ObjectStore, flag: Flag) -> None:
    repo = store.get_repo(flag.parent_id)
    async with store.locked(repo.id, flag.id, *_acl_party_ids(store, [flag])):
        _delete_flag(store, repo, flag)
    logger.info("flag_deleted flag_id=%s repo_id=%s", flag.id, repo.id)


async def delete_scan_config(store: ObjectStore, config: ScanConfig) -> None:
    repo = store.get_repo(config.parent_id)
    async with store.locked(
        repo.id,
        *_sorted_ids([config.id, config.flag_id] if config.flag_id else [config.id]),
        *_acl_party_ids(store, [config]),
    ):
        _delete_scan_config(store, repo, config)
    logger.info("scan_config_deleted scan_config_id=%s repo_id=%s", config.id, repo.id)


async def delete_docker_image(store: ObjectStore, image: DockerImage) -> None:
    repo = store.get_repo(image.parent_id)
    config_ids, user_ids = _scan_event_lock_ids(store, image)
    async with store.locked(
        repo.id,
        *_sorted_ids([image.id, *config_ids]),
        *_sorted_ids([*_acl_party_ids(store, [image]), *user_ids]),
    ):
        _delete_docker_image(store, repo, image)
    logger.info("docker_image_deleted image_id=%s repo_id=%s", image.id, repo.id)


async def delete_dockerfile(store: ObjectStore, dockerfile: Dockerfile) -> None:
    repo = store.get_repo(dockerfile.parent_id)
    async with store.locked(repo.id, dockerfile.id, *_acl_party_ids(store, [dockerfile])):
        _delete_dockerfile(store, repo, dockerfile)
    logger.info("dockerfile_deleted dockerfile_id=%s repo_id=%s", dockerfile.id, repo.id)


async def delete_repo(store: ObjectStore, repo: Repo) -> None:
    """Remove a repo and everything under it.

    Images go first so their scan events release the scan configs, and scan
    configs go before flags so the flags are no longer referenced.
    """
    realm = store.get_realm(repo.parent_id)
    children = repo_children(store, repo)
    event_user_ids: list[str] = []
    for image_id in repo.docker_image_ids:
        _, user_ids = _scan_event_lock_ids(store, store.get_docker_image(image_id))
        event_user_ids.extend(user_ids)
    async with store.locked(
        realm.id,
        repo.id,
        *_sorted_ids(child.id for child in children),
        *_sorted_ids([*_acl_party_ids(store, [repo, *children]), *event_user_ids]),
    ):
        for image_id in list(repo.docker_image_ids):
            _delete_docker_image(store, repo, store.get_docker_image(image_id))
        for dockerfile_id in list(repo.dockerfile_ids):
            _delete_dockerfile(store, repo, store.get_dockerfile(dockerfile_id))
        for config_id in list(repo.scan_config_ids):
            _delete_scan_config(store, repo, store.get_scan_config(config_id))
        for flag_id in list(repo.flag_ids):
            _delete_flag(store, repo, store.get_flag(flag_id))
        acl.remove_all_access(store, repo)
        realm.repo_ids.remove(repo.id)
        store.update(realm)
        store.delete(repo.id)
    logger.info("repo_deleted repo_id=%s realm_id=%s", repo.id, realm.id)


# Patches ---------------------------------------------------------------------


@dataclass(frozen=True)
class ResourcePatch:
    # Fields left as None are not changed.
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ScanConfigPatch(ResourcePatch):
    provider_name: str | None = None
    success_expression: str | None = None
    # Empty string detaches the flag.
    flag_id: str | None = None
    # Replaces the full parameter set when given.
    parameters: dict[str, str] | None = None


def _check_rename(store: ObjectStore, resource: Resource, new_name: str) -> None:
    if resource.kind is ObjectKind.REALM:
        validate_name(new_name)
        existing = store.realm_by_name(new_name)
    elif resource.kind is ObjectKind.REPO:
        validate_name(new_name)
        existing = repo_by_name(store, store.get_realm(resource.parent_id), new_name)
    elif resource.kind is ObjectKind.SCAN_CONFIG:
        existing = scan_config_by_name(store, store.get_repo(resource.parent_id), new_name)
    else:
        existing = None
    if existing is not None and existing.id != resource.id:
        raise AlreadyExistsError(f"A {resource.kind.value} named {new_name} already exists")


def _apply_base_patch(store: ObjectStore, resource: Resource, patch: ResourcePatch) -> None:
    if patch.name is not None and patch.name != resource.name:
        _check_rename(store, resource, patch.name)
        resource.name = patch.name
    if patch.description is not None:
        resource.description = patch.description


async def apply_resource_patch(store: ObjectStore, resource: Resource, patch: ResourcePatch) -> Resource:
    # Parent first, so renames are checked against a stable sibling set.
    async with store.locked(resource.parent_id, resource.id):
        _apply_base_patch(store, resource, patch)
        store.update(resource)
    return resource


async def apply_scan_config_patch(store: ObjectStore, config: ScanConfig, patch: ScanConfigPatch) -> ScanConfig:
    new_flag = store.get_flag(patch.flag_id) if patch.flag_id else None
    if new_flag is not None and new_flag.parent_id != config.parent_id:
        raise ReferentialIntegrityError(f"Flag {new_flag.id} does not belong to repo {config.parent_id}")
    flag_ids = [config.flag_id, new_flag.id if new_flag else ""]
    async with store.locked(
        config.parent_id,
        *_sorted_ids([config.id, *(item for item in flag_ids if item)]),
    ):
        _apply_base_patch(store, config, patch)
        if patch.provider_name is not None:
            config.provider_name = patch.provider_name
        if patch.success_expression is not None:
            config.success_expression = patch.success_expression
        if patch.flag_id is not None and patch.flag_id != config.flag_id:
            if config.flag_id:
                old_flag = store.get_flag(config.flag_id)
                if config.id in old_flag.used_by_scan_config_ids:
                    old_flag.used_by_scan_config_ids.remove(config.id)
                    store.update(old_flag)
            if new_flag is not None:
                new_flag.used_by_scan_config_ids.append(config.id)
                store.update(new_flag)
            config.flag_id = patch.flag_id
        if patch.parameters is not None:
            _delete_parameter_values(store, config)
            _add_parameter_values(store, config, patch.parameters)
        store.update(config)
    return config
