from __future__ import annotations

from typing import Iterator

from safeharbor.core.errors import InternalError
from safeharbor.domain.entities import (
    ACLEntry,
    Dockerfile,
    DockerImage,
    ObjectKind,
    Realm,
    Repo,
    User,
)
from safeharbor.domain.permissions import Capability
from safeharbor.persistence.object_store import ObjectStore


# Listings follow the caller's grants, whatever their mask: a realm grant
# brings in every repo of the realm, and a repo grant every leaf of the repo.

_LEAF_KINDS = frozenset(
    {ObjectKind.DOCKERFILE, ObjectKind.DOCKER_IMAGE, ObjectKind.SCAN_CONFIG, ObjectKind.FLAG}
)


def _entries(store: ObjectStore, user: User) -> Iterator[ACLEntry]:
    # The user's own entries first, then those held by each of its groups.
    for entry_id in user.acl_entry_ids:
        yield store.get_acl_entry(entry_id)
    for group_id in user.group_ids:
        for entry_id in store.get_group(group_id).acl_entry_ids:
            yield store.get_acl_entry(entry_id)


class _Granted:
    """Resources reachable from a user's grants, bucketed by kind."""

    def __init__(self, store: ObjectStore, user: User, capability: Capability | None = None) -> None:
        self.realms: dict[str, Realm] = {}
        self.repos: dict[str, Repo] = {}
        self.dockerfiles: dict[str, Dockerfile] = {}
        self.docker_images: dict[str, DockerImage] = {}
        for entry in _entries(store, user):
            if capability is not None and not entry.mask.has(capability):
                continue
            resource = store.get_resource(entry.resource_id)
            kind = resource.kind
            if kind is ObjectKind.REALM:
                self.realms.setdefault(resource.id, resource)
            elif kind is ObjectKind.REPO:
                self.repos.setdefault(resource.id, resource)
            elif kind is ObjectKind.DOCKERFILE:
                self.dockerfiles.setdefault(resource.id, resource)
            elif kind is ObjectKind.DOCKER_IMAGE:
                self.docker_images.setdefault(resource.id, resource)
            elif kind not in _LEAF_KINDS:
                raise InternalError(f"ACL entry {entry.id} names unexpected resource kind {kind.value}")

    def expand_realms(self, store: ObjectStore) -> None:
        for realm in list(self.realms.values()):
            for repo_id in realm.repo_ids:
                self.repos.setdefault(repo_id, store.get_repo(repo_id))

    def expand_repos(self, store: ObjectStore) -> None:
        for repo in list(self.repos.values()):
            for dockerfile_id in repo.dockerfile_ids:
                self.dockerfiles.setdefault(dockerfile_id, store.get_dockerfile(dockerfile_id))
            for image_id in repo.docker_image_ids:
                self.docker_images.setdefault(image_id, store.get_docker_image(image_id))


def my_realms(store: ObjectStore, user: User) -> list[Realm]:
    return list(_Granted(store, user).realms.values())


def realms_administered_by(store: ObjectStore, user: User) -> list[Realm]:
    return list(_Granted(store, user, Capability.WRITE).realms.values())


def my_repos(store: ObjectStore, user: User) -> list[Repo]:
    granted = _Granted(store, user)
    granted.expand_realms(store)
    return list(granted.repos.values())


def my_dockerfiles(store: ObjectStore, user: User) -> list[Dockerfile]:
    granted = _Granted(store, user)
    granted.expand_realms(store)
    granted.expand_repos(store)
    return list(granted.dockerfiles.values())


def my_docker_images(store: ObjectStore, user: User) -> list[DockerImage]:
    granted = _Granted(store, user)
    granted.expand_realms(store)
    granted.expand_repos(store)
    return list(granted.docker_images.values())
