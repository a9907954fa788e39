from __future__ import annotations

from pydantic import BaseModel

from safeharbor.core.errors import InternalError
from safeharbor.domain.entities import (
    Dockerfile,
    DockerImage,
    Flag,
    Group,
    ObjectKind,
    PersistedObject,
    Realm,
    Repo,
    ScanConfig,
    User,
)


class ObjectDesc(BaseModel):
    object_type: str
    id: str


class UserDesc(ObjectDesc):
    user_id: str
    user_name: str
    realm_id: str
    email_address: str
    email_verified: bool
    is_active: bool
    group_ids: list[str]


class GroupDesc(ObjectDesc):
    name: str
    description: str
    realm_id: str
    user_ids: list[str]


class ResourceDesc(ObjectDesc):
    name: str
    description: str
    parent_id: str


class RealmDesc(ResourceDesc):
    admin_user_id: str
    org_full_name: str


class RepoDesc(ResourceDesc):
    dockerfile_ids: list[str]
    docker_image_ids: list[str]


class DockerfileDesc(ResourceDesc):
    exec_event_ids: list[str]


class DockerImageDesc(ResourceDesc):
    signature: str
    most_recent_scan_event_id: str | None


class ScanConfigDesc(ResourceDesc):
    provider_name: str
    success_expression: str
    flag_id: str


class FlagDesc(ResourceDesc):
    success_image_path: str
    used_by_scan_config_ids: list[str]


def _resource_fields(resource) -> dict:
    return {
        "object_type": resource.kind.value,
        "id": resource.id,
        "name": resource.name,
        "description": resource.description,
        "parent_id": resource.parent_id,
    }


def describe(obj: PersistedObject) -> ObjectDesc:
    # Every describable kind is listed; anything else is a programming error.
    kind = obj.kind
    if kind is ObjectKind.USER:
        assert isinstance(obj, User)
        return UserDesc(
            object_type=kind.value,
            id=obj.id,
            user_id=obj.login_name,
            user_name=obj.name,
            realm_id=obj.realm_id,
            email_address=obj.email_address,
            email_verified=obj.email_verified,
            is_active=obj.is_active,
            group_ids=list(obj.group_ids),
        )
    if kind is ObjectKind.GROUP:
        assert isinstance(obj, Group)
        return GroupDesc(
            object_type=kind.value,
            id=obj.id,
            name=obj.name,
            description=obj.description,
            realm_id=obj.realm_id,
            user_ids=list(obj.member_user_ids),
        )
    if kind is ObjectKind.REALM:
        assert isinstance(obj, Realm)
        return RealmDesc(**_resource_fields(obj), admin_user_id=obj.admin_user_id, org_full_name=obj.org_full_name)
    if kind is ObjectKind.REPO:
        assert isinstance(obj, Repo)
        return RepoDesc(
            **_resource_fields(obj),
            dockerfile_ids=list(obj.dockerfile_ids),
            docker_image_ids=list(obj.docker_image_ids),
        )
    if kind is ObjectKind.DOCKERFILE:
        assert isinstance(obj, Dockerfile)
        return DockerfileDesc(**_resource_fields(obj), exec_event_ids=list(obj.exec_event_ids))
    if kind is ObjectKind.DOCKER_IMAGE:
        assert isinstance(obj, DockerImage)
        return DockerImageDesc(
            **_resource_fields(obj),
            signature=obj.content_signature,
            most_recent_scan_event_id=obj.most_recent_scan_event_id(),
        )
    if kind is ObjectKind.SCAN_CONFIG:
        assert isinstance(obj, ScanConfig)
        return ScanConfigDesc(
            **_resource_fields(obj),
            provider_name=obj.provider_name,
            success_expression=obj.success_expression,
            flag_id=obj.flag_id,
        )
    if kind is ObjectKind.FLAG:
        assert isinstance(obj, Flag)
        return FlagDesc(
            **_resource_fields(obj),
            success_image_path=obj.success_image_path,
            used_by_scan_config_ids=list(obj.used_by_scan_config_ids),
        )
    raise InternalError(f"No descriptor for object kind {kind.value}")
