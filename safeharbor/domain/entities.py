from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar

from safeharbor.domain.permissions import PermissionMask


def utc_now() -> datetime:
    # Keep entity timestamps in UTC so throttle and expiry math is stable.
    return datetime.now(timezone.utc)


class ObjectKind(str, Enum):
    USER = "user"
    GROUP = "group"
    ACL_ENTRY = "acl_entry"
    REALM = "realm"
    REPO = "repo"
    DOCKERFILE = "dockerfile"
    DOCKER_IMAGE = "docker_image"
    SCAN_CONFIG = "scan_config"
    FLAG = "flag"
    PARAMETER_VALUE = "parameter_value"
    SCAN_EVENT = "scan_event"
    DOCKERFILE_EXEC_EVENT = "dockerfile_exec_event"


PARTY_KINDS = frozenset({ObjectKind.USER, ObjectKind.GROUP})
RESOURCE_KINDS = frozenset(
    {
        ObjectKind.REALM,
        ObjectKind.REPO,
        ObjectKind.DOCKERFILE,
        ObjectKind.DOCKER_IMAGE,
        ObjectKind.SCAN_CONFIG,
        ObjectKind.FLAG,
    }
)
EVENT_KINDS = frozenset({ObjectKind.SCAN_EVENT, ObjectKind.DOCKERFILE_EXEC_EVENT})


@dataclass
class PersistedObject:
    kind: ClassVar[ObjectKind]

    id: str


# Parties -------------------------------------------------------------------


@dataclass
class Party(PersistedObject):
    name: str = ""
    realm_id: str = ""
    is_active: bool = True
    creation_time: datetime = field(default_factory=utc_now)
    acl_entry_ids: list[str] = field(default_factory=list)


@dataclass
class User(Party):
    kind: ClassVar[ObjectKind] = ObjectKind.USER

    # External login id; distinct from the internal object id.
    login_name: str = ""
    email_address: str = ""
    email_verified: bool = False
    password_hash: str = ""
    group_ids: list[str] = field(default_factory=list)
    recent_login_attempts: list[float] = field(default_factory=list)
    event_ids: list[str] = field(default_factory=list)


@dataclass
class Group(Party):
    kind: ClassVar[ObjectKind] = ObjectKind.GROUP

    description: str = ""
    # User ids only; groups never nest.
    member_user_ids: list[str] = field(default_factory=list)


@dataclass
class ACLEntry(PersistedObject):
    kind: ClassVar[ObjectKind] = ObjectKind.ACL_ENTRY

    resource_id: str = ""
    party_id: str = ""
    mask: PermissionMask = field(default_factory=PermissionMask)


# Resources -----------------------------------------------------------------


@dataclass
class Resource(PersistedObject):
    name: str = ""
    description: str = ""
    # Empty only for realms; fixed at creation.
    parent_id: str = ""
    creation_time: datetime = field(default_factory=utc_now)
    acl_entry_ids: list[str] = field(default_factory=list)


@dataclass
class Realm(Resource):
    kind: ClassVar[ObjectKind] = ObjectKind.REALM

    admin_user_id: str = ""
    org_full_name: str = ""
    member_user_ids: list[str] = field(default_factory=list)
    group_ids: list[str] = field(default_factory=list)
    repo_ids: list[str] = field(default_factory=list)
    file_directory: str = ""


@dataclass
class Repo(Resource):
    kind: ClassVar[ObjectKind] = ObjectKind.REPO

    dockerfile_ids: list[str] = field(default_factory=list)
    docker_image_ids: list[str] = field(default_factory=list)
    scan_config_ids: list[str] = field(default_factory=list)
    flag_ids: list[str] = field(default_factory=list)
    file_directory: str = ""


@dataclass
class Dockerfile(Resource):
    kind: ClassVar[ObjectKind] = ObjectKind.DOCKERFILE

    external_file_path: str = ""
    exec_event_ids: list[str] = field(default_factory=list)


@dataclass
class DockerImage(Resource):
    kind: ClassVar[ObjectKind] = ObjectKind.DOCKER_IMAGE

    # Oldest first.
    scan_event_ids: list[str] = field(default_factory=list)
    content_signature: str = ""
    build_output: str = ""

    def most_recent_scan_event_id(self) -> str | None:
        return self.scan_event_ids[-1] if self.scan_event_ids else None


@dataclass
class ScanConfig(Resource):
    kind: ClassVar[ObjectKind] = ObjectKind.SCAN_CONFIG

    provider_name: str = ""
    parameter_value_ids: list[str] = field(default_factory=list)
    success_expression: str = ""
    flag_id: str = ""
    scan_event_ids: list[str] = field(default_factory=list)


@dataclass
class Flag(Resource):
    kind: ClassVar[ObjectKind] = ObjectKind.FLAG

    success_image_path: str = ""
    # Back references; a flag cannot be deleted while this is non-empty.
    used_by_scan_config_ids: list[str] = field(default_factory=list)


# Scan parameters and events -----------------------------------------------


@dataclass
class ParameterValue(PersistedObject):
    kind: ClassVar[ObjectKind] = ObjectKind.PARAMETER_VALUE

    name: str = ""
    value: str = ""
    config_id: str = ""


@dataclass
class Event(PersistedObject):
    when: datetime = field(default_factory=utc_now)
    user_id: str = ""


@dataclass
class ScanEvent(Event):
    kind: ClassVar[ObjectKind] = ObjectKind.SCAN_EVENT

    scan_config_id: str = ""
    docker_image_id: str = ""
    provider_name: str = ""
    actual_parameter_value_ids: list[str] = field(default_factory=list)
    score: str = ""
    vulnerability_count: int = 0


@dataclass
class DockerfileExecEvent(Event):
    kind: ClassVar[ObjectKind] = ObjectKind.DOCKERFILE_EXEC_EVENT

    # Nulled when the referenced resource is hard-deleted.
    dockerfile_id: str = ""
    docker_image_id: str = ""
    build_output: str = ""


ENTITY_TYPES: dict[ObjectKind, type[PersistedObject]] = {
    cls.kind: cls
    for cls in (
        User,
        Group,
        ACLEntry,
        Realm,
        Repo,
        Dockerfile,
        DockerImage,
        ScanConfig,
        Flag,
        ParameterValue,
        ScanEvent,
        DockerfileExecEvent,
    )
}
