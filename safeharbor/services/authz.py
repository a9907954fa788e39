"""Authorization engine.

A user may perform a capability on a resource when the user, or one of the
groups the user belongs to, holds an ACL entry with that capability on the
resource itself or on the resource's immediate parent.

Resolution deliberately stops at the immediate parent. A realm-level grant
reaches the realm's repos but not the Dockerfiles, images, scan configs or
flags inside those repos; those need a grant on the repo or on the leaf.
This two-level policy is pending product-owner confirmation and must not be
widened to a full ancestor walk without it.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging

from safeharbor.core.errors import ForbiddenError, InternalError, NotFoundError
from safeharbor.domain.entities import Party, Resource, User
from safeharbor.domain.permissions import Capability, PermissionMask, as_capability
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services.acl import entry_for_party


logger = logging.getLogger(__name__)

REASON_SELF = "self"
REASON_GRANTED = "granted"
REASON_DENIED = "denied"
REASON_RESOURCE_NOT_FOUND = "resource_not_found"


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str
    # Party whose entry satisfied the check, when allowed by grant.
    matched_party_id: str | None = None
    matched_resource_id: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


def _party_has(store: ObjectStore, party: Party, capability: Capability, resource: Resource) -> bool:
    entry = entry_for_party(store, party, resource.id)
    return entry is not None and entry.mask.has(capability)


def _candidate_parties(store: ObjectStore, user: User) -> list[Party]:
    # The user first, then its groups in membership order.
    candidates: list[Party] = [user]
    for group_id in user.group_ids:
        try:
            candidates.append(store.get_group(group_id))
        except NotFoundError as exc:
            logger.error("authz_group_missing user_id=%s group_id=%s", user.id, group_id)
            raise InternalError(f"User {user.id} lists missing group {group_id}") from exc
    return candidates


def authorize(
    store: ObjectStore,
    user: User,
    action: Capability | PermissionMask,
    resource_id: str,
) -> AuthorizationDecision:
    capability = as_capability(action)

    # Users hold every capability on their own user object.
    if resource_id == user.id:
        return AuthorizationDecision(allowed=True, reason=REASON_SELF, matched_party_id=user.id)

    try:
        resource = store.get_resource(resource_id)
    except NotFoundError:
        return AuthorizationDecision(allowed=False, reason=REASON_RESOURCE_NOT_FOUND)

    parent: Resource | None = None
    if resource.parent_id:
        try:
            parent = store.get_resource(resource.parent_id)
        except NotFoundError as exc:
            logger.error("authz_parent_missing resource_id=%s parent_id=%s", resource.id, resource.parent_id)
            raise InternalError(f"Resource {resource.id} names missing parent {resource.parent_id}") from exc

    for party in _candidate_parties(store, user):
        if _party_has(store, party, capability, resource):
            return AuthorizationDecision(
                allowed=True,
                reason=REASON_GRANTED,
                matched_party_id=party.id,
                matched_resource_id=resource.id,
            )
        if parent is not None and _party_has(store, party, capability, parent):
            return AuthorizationDecision(
                allowed=True,
                reason=REASON_GRANTED,
                matched_party_id=party.id,
                matched_resource_id=parent.id,
            )
    return AuthorizationDecision(allowed=False, reason=REASON_DENIED)


def require_authorized(
    store: ObjectStore,
    user: User,
    action: Capability | PermissionMask,
    resource_id: str,
) -> AuthorizationDecision:
    # Convert denials into the error kinds handlers render as 400 or 403.
    decision = authorize(store, user, action, resource_id)
    if decision.allowed:
        return decision
    capability = as_capability(action)
    if decision.reason == REASON_RESOURCE_NOT_FOUND:
        raise NotFoundError(f"Resource with id {resource_id} not found")
    logger.info(
        "authz_denied user_id=%s capability=%s resource_id=%s",
        user.id,
        capability.name,
        resource_id,
    )
    raise ForbiddenError(f"User {user.login_name or user.id} may not {capability.name} resource {resource_id}")
