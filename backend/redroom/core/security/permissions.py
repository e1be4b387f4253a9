from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, Protocol

from redroom.shared.enums import Role
from redroom.shared.exceptions import Unauthorized


class Capability(str, Enum):
    VIEW = "alert.view"
    CREATE = "alert.create"
    ACT = "alert.act"
    ASSIGN = "alert.assign"
    ESCALATE_OVERRIDE = "alert.escalate_override"


class PermissionChecker(Protocol):
    def has_permission(self, role: Role, capability: Capability, context: Mapping[str, Any] | None = None) -> bool: ...


DEFAULT_GRANTS: Mapping[Capability, frozenset[Role]] = {
    Capability.VIEW: frozenset(Role),
    Capability.CREATE: frozenset(
        {Role.DPA, Role.CAPTAIN, Role.FLEET_MASTER, Role.CHIEF_ENGINEER, Role.OFFICER, Role.SHORE_STAFF}
    ),
    Capability.ACT: frozenset(set(Role) - {Role.AUDITOR}),
    Capability.ASSIGN: frozenset({Role.DPA, Role.CAPTAIN}),
    Capability.ESCALATE_OVERRIDE: frozenset({Role.DPA, Role.CAPTAIN}),
}


class RolePermissionPolicy:
    """Static role -> capability grants. ADMIN holds every capability."""

    def __init__(self, grants: Mapping[Capability, Iterable[Role]] | None = None) -> None:
        source = grants if grants is not None else DEFAULT_GRANTS
        self._grants = {cap: frozenset(roles) for cap, roles in source.items()}

    def has_permission(self, role: Role, capability: Capability, context: Mapping[str, Any] | None = None) -> bool:
        if role == Role.ADMIN:
            return True
        return role in self._grants.get(Capability(capability), frozenset())


def actor_has_permission(
    checker: PermissionChecker,
    roles: Iterable[Role],
    capability: Capability,
    context: Mapping[str, Any] | None = None,
) -> bool:
    return any(checker.has_permission(role, capability, context) for role in roles)


def require_permission(
    checker: PermissionChecker,
    roles: Iterable[Role],
    capability: Capability,
    context: Mapping[str, Any] | None = None,
) -> None:
    if not actor_has_permission(checker, roles, capability, context):
        raise Unauthorized(f"Missing capability: {Capability(capability).value}")


default_permission_policy = RolePermissionPolicy()
