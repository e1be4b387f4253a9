from __future__ import annotations

import uuid
from collections.abc import Callable

from fastapi import Depends, HTTPException, Path, Request, status

from redroom.core.middleware.audit import set_actor
from redroom.core.security.auth import Actor, actor_from_request
from redroom.core.security.permissions import (
    Capability,
    PermissionChecker,
    actor_has_permission,
    default_permission_policy,
)


def get_actor(request: Request) -> Actor:
    try:
        actor = actor_from_request(request)
    except (NotImplementedError, PermissionError, ValueError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    set_actor(actor.actor_id, [r.value for r in actor.all_roles])
    return actor


def get_permission_checker() -> PermissionChecker:
    return default_permission_policy


def get_company_id(company_id: uuid.UUID = Path(...)) -> uuid.UUID:
    return company_id


def require_company_access() -> Callable[[uuid.UUID, Actor], uuid.UUID]:
    def _dep(company_id: uuid.UUID = Depends(get_company_id), actor: Actor = Depends(get_actor)) -> uuid.UUID:
        if not actor.can_access_company(company_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden for this company")
        return company_id

    return _dep


def require_capability(capability: Capability) -> Callable[..., Actor]:
    def _dep(
        company_id: uuid.UUID = Depends(get_company_id),
        actor: Actor = Depends(get_actor),
        checker: PermissionChecker = Depends(get_permission_checker),
    ) -> Actor:
        if not actor_has_permission(checker, actor.roles_in(company_id), capability, {"company_id": company_id}):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return actor

    return _dep
