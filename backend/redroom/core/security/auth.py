from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import jwt
from jwt import PyJWKClient
from sqlalchemy import select
from starlette.requests import Request

from redroom.core.config import settings
from redroom.core.db.models import User, UserCompanyRole
from redroom.core.db.session import get_session_local
from redroom.shared.enums import Env, Role


@dataclass(frozen=True)
class Actor:
    """
    Resolved caller.

    `roles` hold everywhere the actor has access (token claims, dev header).
    `company_roles` are directory grants that only count inside their company.
    """

    actor_id: str
    roles: tuple[Role, ...]
    company_ids: tuple[uuid.UUID, ...]
    is_admin: bool = False
    company_roles: Mapping[uuid.UUID, tuple[Role, ...]] = field(default_factory=dict, compare=False)

    @property
    def all_roles(self) -> tuple[Role, ...]:
        merged = set(self.roles)
        for granted in self.company_roles.values():
            merged.update(granted)
        return _sorted_roles(merged)

    def roles_in(self, company_id: uuid.UUID | None) -> tuple[Role, ...]:
        if company_id is None:
            return self.roles
        scoped = [r for r in self.company_roles.get(company_id, ()) if r not in self.roles]
        return (*self.roles, *scoped)

    def can_access_company(self, company_id: uuid.UUID) -> bool:
        return self.is_admin or company_id in set(self.company_ids)


def _sorted_roles(roles: Iterable[Role]) -> tuple[Role, ...]:
    return tuple(sorted(roles, key=lambda value: value.value))


def _parse_dev_actor_header(raw: str) -> Actor:
    """
    DEV ONLY: X-DEV-ACTOR header payload as JSON.

    Example:
      {"actor_id":"dev-user","roles":["DPA"],"company_ids":["*"]}

    Roles that should only hold in one company go under `company_roles`:
      {"actor_id":"capt-1","company_ids":["<a>","<b>"],"company_roles":{"<a>":["CAPTAIN"]}}
    """
    payload = json.loads(raw)
    actor_id = str(payload["actor_id"])
    roles = tuple(Role(r) for r in payload.get("roles", []))

    company_ids_raw = payload.get("company_ids", [])
    is_admin = Role.ADMIN in roles or "*" in company_ids_raw
    company_ids: list[uuid.UUID] = []
    for v in company_ids_raw:
        if v == "*":
            continue
        company_ids.append(uuid.UUID(str(v)))

    company_roles = {
        uuid.UUID(str(cid)): _sorted_roles(Role(r) for r in granted)
        for cid, granted in (payload.get("company_roles") or {}).items()
    }
    company_ids.extend(cid for cid in company_roles if cid not in company_ids)

    return Actor(
        actor_id=actor_id,
        roles=roles,
        company_ids=tuple(company_ids),
        is_admin=is_admin,
        company_roles=company_roles,
    )


def _get_bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization")
    if not auth:
        return None
    if not auth.lower().startswith("bearer "):
        return None
    return auth.split(" ", 1)[1].strip()


def _verify_jwt(token: str) -> dict[str, Any]:
    if not settings.oidc_jwks_url:
        raise NotImplementedError("OIDC JWKS URL is not configured")
    jwk_client = PyJWKClient(str(settings.oidc_jwks_url))
    signing_key = jwk_client.get_signing_key_from_jwt(token)

    audiences = None
    if settings.oidc_audience:
        parsed = [value.strip() for value in str(settings.oidc_audience).replace(";", ",").split(",") if value.strip()]
        if len(parsed) == 1:
            audiences = parsed[0]
        elif parsed:
            audiences = parsed

    options = {"verify_aud": bool(audiences), "verify_iss": bool(settings.oidc_issuer)}
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["RS256"],
        audience=audiences,
        issuer=settings.oidc_issuer,
        options=options,
    )


def _extract_claim_roles(claims: dict[str, Any]) -> set[Role]:
    out: set[Role] = set()
    for value in claims.get("roles") or []:
        try:
            out.add(Role(str(value)))
        except ValueError:
            continue
    return out


def _load_user_context(actor_id: str, email: str | None) -> dict[uuid.UUID, tuple[Role, ...]]:
    """Directory grants per company. Vessel-bound grants count for their whole company here."""
    session = get_session_local()()
    try:
        user = None
        if actor_id:
            user = session.execute(select(User).where(User.external_id == actor_id)).scalar_one_or_none()
        if user is None and email:
            user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is None or not user.is_active:
            return {}

        rows = session.execute(
            select(UserCompanyRole.role, UserCompanyRole.company_id).where(UserCompanyRole.user_id == user.id)
        ).all()
        grants: dict[uuid.UUID, set[Role]] = {}
        for role_value, company_id in rows:
            try:
                role = Role(str(role_value))
            except ValueError:
                continue
            grants.setdefault(company_id, set()).add(role)
        return {company_id: _sorted_roles(roles) for company_id, roles in grants.items()}
    finally:
        session.close()


def actor_from_request(request: Request) -> Actor:
    if settings.env == Env.dev:
        raw = request.headers.get(settings.dev_actor_header)
        if raw:
            return _parse_dev_actor_header(raw)

    token = _get_bearer_token(request)
    if not token:
        raise PermissionError("Missing bearer token")

    claims = _verify_jwt(token)

    actor_id = str(claims.get("oid") or claims.get("sub") or "unknown")
    email = claims.get("email") or claims.get("preferred_username")

    claim_roles = _extract_claim_roles(claims)
    company_roles = _load_user_context(actor_id=actor_id, email=str(email) if email else None)

    # Token roles apply in every company the actor can reach; directory roles only in their own.
    global_roles = set(claim_roles)
    if not global_roles and not company_roles:
        global_roles = {Role.CREW}

    return Actor(
        actor_id=actor_id,
        roles=_sorted_roles(global_roles),
        company_ids=tuple(sorted(company_roles, key=str)),
        is_admin=Role.ADMIN in global_roles,
        company_roles=company_roles,
    )
