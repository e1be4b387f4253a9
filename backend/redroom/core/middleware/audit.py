from __future__ import annotations

import re
import uuid
from typing import Iterable

import structlog
from structlog import contextvars

_COMPANY_PATH = re.compile(r"/companies/(?P<company_id>[0-9a-fA-F-]{36})(?:/|$)")


def reset_request_context() -> None:
    contextvars.clear_contextvars()


def set_request_id(request_id: str) -> None:
    contextvars.bind_contextvars(request_id=request_id)


def set_actor(actor_id: str, roles: Iterable[str]) -> None:
    contextvars.bind_contextvars(actor_id=actor_id, actor_roles=list(roles))


def set_company(company_id: uuid.UUID | str) -> None:
    contextvars.bind_contextvars(company_id=str(company_id))


def company_id_from_path(path: str) -> uuid.UUID | None:
    """Tenant id of a `/companies/{company_id}/...` route, if the path carries a valid one."""
    match = _COMPANY_PATH.search(path)
    if match is None:
        return None
    try:
        return uuid.UUID(match.group("company_id"))
    except ValueError:
        return None


def get_request_id() -> str | None:
    v = contextvars.get_contextvars().get("request_id")
    return str(v) if v is not None else None


def get_actor_id() -> str | None:
    v = contextvars.get_contextvars().get("actor_id")
    return str(v) if v is not None else None


def get_actor_roles() -> list[str]:
    roles = contextvars.get_contextvars().get("actor_roles")
    if isinstance(roles, list):
        return [str(r) for r in roles]
    return []


def get_company_id() -> str | None:
    v = contextvars.get_contextvars().get("company_id")
    return str(v) if v is not None else None


def get_logger(name: str | None = None):
    return structlog.get_logger(name)
