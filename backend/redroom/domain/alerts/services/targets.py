from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from redroom.core.db.models import User, UserCompanyRole
from redroom.shared.enums import Role


class EscalationTargetResolver:
    """
    Maps escalation roles to the active users holding them in a company.

    A grant with no vessel covers the whole fleet; a vessel-bound grant only
    covers alerts raised for that vessel. Ids are the users' external ids
    (the same ids actors authenticate with), falling back to the row id.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve(
        self,
        company_id: uuid.UUID,
        vessel_id: uuid.UUID | None,
        roles: Iterable[Role],
    ) -> list[str]:
        role_values = sorted(Role(r).value for r in roles)
        if not role_values:
            return []

        stmt = (
            select(User.id, User.external_id)
            .join(UserCompanyRole, UserCompanyRole.user_id == User.id)
            .where(
                UserCompanyRole.company_id == company_id,
                UserCompanyRole.role.in_(role_values),
                User.is_active.is_(True),
            )
        )
        if vessel_id is None:
            stmt = stmt.where(UserCompanyRole.vessel_id.is_(None))
        else:
            stmt = stmt.where(or_(UserCompanyRole.vessel_id.is_(None), UserCompanyRole.vessel_id == vessel_id))

        return sorted({external_id or str(user_id) for user_id, external_id in self.db.execute(stmt).all()})
