from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Callable

import structlog
from sqlalchemy.orm import Session

from redroom.core.db.audit import write_audit_event
from redroom.core.security.auth import Actor
from redroom.core.security.permissions import (
    Capability,
    PermissionChecker,
    actor_has_permission,
    default_permission_policy,
)
from redroom.domain.alerts.enums import AlertStatus, AssignmentPriority, Severity, SourceType
from redroom.domain.alerts.models.alerts import Alert
from redroom.domain.alerts.services.lifecycle import ENTITY_TYPE, ensure_live
from redroom.domain.alerts.services.repository import AlertRepository
from redroom.shared.enums import Role
from redroom.shared.exceptions import PolicyViolation, Unauthorized
from redroom.shared.utils import as_utc, sa_model_to_dict, utcnow

logger = structlog.get_logger(__name__)


class AssignmentService:
    """
    Delegation of an alert to a specific user (or role) as a new ASSIGNED alert.

    The source alert is left untouched apart from the audit trail; the new
    alert carries `parent_alert_id` back to it.
    """

    def __init__(
        self,
        db: Session,
        *,
        permissions: PermissionChecker = default_permission_policy,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.db = db
        self.repo = AlertRepository(db)
        self.permissions = permissions
        self.clock = clock

    def can_assign(self, actor: Actor, company_id: uuid.UUID | None = None) -> bool:
        return actor_has_permission(self.permissions, actor.roles_in(company_id), Capability.ASSIGN, {"company_id": company_id})

    def _assigning_role(self, actor: Actor, company_id: uuid.UUID) -> Role | None:
        for role in actor.roles_in(company_id):
            if self.permissions.has_permission(role, Capability.ASSIGN, {"company_id": company_id}):
                return role
        return None

    def assign(
        self,
        company_id: uuid.UUID,
        alert_id: uuid.UUID,
        actor: Actor,
        *,
        to_user_id: str | None = None,
        to_role: Role | str | None = None,
        notes: str | None = None,
        priority: AssignmentPriority | str = AssignmentPriority.URGENT,
        severity: Severity | str | None = None,
    ) -> Alert:
        if not self.can_assign(actor, company_id):
            raise Unauthorized("Only DPA or Captain can assign tasks")

        to_user_id = (to_user_id or "").strip() or None
        role_value = Role(to_role).value if to_role else None
        if (to_user_id is None) == (role_value is None):
            raise PolicyViolation("Assign to exactly one user or one role")

        source = self.repo.get(company_id, alert_id)
        ensure_live(source)

        source_severity = Severity(source.severity)
        new_severity = Severity(severity) if severity else source_severity
        if new_severity.rank < source_severity.rank:
            raise PolicyViolation("An assigned task cannot be more severe than its source alert")

        priority = AssignmentPriority(priority)
        assigning_role = self._assigning_role(actor, company_id)
        now = as_utc(self.clock())

        try:
            assigned = self.repo.create(
                company_id,
                vessel_id=source.vessel_id,
                alert_type=source.alert_type,
                severity=new_severity,
                source_module=source.source_module,
                source_type=SourceType.ASSIGNED,
                title=source.title,
                description=source.description,
                related_entity_type=source.related_entity_type,
                related_entity_id=source.related_entity_id,
                meta={"assigned_from": str(source.id)},
                owner_user_id=actor.actor_id,
                owner_role=assigning_role.value if assigning_role else None,
                assigned_to_user_id=to_user_id,
                assigned_to_role=role_value,
                parent_alert_id=source.id,
                assignment_notes=notes,
                assignment_priority=priority,
                status=AlertStatus.OPEN,
                due_at=source.due_at,
                snooze_count=0,
                escalation_level=0,
                notified_level=0,
                escalated_to_user_ids=[],
                version=1,
                created_at=now,
                created_by=actor.actor_id,
                updated_by=actor.actor_id,
            )

            actor_roles = [r.value for r in actor.roles_in(company_id)]
            write_audit_event(
                self.db,
                company_id=company_id,
                actor_id=actor.actor_id,
                actor_roles=actor_roles,
                action="alert.assigned",
                entity_type=ENTITY_TYPE,
                entity_id=assigned.id,
                before=None,
                after=sa_model_to_dict(assigned),
            )
            write_audit_event(
                self.db,
                company_id=company_id,
                actor_id=actor.actor_id,
                actor_roles=actor_roles,
                action="alert.task_delegated",
                entity_type=ENTITY_TYPE,
                entity_id=source.id,
                before=None,
                after={
                    "assigned_alert_id": str(assigned.id),
                    "assigned_to_user_id": to_user_id,
                    "assigned_to_role": role_value,
                    "priority": priority.value,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assigned)
        logger.info(
            "alert.assigned",
            alert_id=str(assigned.id),
            parent_alert_id=str(alert_id),
            assigned_to_user_id=to_user_id,
            assigned_to_role=role_value,
        )
        return assigned
