from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass

from sqlalchemy import Select, and_, case, or_, select
from sqlalchemy.orm import Session

from redroom.core.security.auth import Actor
from redroom.domain.alerts.enums import LIVE_STATUSES, AlertStatus, AssignmentPriority, Severity, SourceType
from redroom.domain.alerts.models.alerts import Alert
from redroom.domain.alerts.policy import policy_for
from redroom.domain.alerts.services.repository import AlertCounts, AlertRepository
from redroom.shared.utils import as_utc, utcnow

_ENTITY_ROUTES: dict[str, str] = {
    "incident": "/incidents?id={id}",
    "form": "/ism/forms/submissions/{id}",
    "form_submission": "/ism/forms/submissions/{id}",
    "certificate": "/certificates?id={id}",
    "maintenance": "/maintenance?task={id}",
    "maintenance_task": "/maintenance?task={id}",
    "defect": "/maintenance?defect={id}",
    "audit": "/audits?id={id}",
    "drill": "/ism/drills?id={id}",
    "crew": "/crew?id={id}",
    "profile": "/crew?id={id}",
    "corrective_action": "/reports/capa-tracker?id={id}",
    "capa": "/reports/capa-tracker?id={id}",
    "training": "/training?id={id}",
}

_MODULE_ROUTES: dict[str, str] = {
    "incidents": "/incidents",
    "certificates": "/certificates",
    "maintenance": "/maintenance",
    "drills": "/ism/drills",
    "audits": "/audits",
    "training": "/training",
    "crew": "/crew",
}

# Upper bound on non-RED rows pulled into one Red Room render. RED rows are never cut.
RED_ROOM_LIMIT = 500


@dataclass(frozen=True)
class RedRoomItem:
    id: uuid.UUID
    vessel_id: uuid.UUID | None
    title: str
    description: str | None
    severity: Severity
    status: AlertStatus
    source_module: str | None
    source_type: SourceType
    related_entity_type: str | None
    related_entity_id: str | None
    due_at: dt.datetime | None
    created_at: dt.datetime | None
    snoozed_until: dt.datetime | None
    snooze_count: int
    remaining_snoozes: int
    escalation_level: int
    assigned_by: str | None
    assigned_to_user_id: str | None
    assigned_to_role: str | None
    assignment_priority: AssignmentPriority | None
    assignment_notes: str | None
    is_overdue: bool
    is_snoozed: bool
    is_direct_assignment: bool
    view_url: str


@dataclass(frozen=True)
class RedRoom:
    items: list[RedRoomItem]
    counts: AlertCounts


def view_url(alert: Alert) -> str:
    entity_type = (alert.related_entity_type or "").strip().lower()
    if entity_type and alert.related_entity_id:
        template = _ENTITY_ROUTES.get(entity_type)
        if template:
            return template.format(id=alert.related_entity_id)

    module = (alert.source_module or "").strip().lower()
    if module in _MODULE_ROUTES:
        return _MODULE_ROUTES[module]

    return f"/alerts?id={alert.id}"


def _to_item(alert: Alert, now: dt.datetime, viewer: Actor | None) -> RedRoomItem:
    due_at = as_utc(alert.due_at)
    snoozed_until = as_utc(alert.snoozed_until)
    assigned = alert.source_type == SourceType.ASSIGNED
    return RedRoomItem(
        id=alert.id,
        vessel_id=alert.vessel_id,
        title=alert.title,
        description=alert.description,
        severity=Severity(alert.severity),
        status=AlertStatus(alert.status),
        source_module=alert.source_module,
        source_type=SourceType(alert.source_type),
        related_entity_type=alert.related_entity_type,
        related_entity_id=alert.related_entity_id,
        due_at=due_at,
        created_at=as_utc(alert.created_at),
        snoozed_until=snoozed_until,
        snooze_count=alert.snooze_count,
        remaining_snoozes=policy_for(alert.severity).remaining_snoozes(alert.snooze_count),
        escalation_level=alert.escalation_level,
        assigned_by=alert.owner_user_id if assigned else None,
        assigned_to_user_id=alert.assigned_to_user_id,
        assigned_to_role=alert.assigned_to_role,
        assignment_priority=alert.assignment_priority,
        assignment_notes=alert.assignment_notes,
        is_overdue=due_at is not None and due_at < now,
        is_snoozed=alert.status == AlertStatus.SNOOZED and snoozed_until is not None and snoozed_until > now,
        is_direct_assignment=assigned and viewer is not None and alert.assigned_to_user_id == viewer.actor_id,
        view_url=view_url(alert),
    )


def _visibility_clause(viewer: Actor | None, company_id: uuid.UUID):
    if viewer is None or viewer.is_admin:
        return None
    roles = [r.value for r in viewer.roles_in(company_id)]
    return or_(
        Alert.source_type != SourceType.ASSIGNED,
        Alert.owner_user_id == viewer.actor_id,
        Alert.assigned_to_user_id == viewer.actor_id,
        Alert.assigned_to_role.in_(roles),
    )


def _ranked_query(
    company_id: uuid.UUID,
    *,
    now: dt.datetime,
    vessel_id: uuid.UUID | None,
    viewer: Actor | None,
    include_snoozed: bool,
) -> Select:
    severity_rank = case(*[(Alert.severity == s, s.rank) for s in Severity], else_=len(Severity))
    not_overdue = case((and_(Alert.due_at.is_not(None), Alert.due_at < now), 0), else_=1)
    undated = case((Alert.due_at.is_(None), 1), else_=0)

    stmt = select(Alert).where(Alert.company_id == company_id, Alert.status.in_(list(LIVE_STATUSES)))
    if vessel_id is not None:
        stmt = stmt.where(Alert.vessel_id == vessel_id)
    if not include_snoozed:
        stmt = stmt.where(
            or_(
                Alert.status != AlertStatus.SNOOZED,
                Alert.snoozed_until.is_(None),
                Alert.snoozed_until <= now,
            )
        )
    visibility = _visibility_clause(viewer, company_id)
    if visibility is not None:
        stmt = stmt.where(visibility)
    return stmt.order_by(severity_rank, not_overdue, undated, Alert.due_at.asc(), Alert.created_at.desc(), Alert.id)


def build_red_room(
    db: Session,
    company_id: uuid.UUID,
    *,
    vessel_id: uuid.UUID | None = None,
    viewer: Actor | None = None,
    include_snoozed: bool = False,
    now: dt.datetime | None = None,
) -> RedRoom:
    """
    Live alerts for a company (optionally one vessel), most urgent first.

    Assigned tasks are only shown to the assigner and the assignee. Snoozed
    alerts drop out of the list until their snooze expires but still count.
    """
    now = as_utc(now) if now is not None else utcnow()
    counts = AlertRepository(db).counts(company_id, vessel_id=vessel_id)

    # Ordering happens in the query so the limit only ever drops the least urgent rows.
    limit = max(RED_ROOM_LIMIT, counts.by_severity[Severity.RED])
    stmt = _ranked_query(company_id, now=now, vessel_id=vessel_id, viewer=viewer, include_snoozed=include_snoozed)
    alerts = db.execute(stmt.limit(limit)).scalars().all()

    return RedRoom(items=[_to_item(a, now, viewer) for a in alerts], counts=counts)
