from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from redroom.core.db.audit import get_audit_log
from redroom.core.db.session import get_db
from redroom.core.security.auth import Actor
from redroom.core.security.dependencies import (
    get_actor,
    get_permission_checker,
    require_capability,
    require_company_access,
)
from redroom.core.security.permissions import Capability, PermissionChecker, actor_has_permission
from redroom.domain.alerts.enums import AlertStatus, Severity
from redroom.domain.alerts.schemas.alerts import (
    AcknowledgeRequest,
    AlertCountsOut,
    AlertCreate,
    AlertOut,
    AssignRequest,
    AuditEventOut,
    PermissionsOut,
    RedRoomItemOut,
    RedRoomOut,
    ResolveRequest,
    SnoozeOut,
    SnoozeRequest,
)
from redroom.domain.alerts.services.assignment import AssignmentService
from redroom.domain.alerts.services.lifecycle import ENTITY_TYPE, LifecycleEngine
from redroom.domain.alerts.services.red_room import build_red_room
from redroom.domain.alerts.services.repository import AlertCounts, AlertRepository


router = APIRouter(tags=["Alerts"], dependencies=[Depends(require_company_access())])


def get_lifecycle_engine(
    db: Session = Depends(get_db),
    checker: PermissionChecker = Depends(get_permission_checker),
) -> LifecycleEngine:
    return LifecycleEngine(db, permissions=checker)


def get_assignment_service(
    db: Session = Depends(get_db),
    checker: PermissionChecker = Depends(get_permission_checker),
) -> AssignmentService:
    return AssignmentService(db, permissions=checker)


def _counts_out(counts: AlertCounts) -> AlertCountsOut:
    return AlertCountsOut(by_severity=counts.by_severity, total=counts.total)


@router.post("/companies/{company_id}/alerts", response_model=AlertOut, status_code=status.HTTP_201_CREATED)
def create_alert(
    company_id: uuid.UUID,
    payload: AlertCreate,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    actor: Actor = Depends(require_capability(Capability.CREATE)),
):
    return engine.create(company_id, **payload.model_dump(), created_by=actor.actor_id)


@router.get("/companies/{company_id}/alerts", response_model=list[AlertOut])
def list_alerts(
    company_id: uuid.UUID,
    vessel_id: uuid.UUID | None = None,
    status_in: list[AlertStatus] | None = Query(default=None, alias="status"),
    severity: list[Severity] | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
):
    return AlertRepository(db).list(
        company_id,
        vessel_id=vessel_id,
        statuses=status_in,
        severities=severity,
        limit=limit,
        offset=offset,
    )


@router.get("/companies/{company_id}/alerts/counts", response_model=AlertCountsOut)
def alert_counts(
    company_id: uuid.UUID,
    vessel_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
):
    return _counts_out(AlertRepository(db).counts(company_id, vessel_id=vessel_id))


@router.get("/companies/{company_id}/alerts/{alert_id}", response_model=AlertOut)
def get_alert(
    company_id: uuid.UUID,
    alert_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
):
    return AlertRepository(db).get(company_id, alert_id)


@router.get("/companies/{company_id}/alerts/{alert_id}/audit", response_model=list[AuditEventOut])
def alert_audit_log(
    company_id: uuid.UUID,
    alert_id: uuid.UUID,
    action: list[str] | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
):
    AlertRepository(db).get(company_id, alert_id)
    return get_audit_log(db, company_id=company_id, entity_id=alert_id, entity_type=ENTITY_TYPE, actions=action)


@router.post("/companies/{company_id}/alerts/{alert_id}/acknowledge", response_model=AlertOut)
def acknowledge_alert(
    company_id: uuid.UUID,
    alert_id: uuid.UUID,
    payload: AcknowledgeRequest | None = None,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    actor: Actor = Depends(get_actor),
):
    return engine.acknowledge(company_id, alert_id, actor, notes=payload.notes if payload else None)


@router.post("/companies/{company_id}/alerts/{alert_id}/snooze", response_model=SnoozeOut)
def snooze_alert(
    company_id: uuid.UUID,
    alert_id: uuid.UUID,
    payload: SnoozeRequest,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    actor: Actor = Depends(get_actor),
):
    outcome = engine.snooze(company_id, alert_id, actor, hours=payload.hours, reason=payload.reason)
    return SnoozeOut(alert=AlertOut.model_validate(outcome.alert), remaining_snoozes=outcome.remaining_snoozes)


@router.post("/companies/{company_id}/alerts/{alert_id}/resolve", response_model=AlertOut)
def resolve_alert(
    company_id: uuid.UUID,
    alert_id: uuid.UUID,
    payload: ResolveRequest | None = None,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    actor: Actor = Depends(get_actor),
):
    return engine.resolve(company_id, alert_id, actor, notes=payload.notes if payload else None)


@router.post("/companies/{company_id}/alerts/{alert_id}/escalate", response_model=AlertOut)
def escalate_alert(
    company_id: uuid.UUID,
    alert_id: uuid.UUID,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    actor: Actor = Depends(get_actor),
):
    return engine.escalate_override(company_id, alert_id, actor)


@router.post(
    "/companies/{company_id}/alerts/{alert_id}/assign",
    response_model=AlertOut,
    status_code=status.HTTP_201_CREATED,
)
def assign_alert(
    company_id: uuid.UUID,
    alert_id: uuid.UUID,
    payload: AssignRequest,
    service: AssignmentService = Depends(get_assignment_service),
    actor: Actor = Depends(get_actor),
):
    return service.assign(
        company_id,
        alert_id,
        actor,
        to_user_id=payload.to_user_id,
        to_role=payload.to_role,
        notes=payload.notes,
        priority=payload.priority,
        severity=payload.severity,
    )


@router.get("/companies/{company_id}/red-room", response_model=RedRoomOut)
def red_room(
    company_id: uuid.UUID,
    vessel_id: uuid.UUID | None = None,
    include_snoozed: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
):
    view = build_red_room(db, company_id, vessel_id=vessel_id, viewer=actor, include_snoozed=include_snoozed)
    return RedRoomOut(
        items=[RedRoomItemOut.model_validate(item) for item in view.items],
        counts=_counts_out(view.counts),
    )


@router.get("/companies/{company_id}/red-room/permissions", response_model=PermissionsOut)
def red_room_permissions(
    company_id: uuid.UUID,
    service: AssignmentService = Depends(get_assignment_service),
    checker: PermissionChecker = Depends(get_permission_checker),
    actor: Actor = Depends(get_actor),
):
    return PermissionsOut(
        can_assign=service.can_assign(actor, company_id),
        can_escalate=actor_has_permission(checker, actor.roles_in(company_id), Capability.ESCALATE_OVERRIDE, {"company_id": company_id}),
    )
