from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from redroom.domain.alerts.enums import AlertStatus, AssignmentPriority, Severity, SourceType
from redroom.shared.enums import Role


class AlertCreate(BaseModel):
    alert_type: str = Field(min_length=1, max_length=64)
    severity: Severity
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None

    vessel_id: uuid.UUID | None = None
    source_module: str | None = Field(default=None, max_length=64)
    source_type: SourceType = SourceType.SYSTEM
    related_entity_type: str | None = Field(default=None, max_length=64)
    related_entity_id: str | None = Field(default=None, max_length=200)

    owner_user_id: str | None = None
    owner_role: str | None = None
    assigned_to_user_id: str | None = None
    due_at: dt.datetime | None = None

    meta: dict[str, Any] | None = Field(default=None, validation_alias="metadata")


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    company_id: uuid.UUID
    vessel_id: uuid.UUID | None = None

    alert_type: str
    severity: Severity
    status: AlertStatus
    source_module: str | None = None
    source_type: SourceType

    title: str
    description: str | None = None
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    meta: dict[str, Any] | None = Field(default=None, serialization_alias="metadata")

    owner_user_id: str | None = None
    owner_role: str | None = None
    assigned_to_user_id: str | None = None
    assigned_to_role: str | None = None
    parent_alert_id: uuid.UUID | None = None
    assignment_notes: str | None = None
    assignment_priority: AssignmentPriority | None = None

    due_at: dt.datetime | None = None
    acknowledged_at: dt.datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: dt.datetime | None = None
    resolved_by: str | None = None

    snooze_count: int
    snoozed_until: dt.datetime | None = None
    last_snooze_reason: str | None = None

    escalation_level: int
    escalated_at: dt.datetime | None = None
    escalated_to_user_ids: list[str] = Field(default_factory=list)

    version: int
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class AcknowledgeRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=4000)


class ResolveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=4000)


class SnoozeRequest(BaseModel):
    hours: float = Field(gt=0)
    reason: str | None = Field(default=None, max_length=1000)


class SnoozeOut(BaseModel):
    alert: AlertOut
    remaining_snoozes: int


class AssignRequest(BaseModel):
    to_user_id: str | None = None
    to_role: Role | None = None
    notes: str | None = Field(default=None, max_length=4000)
    priority: AssignmentPriority = AssignmentPriority.URGENT
    severity: Severity | None = None


class AlertCountsOut(BaseModel):
    by_severity: dict[Severity, int]
    total: int


class RedRoomItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    vessel_id: uuid.UUID | None = None
    title: str
    description: str | None = None
    severity: Severity
    status: AlertStatus
    source_module: str | None = None
    source_type: SourceType
    related_entity_type: str | None = None
    related_entity_id: str | None = None

    due_at: dt.datetime | None = None
    created_at: dt.datetime | None = None
    snoozed_until: dt.datetime | None = None
    snooze_count: int
    remaining_snoozes: int
    escalation_level: int

    assigned_by: str | None = None
    assigned_to_user_id: str | None = None
    assigned_to_role: str | None = None
    assignment_priority: AssignmentPriority | None = None
    assignment_notes: str | None = None

    is_overdue: bool
    is_snoozed: bool
    is_direct_assignment: bool
    view_url: str


class RedRoomOut(BaseModel):
    items: list[RedRoomItemOut]
    counts: AlertCountsOut


class PermissionsOut(BaseModel):
    can_assign: bool
    can_escalate: bool


class AuditEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor_id: str
    action: str
    entity_type: str
    entity_id: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    request_id: str
    created_at: dt.datetime | None = None
