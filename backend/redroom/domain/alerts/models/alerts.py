from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from redroom.core.db.base import AuditMetaMixin, Base, CompanyScopedMixin, IdMixin
from redroom.domain.alerts.enums import AlertStatus, AssignmentPriority, Severity, SourceType


class Alert(Base, IdMixin, CompanyScopedMixin, AuditMetaMixin):
    """
    A tracked, severity-tagged compliance/safety item.

    Rows are never deleted: RESOLVED and AUTO_DISMISSED are terminal but kept
    for the audit trail. Mutations go through the lifecycle engine, which
    writes conditionally on `version`.
    """

    __tablename__ = "alerts"

    vessel_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)

    alert_type: Mapped[str] = mapped_column(String(64), index=True)
    severity: Mapped[Severity] = mapped_column(
        Enum(Severity, name="alert_severity_enum"),
        nullable=False,
        index=True,
    )
    source_module: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_type: Mapped[SourceType] = mapped_column(
        Enum(SourceType, name="alert_source_type_enum", values_callable=lambda e: [m.value for m in e]),
        default=SourceType.SYSTEM,
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    related_entity_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    owner_user_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    owner_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    assigned_to_user_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    assigned_to_role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    parent_alert_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("alerts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assignment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assignment_priority: Mapped[AssignmentPriority | None] = mapped_column(
        Enum(AssignmentPriority, name="alert_assignment_priority_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )

    status: Mapped[AlertStatus] = mapped_column(
        Enum(AlertStatus, name="alert_status_enum"),
        default=AlertStatus.OPEN,
        nullable=False,
        index=True,
    )
    due_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    acknowledged_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolved_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    snooze_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    snoozed_until: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_snooze_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reopened_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    escalation_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    escalated_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalated_to_user_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    # Highest escalation level whose notification has been claimed for dispatch.
    notified_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("ix_alerts_company_status", "company_id", "status"),
        Index("ix_alerts_company_vessel", "company_id", "vessel_id"),
    )
