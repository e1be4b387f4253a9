from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from redroom.domain.alerts.enums import LIVE_STATUSES, AlertStatus, Severity
from redroom.domain.alerts.models.alerts import Alert
from redroom.shared.exceptions import ConflictError, NotFoundError


@dataclass(frozen=True)
class AlertCounts:
    by_severity: dict[Severity, int] = field(default_factory=lambda: {s: 0 for s in Severity})
    total: int = 0


class AlertRepository:
    """
    Company-scoped persistence for alerts.

    No business rules live here. Every read and write is filtered by
    company_id; an id outside the caller's company is indistinguishable from a
    missing one.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, company_id: uuid.UUID, alert_id: uuid.UUID) -> Alert:
        alert = self.db.execute(
            select(Alert).where(Alert.id == alert_id, Alert.company_id == company_id)
        ).scalar_one_or_none()
        if alert is None:
            raise NotFoundError("Alert not found")
        return alert

    def list(
        self,
        company_id: uuid.UUID,
        *,
        vessel_id: uuid.UUID | None = None,
        statuses: Iterable[AlertStatus] | None = None,
        severities: Iterable[Severity] | None = None,
        limit: int = 200,
        offset: int = 0,
    ) -> list[Alert]:
        stmt = select(Alert).where(Alert.company_id == company_id)
        if vessel_id is not None:
            stmt = stmt.where(Alert.vessel_id == vessel_id)
        if statuses:
            stmt = stmt.where(Alert.status.in_(list(statuses)))
        if severities:
            stmt = stmt.where(Alert.severity.in_(list(severities)))
        stmt = stmt.order_by(Alert.created_at.desc(), Alert.id).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def counts(self, company_id: uuid.UUID, *, vessel_id: uuid.UUID | None = None) -> AlertCounts:
        stmt = (
            select(Alert.severity, func.count(Alert.id))
            .where(Alert.company_id == company_id, Alert.status.in_(list(LIVE_STATUSES)))
            .group_by(Alert.severity)
        )
        if vessel_id is not None:
            stmt = stmt.where(Alert.vessel_id == vessel_id)

        by_severity = {s: 0 for s in Severity}
        for severity, count in self.db.execute(stmt).all():
            by_severity[Severity(severity)] = int(count)
        return AlertCounts(by_severity=by_severity, total=sum(by_severity.values()))

    def create(self, company_id: uuid.UUID, **fields: Any) -> Alert:
        alert = Alert(company_id=company_id, **fields)
        self.db.add(alert)
        self.db.flush()
        return alert

    def update(
        self,
        company_id: uuid.UUID,
        alert_id: uuid.UUID,
        patch: dict[str, Any],
        *,
        expected_version: int,
    ) -> Alert:
        """Conditional write: applies only if the row still carries `expected_version`."""
        stmt = (
            update(Alert)
            .where(
                Alert.id == alert_id,
                Alert.company_id == company_id,
                Alert.version == expected_version,
            )
            .values(**patch, version=Alert.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            visible = self.db.execute(
                select(Alert.id).where(Alert.id == alert_id, Alert.company_id == company_id)
            ).first()
            if visible is None:
                raise NotFoundError("Alert not found")
            raise ConflictError("Alert was modified concurrently; reload and retry")

        return self._reload(company_id, alert_id)

    def _reload(self, company_id: uuid.UUID, alert_id: uuid.UUID) -> Alert:
        return self.db.execute(
            select(Alert)
            .where(Alert.id == alert_id, Alert.company_id == company_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

    # Cross-company scans below are for the escalation scheduler only.

    def due_for_snooze_expiry(self, now: dt.datetime) -> list[Alert]:
        stmt = select(Alert).where(
            Alert.status == AlertStatus.SNOOZED,
            Alert.snoozed_until.is_not(None),
            Alert.snoozed_until <= now,
        )
        return list(self.db.execute(stmt).scalars().all())

    def escalation_candidates(self, severities: Iterable[Severity]) -> list[Alert]:
        stmt = select(Alert).where(
            Alert.status.in_([AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED]),
            Alert.severity.in_(list(severities)),
        )
        return list(self.db.execute(stmt).scalars().all())

    def pending_notifications(self) -> list[Alert]:
        stmt = select(Alert).where(
            Alert.escalation_level > Alert.notified_level,
            Alert.status.in_(list(LIVE_STATUSES)),
        )
        return list(self.db.execute(stmt).scalars().all())

    def auto_dismiss_candidates(self, severities: Iterable[Severity]) -> list[Alert]:
        stmt = select(Alert).where(
            Alert.status.in_(list(LIVE_STATUSES)),
            Alert.severity.in_(list(severities)),
        )
        return list(self.db.execute(stmt).scalars().all())
