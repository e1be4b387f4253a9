"""Alert state machine.

Every transition follows the same shape: check capability, load the alert in
the caller's company, reject terminal alerts, validate against the severity
policy, then write conditionally on the version that was read. A transition
and its audit event are committed together or not at all.
"""
from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.orm import Session

from redroom.core.db.audit import SYSTEM_ACTOR, WORKFLOW_REQUEST_ID, write_audit_event
from redroom.core.security.auth import Actor
from redroom.core.security.permissions import (
    Capability,
    PermissionChecker,
    default_permission_policy,
    require_permission,
)
from redroom.domain.alerts.enums import AlertStatus, Severity, SourceType, TERMINAL_STATUSES
from redroom.domain.alerts.models.alerts import Alert
from redroom.domain.alerts.policy import policy_for
from redroom.domain.alerts.services.repository import AlertRepository
from redroom.domain.alerts.services.targets import EscalationTargetResolver
from redroom.shared.exceptions import AlreadyResolved, PolicyViolation, ValidationError
from redroom.shared.utils import as_utc, sa_model_to_dict, utcnow

logger = structlog.get_logger(__name__)

ENTITY_TYPE = "Alert"


@dataclass(frozen=True)
class SnoozeOutcome:
    alert: Alert
    remaining_snoozes: int


def ensure_live(alert: Alert) -> None:
    if alert.status in TERMINAL_STATUSES:
        raise AlreadyResolved(f"Alert is already {AlertStatus(alert.status).value.lower()}")


def escalation_anchor(alert: Alert) -> dt.datetime:
    """Start of the current escalation window: creation, or the last escalation. Snoozing does not reset it."""
    stamps = [as_utc(v) for v in (alert.created_at, alert.escalated_at) if v is not None]
    return max(stamps)


class LifecycleEngine:
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

    def _now(self) -> dt.datetime:
        return as_utc(self.clock())

    def _require(self, actor: Actor, capability: Capability, company_id: uuid.UUID, alert_id: uuid.UUID | None = None) -> None:
        context = {"company_id": company_id, "alert_id": alert_id}
        require_permission(self.permissions, actor.roles_in(company_id), capability, context)

    def _apply(
        self,
        alert: Alert,
        patch: dict[str, Any],
        *,
        action: str,
        actor_id: str,
        actor_roles: list[str] | None = None,
        request_id: str | None = None,
    ) -> Alert:
        before = sa_model_to_dict(alert)
        company_id = alert.company_id
        alert_id = alert.id
        patch = {**patch, "updated_by": actor_id}
        try:
            updated = self.repo.update(company_id, alert_id, patch, expected_version=alert.version)
            write_audit_event(
                self.db,
                company_id=company_id,
                actor_id=actor_id,
                actor_roles=actor_roles,
                request_id=request_id,
                action=action,
                entity_type=ENTITY_TYPE,
                entity_id=alert_id,
                before=before,
                after=sa_model_to_dict(updated),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(action, alert_id=str(alert_id), company_id=str(company_id), status=AlertStatus(updated.status).value)
        return updated

    # Inbound producers

    def create(
        self,
        company_id: uuid.UUID,
        *,
        alert_type: str,
        severity: Severity | str,
        title: str,
        description: str | None = None,
        vessel_id: uuid.UUID | None = None,
        source_module: str | None = None,
        source_type: SourceType | str = SourceType.SYSTEM,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        owner_user_id: str | None = None,
        owner_role: str | None = None,
        assigned_to_user_id: str | None = None,
        due_at: dt.datetime | None = None,
        meta: dict[str, Any] | None = None,
        created_by: str = SYSTEM_ACTOR,
    ) -> Alert:
        if company_id is None:
            raise ValidationError("company_id is required")
        try:
            severity = Severity(severity)
        except ValueError:
            raise ValidationError(f"Unknown severity: {severity!r}") from None
        try:
            source_type = SourceType(source_type)
        except ValueError:
            raise ValidationError(f"Unknown source type: {source_type!r}") from None
        if source_type == SourceType.ASSIGNED:
            raise ValidationError("Assigned alerts are created through assignment")
        if not (title or "").strip():
            raise ValidationError("title is required")
        if not (alert_type or "").strip():
            raise ValidationError("alert_type is required")

        try:
            alert = self.repo.create(
                company_id,
                alert_type=alert_type.strip(),
                severity=severity,
                title=title.strip(),
                description=description,
                vessel_id=vessel_id,
                source_module=source_module,
                source_type=source_type,
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
                owner_user_id=owner_user_id,
                owner_role=owner_role,
                assigned_to_user_id=assigned_to_user_id,
                due_at=due_at,
                meta=meta,
                status=AlertStatus.OPEN,
                snooze_count=0,
                escalation_level=0,
                notified_level=0,
                escalated_to_user_ids=[],
                version=1,
                created_at=self._now(),
                created_by=created_by,
                updated_by=created_by,
            )
            write_audit_event(
                self.db,
                company_id=company_id,
                actor_id=created_by,
                action="alert.created",
                entity_type=ENTITY_TYPE,
                entity_id=alert.id,
                before=None,
                after=sa_model_to_dict(alert),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(alert)
        logger.info("alert.created", alert_id=str(alert.id), company_id=str(company_id), severity=severity.value)
        return alert

    # User transitions

    def acknowledge(self, company_id: uuid.UUID, alert_id: uuid.UUID, actor: Actor, *, notes: str | None = None) -> Alert:
        self._require(actor, Capability.ACT, company_id, alert_id)
        alert = self.repo.get(company_id, alert_id)
        ensure_live(alert)

        if alert.severity == Severity.RED and alert.source_type == SourceType.URGENT:
            raise PolicyViolation("Urgent RED alerts cannot be acknowledged; resolve or snooze with a reason")

        now = self._now()
        patch: dict[str, Any] = {
            "status": AlertStatus.ACKNOWLEDGED,
            "acknowledged_at": now,
            "acknowledged_by": actor.actor_id,
            "snoozed_until": None,
        }
        if notes:
            patch["meta"] = {**(alert.meta or {}), "acknowledgment_notes": notes}

        return self._apply(alert, patch, action="alert.acknowledged", actor_id=actor.actor_id, actor_roles=_role_values(actor.roles_in(company_id)))

    def snooze(
        self,
        company_id: uuid.UUID,
        alert_id: uuid.UUID,
        actor: Actor,
        *,
        hours: float,
        reason: str | None = None,
    ) -> SnoozeOutcome:
        self._require(actor, Capability.ACT, company_id, alert_id)
        alert = self.repo.get(company_id, alert_id)
        ensure_live(alert)

        policy = policy_for(alert.severity)
        if not policy.snooze_allowed:
            raise PolicyViolation("This alert cannot be snoozed")
        if alert.snooze_count >= policy.max_snoozes:
            raise PolicyViolation(f"Maximum snoozes ({policy.max_snoozes}) reached")
        if hours is None or hours <= 0:
            raise PolicyViolation("Snooze duration must be positive")
        if hours > policy.max_duration_hours:
            raise PolicyViolation(f"Maximum snooze duration is {policy.max_duration_hours} hours")
        reason = (reason or "").strip() or None
        if policy.requires_reason and not reason:
            raise PolicyViolation("A reason is required to snooze this alert")

        now = self._now()
        patch = {
            "status": AlertStatus.SNOOZED,
            "snooze_count": alert.snooze_count + 1,
            "snoozed_until": now + timedelta(hours=hours),
            "last_snooze_reason": reason,
        }
        updated = self._apply(alert, patch, action="alert.snoozed", actor_id=actor.actor_id, actor_roles=_role_values(actor.roles_in(company_id)))
        return SnoozeOutcome(alert=updated, remaining_snoozes=policy.remaining_snoozes(updated.snooze_count))

    def resolve(self, company_id: uuid.UUID, alert_id: uuid.UUID, actor: Actor, *, notes: str | None = None) -> Alert:
        self._require(actor, Capability.ACT, company_id, alert_id)
        alert = self.repo.get(company_id, alert_id)
        ensure_live(alert)

        patch: dict[str, Any] = {
            "status": AlertStatus.RESOLVED,
            "resolved_at": self._now(),
            "resolved_by": actor.actor_id,
            "snoozed_until": None,
        }
        if notes:
            patch["meta"] = {**(alert.meta or {}), "resolution_notes": notes}

        return self._apply(alert, patch, action="alert.resolved", actor_id=actor.actor_id, actor_roles=_role_values(actor.roles_in(company_id)))

    def escalate_override(self, company_id: uuid.UUID, alert_id: uuid.UUID, actor: Actor) -> Alert:
        """Manual escalation ahead of the timeout. Cancels an active snooze."""
        self._require(actor, Capability.ESCALATE_OVERRIDE, company_id, alert_id)
        alert = self.repo.get(company_id, alert_id)
        ensure_live(alert)
        if alert.status == AlertStatus.ESCALATED:
            raise PolicyViolation("Alert is already escalated")

        policy = policy_for(alert.severity)
        targets = EscalationTargetResolver(self.db).resolve(company_id, alert.vessel_id, policy.escalation_targets)
        return self._escalate(
            alert,
            targets=targets,
            now=self._now(),
            action="alert.escalated.manual",
            actor_id=actor.actor_id,
            actor_roles=_role_values(actor.roles_in(company_id)),
        )

    # Scheduler transitions

    def escalate(self, alert: Alert, *, targets: Iterable[str], now: dt.datetime | None = None) -> Alert:
        ensure_live(alert)
        now = as_utc(now) if now is not None else self._now()

        eligible = alert.status in (AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED) or (
            alert.status == AlertStatus.SNOOZED
            and alert.snoozed_until is not None
            and as_utc(alert.snoozed_until) <= now
        )
        if not eligible:
            raise PolicyViolation(f"Cannot escalate an alert in status {AlertStatus(alert.status).value}")

        return self._escalate(alert, targets=targets, now=now, action="alert.escalated", actor_id=SYSTEM_ACTOR, request_id=WORKFLOW_REQUEST_ID)

    def _escalate(
        self,
        alert: Alert,
        *,
        targets: Iterable[str],
        now: dt.datetime,
        action: str,
        actor_id: str,
        actor_roles: list[str] | None = None,
        request_id: str | None = None,
    ) -> Alert:
        recipients = sorted(set(alert.escalated_to_user_ids or []) | set(targets))
        patch = {
            "status": AlertStatus.ESCALATED,
            "escalation_level": alert.escalation_level + 1,
            "escalated_at": now,
            "escalated_to_user_ids": recipients,
            "snoozed_until": None,
        }
        return self._apply(alert, patch, action=action, actor_id=actor_id, actor_roles=actor_roles, request_id=request_id)

    def expire_snooze(self, alert: Alert, *, now: dt.datetime | None = None) -> Alert | None:
        """SNOOZED -> OPEN once the snooze window has passed. Returns None if not due."""
        now = as_utc(now) if now is not None else self._now()
        if alert.status != AlertStatus.SNOOZED or alert.snoozed_until is None or as_utc(alert.snoozed_until) > now:
            return None

        patch = {"status": AlertStatus.OPEN, "snoozed_until": None, "reopened_at": now}
        return self._apply(alert, patch, action="alert.snooze_expired", actor_id=SYSTEM_ACTOR, request_id=WORKFLOW_REQUEST_ID)

    def auto_dismiss(self, alert: Alert, *, now: dt.datetime | None = None) -> Alert:
        ensure_live(alert)
        now = as_utc(now) if now is not None else self._now()
        patch = {"status": AlertStatus.AUTO_DISMISSED, "resolved_at": now, "resolved_by": SYSTEM_ACTOR, "snoozed_until": None}
        return self._apply(alert, patch, action="alert.auto_dismissed", actor_id=SYSTEM_ACTOR, request_id=WORKFLOW_REQUEST_ID)


def _role_values(roles: Iterable[Any]) -> list[str]:
    return [getattr(r, "value", str(r)) for r in roles]
