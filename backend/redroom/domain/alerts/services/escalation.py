"""Periodic escalation pass.

One tick, in order:
  1. expire snoozes whose window has passed (SNOOZED -> OPEN, window restarts)
  2. escalate OPEN/ACKNOWLEDGED alerts whose window exceeded the tier timeout
  3. dispatch notifications for escalation levels not yet notified
  4. auto-dismiss tiers that carry an auto-dismiss age

Ticks never overlap inside one process. Across processes, every write is
conditional on the alert version, so a second scheduler loses the race
instead of escalating twice.
"""
from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass

import structlog
from sqlalchemy.orm import Session

from redroom.core.db.audit import SYSTEM_ACTOR, WORKFLOW_REQUEST_ID, write_audit_event
from redroom.core.db.session import get_session_local
from redroom.domain.alerts.enums import AlertStatus
from redroom.domain.alerts.models.alerts import Alert
from redroom.domain.alerts.policy import POLICY_TABLE, escalating_severities, policy_for
from redroom.domain.alerts.services.repository import AlertRepository
from redroom.domain.alerts.services.lifecycle import ENTITY_TYPE, LifecycleEngine, escalation_anchor
from redroom.domain.alerts.services.targets import EscalationTargetResolver
from redroom.services.notifier import Notifier, get_notifier
from redroom.shared.exceptions import AlreadyResolved, ConflictError, NotFoundError, PolicyViolation
from redroom.shared.utils import as_utc, utcnow

logger = structlog.get_logger(__name__)

ESCALATION_TEMPLATE = "alert_escalated"

# A concurrent writer got there first; the next tick re-reads.
_LOST_RACE = (ConflictError, AlreadyResolved, NotFoundError, PolicyViolation)


@dataclass
class TickReport:
    expired: int = 0
    escalated: int = 0
    notified: int = 0
    notify_failures: int = 0
    dismissed: int = 0
    skipped: bool = False


def _default_session_factory() -> Session:
    return get_session_local()()


class EscalationScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session] = _default_session_factory,
        *,
        notifier: Notifier | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier if notifier is not None else get_notifier()
        self.clock = clock
        self._lock = threading.Lock()

    def run_tick(self, *, now: dt.datetime | None = None, db: Session | None = None) -> TickReport:
        if not self._lock.acquire(blocking=False):
            logger.warning("escalation.tick_skipped", reason="previous tick still running")
            return TickReport(skipped=True)

        try:
            now = as_utc(now) if now is not None else as_utc(self.clock())
            owns_session = db is None
            session = self.session_factory() if owns_session else db
            try:
                report = TickReport()
                report.expired = self._expire_snoozes(session, now)
                report.escalated = self._escalate_overdue(session, now)
                report.notified, report.notify_failures = self._dispatch_notifications(session)
                report.dismissed = self._auto_dismiss(session, now)
            finally:
                if owns_session:
                    session.close()

            logger.info("escalation.tick_complete", now=now.isoformat(), **asdict(report))
            return report
        finally:
            self._lock.release()

    def _expire_snoozes(self, db: Session, now: dt.datetime) -> int:
        engine = LifecycleEngine(db, clock=lambda: now)
        expired = 0
        for alert in AlertRepository(db).due_for_snooze_expiry(now):
            try:
                if engine.expire_snooze(alert, now=now) is not None:
                    expired += 1
            except _LOST_RACE as exc:
                logger.info("escalation.snooze_expiry_skipped", alert_id=str(alert.id), reason=exc.code)
        return expired

    def _escalate_overdue(self, db: Session, now: dt.datetime) -> int:
        engine = LifecycleEngine(db, clock=lambda: now)
        resolver = EscalationTargetResolver(db)
        escalated = 0
        for alert in AlertRepository(db).escalation_candidates(escalating_severities()):
            alert_id = alert.id
            policy = policy_for(alert.severity)
            if now - escalation_anchor(alert) <= policy.escalation_timeout:
                continue

            targets = resolver.resolve(alert.company_id, alert.vessel_id, policy.escalation_targets)
            if not targets:
                logger.warning(
                    "escalation.no_targets",
                    alert_id=str(alert_id),
                    company_id=str(alert.company_id),
                    roles=sorted(r.value for r in policy.escalation_targets),
                )
            try:
                engine.escalate(alert, targets=targets, now=now)
            except _LOST_RACE as exc:
                logger.info("escalation.skipped", alert_id=str(alert_id), reason=exc.code)
                continue
            escalated += 1
        return escalated

    def _dispatch_notifications(self, db: Session) -> tuple[int, int]:
        repo = AlertRepository(db)
        notified = 0
        failures = 0
        for alert in repo.pending_notifications():
            alert_id = alert.id
            company_id = alert.company_id
            level = alert.escalation_level
            previous_level = alert.notified_level

            # Claim the level first so a parallel scheduler cannot send it too.
            try:
                claimed = repo.update(company_id, alert_id, {"notified_level": level}, expected_version=alert.version)
                db.commit()
            except (ConflictError, NotFoundError):
                db.rollback()
                continue

            recipients = list(claimed.escalated_to_user_ids or [])
            if not recipients:
                logger.warning("escalation.notification_without_recipients", alert_id=str(alert_id), level=level)
                continue

            try:
                self.notifier.notify(recipients, ESCALATION_TEMPLATE, _notification_variables(claimed))
            except Exception:
                failures += 1
                logger.exception("escalation.notification_failed", alert_id=str(alert_id), level=level)
                self._release_claim(db, claimed, previous_level)
                continue

            write_audit_event(
                db,
                company_id=company_id,
                actor_id=SYSTEM_ACTOR,
                request_id=WORKFLOW_REQUEST_ID,
                action="alert.escalation_notified",
                entity_type=ENTITY_TYPE,
                entity_id=alert_id,
                before={"notified_level": previous_level},
                after={"notified_level": level, "recipients": recipients},
            )
            db.commit()
            notified += 1
        return notified, failures

    def _release_claim(self, db: Session, alert: Alert, previous_level: int) -> None:
        try:
            AlertRepository(db).update(
                alert.company_id,
                alert.id,
                {"notified_level": previous_level},
                expected_version=alert.version,
            )
            db.commit()
        except (ConflictError, NotFoundError):
            db.rollback()
            logger.warning("escalation.claim_release_lost", alert_id=str(alert.id))

    def _auto_dismiss(self, db: Session, now: dt.datetime) -> int:
        ages = {s: p.auto_dismiss_after for s, p in POLICY_TABLE.items() if p.auto_dismiss_after is not None}
        if not ages:
            return 0

        engine = LifecycleEngine(db, clock=lambda: now)
        dismissed = 0
        for alert in AlertRepository(db).auto_dismiss_candidates(ages.keys()):
            if now - as_utc(alert.created_at) <= ages[alert.severity]:
                continue
            alert_id = alert.id
            try:
                engine.auto_dismiss(alert, now=now)
            except _LOST_RACE as exc:
                logger.info("escalation.auto_dismiss_skipped", alert_id=str(alert_id), reason=exc.code)
                continue
            dismissed += 1
        return dismissed


def _notification_variables(alert: Alert) -> dict:
    policy = policy_for(alert.severity)
    methods = policy.escalation.notify_methods if policy.escalation else ()
    return {
        "alert_id": str(alert.id),
        "company_id": str(alert.company_id),
        "vessel_id": str(alert.vessel_id) if alert.vessel_id else None,
        "title": alert.title,
        "severity": alert.severity.value,
        "status": AlertStatus(alert.status).value,
        "escalation_level": alert.escalation_level,
        "escalated_at": as_utc(alert.escalated_at).isoformat() if alert.escalated_at else None,
        "notify_methods": [m.value for m in methods],
    }


class EscalationLoop:
    """Runs `EscalationScheduler.run_tick` every `interval_seconds` on the event loop's thread pool."""

    def __init__(self, scheduler: EscalationScheduler, interval_seconds: float) -> None:
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="escalation-loop")
        logger.info("escalation.loop_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("escalation.loop_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.scheduler.run_tick)
            except Exception:
                logger.exception("escalation.tick_failed")
            await asyncio.sleep(self.interval_seconds)
