from __future__ import annotations

import asyncio
import datetime as dt
import uuid

import pytest
from sqlalchemy.orm import Session

from redroom.core.db.audit import get_audit_log
from redroom.core.security.auth import Actor
from redroom.domain.alerts.enums import AlertStatus, Severity
from redroom.domain.alerts.services.escalation import EscalationLoop, EscalationScheduler, TickReport
from redroom.domain.alerts.services.lifecycle import LifecycleEngine
from redroom.domain.alerts.services.repository import AlertRepository
from redroom.shared.enums import Role
from redroom.shared.utils import as_utc


def _create(db: Session, clock, company_id: uuid.UUID, severity: Severity = Severity.RED, **kwargs):
    return LifecycleEngine(db, clock=clock).create(
        company_id,
        alert_type="certificate_expiry",
        severity=severity,
        title="Safety Management Certificate expiring",
        **kwargs,
    )


def _reload(db: Session, company_id: uuid.UUID, alert_id: uuid.UUID):
    db.expire_all()
    return AlertRepository(db).get(company_id, alert_id)


@pytest.fixture()
def scheduler(notifier, clock) -> EscalationScheduler:
    return EscalationScheduler(notifier=notifier, clock=clock)


@pytest.fixture()
def fleet(company_id, grant_role) -> dict:
    vessel = uuid.uuid4()
    grant_role(company_id, "DPA", external_id="dpa-1")
    grant_role(company_id, "CAPTAIN", external_id="captain-1", vessel_id=vessel)
    grant_role(company_id, "CAPTAIN", external_id="captain-2", vessel_id=uuid.uuid4())
    grant_role(company_id, "FLEET_MASTER", external_id="master-1")
    grant_role(company_id, "OFFICER", external_id="officer-1", vessel_id=vessel)
    grant_role(company_id, "DPA", external_id="dpa-retired", active=False)
    grant_role(uuid.uuid4(), "DPA", external_id="dpa-elsewhere")
    return {"vessel_id": vessel}


def test_overdue_red_alert_is_escalated_and_notified_once(db_session, clock, company_id, fleet, scheduler, notifier):
    """Scenario C."""
    alert = _create(db_session, clock, company_id, vessel_id=fleet["vessel_id"])

    report = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=31), db=db_session)

    assert report.escalated == 1
    assert report.notified == 1
    stored = _reload(db_session, company_id, alert.id)
    assert stored.status == AlertStatus.ESCALATED
    assert stored.escalation_level == 1
    assert stored.escalated_to_user_ids == ["captain-1", "dpa-1", "master-1"]
    assert stored.notified_level == 1

    assert len(notifier.calls) == 1
    call = notifier.calls[0]
    assert call["recipients"] == ["captain-1", "dpa-1", "master-1"]
    assert call["template"] == "alert_escalated"
    assert call["variables"]["severity"] == "RED"
    assert call["variables"]["escalation_level"] == 1
    assert call["variables"]["notify_methods"] == ["in_app", "email", "sms"]


def test_timeout_must_be_exceeded(db_session, clock, company_id, fleet, scheduler):
    alert = _create(db_session, clock, company_id)

    report = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=30), db=db_session)

    assert report.escalated == 0
    assert _reload(db_session, company_id, alert.id).status == AlertStatus.OPEN


def test_repeated_ticks_do_not_re_escalate_or_re_notify(db_session, clock, company_id, fleet, scheduler, notifier):
    alert = _create(db_session, clock, company_id)

    scheduler.run_tick(now=clock.now + dt.timedelta(minutes=31), db=db_session)
    second = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=45), db=db_session)
    third = scheduler.run_tick(now=clock.now + dt.timedelta(hours=5), db=db_session)

    assert (second.escalated, second.notified) == (0, 0)
    assert (third.escalated, third.notified) == (0, 0)
    assert _reload(db_session, company_id, alert.id).escalation_level == 1
    assert len(notifier.calls) == 1


def test_snooze_expiry_reopens_without_escalating(db_session, clock, company_id, fleet, scheduler):
    """Scenario E: the tier timeout has not elapsed since creation."""
    alert = _create(db_session, clock, company_id, severity=Severity.ORANGE)
    actor = Actor(actor_id="officer-1", roles=(Role.OFFICER,), company_ids=(company_id,))
    LifecycleEngine(db_session, clock=clock).snooze(company_id, alert.id, actor, hours=2)

    expiry_tick = clock.now + dt.timedelta(hours=2, minutes=1)
    report = scheduler.run_tick(now=expiry_tick, db=db_session)

    assert report.expired == 1
    assert report.escalated == 0
    stored = _reload(db_session, company_id, alert.id)
    assert stored.status == AlertStatus.OPEN
    assert stored.snoozed_until is None
    assert as_utc(stored.reopened_at) == expiry_tick

    # Reopening does not restart the window; it still runs from creation.
    later = scheduler.run_tick(now=clock.now + dt.timedelta(hours=24, minutes=1), db=db_session)
    assert later.escalated == 1


def test_snooze_expiry_escalates_in_same_tick_when_timeout_elapsed(db_session, clock, company_id, fleet, scheduler, notifier):
    """Scenario E: the OPEN-state timeout elapsed independently while snoozed."""
    alert = _create(db_session, clock, company_id)
    actor = Actor(actor_id="officer-1", roles=(Role.OFFICER,), company_ids=(company_id,))
    clock.advance(minutes=1)
    LifecycleEngine(db_session, clock=clock).snooze(company_id, alert.id, actor, hours=2, reason="awaiting surveyor")

    expiry_tick = clock.now + dt.timedelta(hours=2, minutes=1)
    report = scheduler.run_tick(now=expiry_tick, db=db_session)

    assert (report.expired, report.escalated, report.notified) == (1, 1, 1)
    stored = _reload(db_session, company_id, alert.id)
    assert stored.status == AlertStatus.ESCALATED
    assert stored.escalation_level == 1
    assert as_utc(stored.reopened_at) == expiry_tick
    assert len(notifier.calls) == 1


def test_active_snooze_is_left_alone(db_session, clock, company_id, fleet, scheduler):
    alert = _create(db_session, clock, company_id)
    actor = Actor(actor_id="officer-1", roles=(Role.OFFICER,), company_ids=(company_id,))
    LifecycleEngine(db_session, clock=clock).snooze(company_id, alert.id, actor, hours=4, reason="in port")

    report = scheduler.run_tick(now=clock.now + dt.timedelta(hours=1), db=db_session)

    assert (report.expired, report.escalated) == (0, 0)
    assert _reload(db_session, company_id, alert.id).status == AlertStatus.SNOOZED


def test_acknowledged_orange_still_escalates_to_dpa(db_session, clock, company_id, fleet, scheduler, notifier):
    alert = _create(db_session, clock, company_id, severity=Severity.ORANGE)
    actor = Actor(actor_id="officer-1", roles=(Role.OFFICER,), company_ids=(company_id,))
    LifecycleEngine(db_session, clock=clock).acknowledge(company_id, alert.id, actor)

    assert scheduler.run_tick(now=clock.now + dt.timedelta(hours=23), db=db_session).escalated == 0
    report = scheduler.run_tick(now=clock.now + dt.timedelta(hours=24, minutes=1), db=db_session)

    assert report.escalated == 1
    assert notifier.calls[0]["recipients"] == ["dpa-1"]


def test_yellow_never_escalates(db_session, clock, company_id, fleet, scheduler):
    _create(db_session, clock, company_id, severity=Severity.YELLOW)

    report = scheduler.run_tick(now=clock.now + dt.timedelta(days=30), db=db_session)

    assert report.escalated == 0


def test_failed_notification_is_retried_next_tick(db_session, clock, company_id, fleet, notifier):
    notifier.fail_times = 1
    scheduler = EscalationScheduler(notifier=notifier, clock=clock)
    alert = _create(db_session, clock, company_id)

    first = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=31), db=db_session)
    assert first.escalated == 1
    assert first.notified == 0
    assert first.notify_failures == 1
    stored = _reload(db_session, company_id, alert.id)
    assert stored.status == AlertStatus.ESCALATED
    assert stored.notified_level == 0

    second = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=32), db=db_session)
    assert second.escalated == 0
    assert second.notified == 1
    assert len(notifier.calls) == 1

    third = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=33), db=db_session)
    assert third.notified == 0
    assert len(notifier.calls) == 1


def test_escalation_without_targets_still_escalates(db_session, clock, company_id, scheduler, notifier):
    alert = _create(db_session, clock, company_id)

    report = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=31), db=db_session)

    assert report.escalated == 1
    assert report.notified == 0
    stored = _reload(db_session, company_id, alert.id)
    assert stored.status == AlertStatus.ESCALATED
    assert stored.escalated_to_user_ids == []
    assert notifier.calls == []


def test_overlapping_tick_is_skipped(db_session, clock, company_id, fleet):
    inner_reports: list[TickReport] = []

    class _ReentrantNotifier:
        def notify(self, recipient_user_ids, template_name, variables):
            inner_reports.append(scheduler.run_tick(db=db_session))

    scheduler = EscalationScheduler(notifier=_ReentrantNotifier(), clock=clock)
    _create(db_session, clock, company_id)

    outer = scheduler.run_tick(now=clock.now + dt.timedelta(minutes=31), db=db_session)

    assert outer.skipped is False
    assert outer.notified == 1
    assert [r.skipped for r in inner_reports] == [True]

    # The lock is released once the tick finishes.
    assert scheduler.run_tick(db=db_session).skipped is False


def test_green_alerts_auto_dismiss_after_72_hours(db_session, clock, company_id, scheduler):
    alert = _create(db_session, clock, company_id, severity=Severity.GREEN)

    assert scheduler.run_tick(now=clock.now + dt.timedelta(hours=72), db=db_session).dismissed == 0
    report = scheduler.run_tick(now=clock.now + dt.timedelta(hours=72, minutes=1), db=db_session)

    assert report.dismissed == 1
    stored = _reload(db_session, company_id, alert.id)
    assert stored.status == AlertStatus.AUTO_DISMISSED
    assert stored.resolved_by == "system"
    assert AlertRepository(db_session).counts(company_id).total == 0


def test_scheduler_writes_system_audit_events(db_session, clock, company_id, fleet, scheduler):
    alert = _create(db_session, clock, company_id)

    scheduler.run_tick(now=clock.now + dt.timedelta(minutes=31), db=db_session)

    events = get_audit_log(db_session, company_id=company_id, entity_id=alert.id)
    assert [e.action for e in events] == ["alert.created", "alert.escalated", "alert.escalation_notified"]
    assert {e.actor_id for e in events[1:]} == {"system"}
    assert {e.request_id for e in events[1:]} == {"workflow"}


def test_escalation_loop_keeps_ticking_after_a_failure():
    class _FlakyScheduler:
        def __init__(self) -> None:
            self.ticks = 0

        def run_tick(self) -> TickReport:
            self.ticks += 1
            if self.ticks == 1:
                raise RuntimeError("database unavailable")
            return TickReport()

    flaky = _FlakyScheduler()

    async def _exercise() -> None:
        loop = EscalationLoop(flaky, interval_seconds=0.01)
        loop.start()
        assert loop.running
        for _ in range(200):
            if flaky.ticks >= 3:
                break
            await asyncio.sleep(0.01)
        await loop.stop()
        assert not loop.running

    asyncio.run(_exercise())

    assert flaky.ticks >= 3
