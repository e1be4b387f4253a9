"""Per-tier snooze/escalation rules.

The table is fixed at deploy time. Nothing in this module touches the database.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from types import MappingProxyType

from redroom.domain.alerts.enums import NotifyMethod, Severity
from redroom.shared.enums import Role


@dataclass(frozen=True)
class SnoozePolicy:
    allowed: bool
    max_snoozes: int
    max_duration_hours: int
    requires_reason: bool


@dataclass(frozen=True)
class EscalationPolicy:
    timeout: timedelta
    targets: frozenset[Role]
    notify_methods: tuple[NotifyMethod, ...]


@dataclass(frozen=True)
class SeverityPolicy:
    severity: Severity
    snooze: SnoozePolicy
    escalation: EscalationPolicy | None = None
    auto_dismiss_after: timedelta | None = None

    @property
    def snooze_allowed(self) -> bool:
        return self.snooze.allowed

    @property
    def max_snoozes(self) -> int:
        return self.snooze.max_snoozes

    @property
    def max_duration_hours(self) -> int:
        return self.snooze.max_duration_hours

    @property
    def requires_reason(self) -> bool:
        return self.snooze.requires_reason

    @property
    def escalation_timeout(self) -> timedelta | None:
        return self.escalation.timeout if self.escalation else None

    @property
    def escalation_targets(self) -> frozenset[Role]:
        return self.escalation.targets if self.escalation else frozenset()

    def remaining_snoozes(self, snooze_count: int) -> int:
        return max(self.max_snoozes - snooze_count, 0)


POLICY_TABLE: MappingProxyType[Severity, SeverityPolicy] = MappingProxyType(
    {
        Severity.RED: SeverityPolicy(
            severity=Severity.RED,
            snooze=SnoozePolicy(allowed=True, max_snoozes=2, max_duration_hours=4, requires_reason=True),
            escalation=EscalationPolicy(
                timeout=timedelta(minutes=30),
                targets=frozenset({Role.DPA, Role.CAPTAIN, Role.FLEET_MASTER}),
                notify_methods=(NotifyMethod.IN_APP, NotifyMethod.EMAIL, NotifyMethod.SMS),
            ),
        ),
        Severity.ORANGE: SeverityPolicy(
            severity=Severity.ORANGE,
            snooze=SnoozePolicy(allowed=True, max_snoozes=3, max_duration_hours=48, requires_reason=False),
            escalation=EscalationPolicy(
                timeout=timedelta(hours=24),
                targets=frozenset({Role.DPA}),
                notify_methods=(NotifyMethod.IN_APP, NotifyMethod.EMAIL),
            ),
        ),
        Severity.YELLOW: SeverityPolicy(
            severity=Severity.YELLOW,
            snooze=SnoozePolicy(allowed=True, max_snoozes=5, max_duration_hours=168, requires_reason=False),
        ),
        Severity.GREEN: SeverityPolicy(
            severity=Severity.GREEN,
            snooze=SnoozePolicy(allowed=False, max_snoozes=0, max_duration_hours=0, requires_reason=False),
            auto_dismiss_after=timedelta(hours=72),
        ),
    }
)


def policy_for(severity: Severity | str) -> SeverityPolicy:
    try:
        key = Severity(severity)
    except ValueError:
        raise ValueError(f"Unknown severity: {severity!r}. Allowed: {[s.value for s in Severity]}") from None
    return POLICY_TABLE[key]


def escalating_severities() -> list[Severity]:
    return [s for s, p in POLICY_TABLE.items() if p.escalation is not None]
