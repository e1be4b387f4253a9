from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    RED = "RED"
    ORANGE = "ORANGE"
    YELLOW = "YELLOW"
    GREEN = "GREEN"

    @property
    def rank(self) -> int:
        """0 is the most urgent tier."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.RED: 0,
    Severity.ORANGE: 1,
    Severity.YELLOW: 2,
    Severity.GREEN: 3,
}


class AlertStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    SNOOZED = "SNOOZED"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    AUTO_DISMISSED = "AUTO_DISMISSED"


LIVE_STATUSES: frozenset[AlertStatus] = frozenset(
    {AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED, AlertStatus.SNOOZED, AlertStatus.ESCALATED}
)
TERMINAL_STATUSES: frozenset[AlertStatus] = frozenset({AlertStatus.RESOLVED, AlertStatus.AUTO_DISMISSED})


class SourceType(str, Enum):
    SYSTEM = "system"
    URGENT = "urgent"
    ASSIGNED = "assigned"


class AssignmentPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"


class NotifyMethod(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
