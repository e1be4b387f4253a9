from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from datetime import datetime, timezone

# Ensure `backend/` is importable when running as a script.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from redroom.core.logging import configure_logging  # noqa: E402
from redroom.domain.alerts.services.escalation import EscalationScheduler  # noqa: E402
from redroom.services.notifier import get_notifier  # noqa: E402


def _parse_now(raw: str | None) -> datetime | None:
    if not raw:
        return None
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run one escalation pass: expire snoozes, escalate overdue alerts, notify, auto-dismiss."
    )
    parser.add_argument(
        "--now",
        default=None,
        help="Evaluate as of this ISO-8601 timestamp instead of the current time (naive values are UTC).",
    )
    args = parser.parse_args(argv)

    configure_logging()
    scheduler = EscalationScheduler(notifier=get_notifier())
    report = scheduler.run_tick(now=_parse_now(args.now))

    print(json.dumps(asdict(report), sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
