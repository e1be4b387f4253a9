from __future__ import annotations

import json
import uuid

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from redroom.core.db.models import Company


def dev_actor_header(actor_id: str, roles: list[str], company_ids: list[uuid.UUID | str]) -> dict[str, str]:
    return {"X-DEV-ACTOR": json.dumps({"actor_id": actor_id, "roles": roles, "company_ids": [str(x) for x in company_ids]})}


def _create(client: TestClient, company_id: uuid.UUID, **overrides) -> dict:
    payload = {
        "alert_type": "certificate_expiry",
        "severity": "RED",
        "title": "Safety Management Certificate expiring",
        "source_module": "certificates",
        "related_entity_type": "certificate",
        "related_entity_id": "SMC-2291",
        "metadata": {"certificate_no": "SMC-2291"},
    }
    payload.update(overrides)
    r = client.post(
        f"/companies/{company_id}/alerts",
        json=payload,
        headers=dev_actor_header("officer-1", ["OFFICER"], [company_id]),
    )
    assert r.status_code == 201, r.text
    return r.json()


def test_create_and_list_alerts(client: TestClient, company_id):
    created = _create(client, company_id)

    assert created["status"] == "OPEN"
    assert created["source_type"] == "system"
    assert created["metadata"] == {"certificate_no": "SMC-2291"}
    assert created["version"] == 1

    r = client.get(f"/companies/{company_id}/alerts", headers=dev_actor_header("auditor-1", ["AUDITOR"], [company_id]))
    assert r.status_code == 200
    assert [a["id"] for a in r.json()] == [created["id"]]

    r = client.get(
        f"/companies/{company_id}/alerts",
        params={"status": "RESOLVED"},
        headers=dev_actor_header("auditor-1", ["AUDITOR"], [company_id]),
    )
    assert r.json() == []


def test_auditor_cannot_create(client: TestClient, company_id):
    r = client.post(
        f"/companies/{company_id}/alerts",
        json={"alert_type": "x", "severity": "RED", "title": "t"},
        headers=dev_actor_header("auditor-1", ["AUDITOR"], [company_id]),
    )
    assert r.status_code == 403


def test_missing_actor_is_unauthorized(client: TestClient, company_id):
    r = client.get(f"/companies/{company_id}/alerts")
    assert r.status_code == 401


def test_company_scoping(client: TestClient, db_session: Session, company_id):
    other_id = uuid.uuid4()
    db_session.add(Company(id=other_id, name="Other Shipping"))
    db_session.commit()
    created = _create(client, company_id)
    outsider = dev_actor_header("dpa-x", ["DPA"], [other_id])

    r = client.get(f"/companies/{company_id}/alerts", headers=outsider)
    assert r.status_code == 403
    assert r.json()["detail"] == "Forbidden for this company"

    # An id from another company looks exactly like an unknown id.
    r = client.post(f"/companies/{other_id}/alerts/{created['id']}/resolve", headers=outsider)
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_snooze_endpoint_reports_remaining_budget(client: TestClient, company_id):
    created = _create(client, company_id)
    headers = dev_actor_header("officer-1", ["OFFICER"], [company_id])
    url = f"/companies/{company_id}/alerts/{created['id']}/snooze"

    r = client.post(url, json={"hours": 4, "reason": "surveyor booked"}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["remaining_snoozes"] == 1
    assert body["alert"]["status"] == "SNOOZED"
    assert body["alert"]["last_snooze_reason"] == "surveyor booked"

    r = client.post(url, json={"hours": 4.01, "reason": "surveyor booked"}, headers=headers)
    assert r.status_code == 422
    assert r.json() == {"detail": "Maximum snooze duration is 4 hours", "code": "policy_violation"}

    r = client.post(url, json={"hours": 2}, headers=headers)
    assert r.status_code == 422
    assert r.json()["detail"] == "A reason is required to snooze this alert"


def test_resolved_alert_rejects_further_actions(client: TestClient, company_id):
    created = _create(client, company_id, severity="ORANGE")
    headers = dev_actor_header("officer-1", ["OFFICER"], [company_id])
    base = f"/companies/{company_id}/alerts/{created['id']}"

    r = client.post(f"{base}/resolve", json={"notes": "renewed"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "RESOLVED"
    assert r.json()["metadata"]["resolution_notes"] == "renewed"

    r = client.post(f"{base}/acknowledge", headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == "already_resolved"


def test_urgent_red_acknowledge_is_rejected(client: TestClient, company_id):
    created = _create(client, company_id, source_type="urgent")

    r = client.post(
        f"/companies/{company_id}/alerts/{created['id']}/acknowledge",
        headers=dev_actor_header("officer-1", ["OFFICER"], [company_id]),
    )
    assert r.status_code == 422
    assert r.json()["code"] == "policy_violation"


def test_assign_endpoint(client: TestClient, company_id):
    created = _create(client, company_id, severity="ORANGE")
    url = f"/companies/{company_id}/alerts/{created['id']}/assign"

    r = client.post(url, json={"to_user_id": "crew-7"}, headers=dev_actor_header("officer-1", ["OFFICER"], [company_id]))
    assert r.status_code == 403
    assert r.json()["code"] == "unauthorized"

    r = client.post(
        url,
        json={"to_user_id": "crew-7", "notes": "Chase the class society", "priority": "high"},
        headers=dev_actor_header("captain-1", ["CAPTAIN"], [company_id]),
    )
    assert r.status_code == 201
    task = r.json()
    assert task["source_type"] == "assigned"
    assert task["parent_alert_id"] == created["id"]
    assert task["owner_user_id"] == "captain-1"
    assert task["assignment_priority"] == "high"


def test_escalate_override_endpoint(client: TestClient, company_id):
    created = _create(client, company_id)
    url = f"/companies/{company_id}/alerts/{created['id']}/escalate"

    r = client.post(url, headers=dev_actor_header("officer-1", ["OFFICER"], [company_id]))
    assert r.status_code == 403

    r = client.post(url, headers=dev_actor_header("dpa-1", ["DPA"], [company_id]))
    assert r.status_code == 200
    assert r.json()["status"] == "ESCALATED"
    assert r.json()["escalation_level"] == 1


def test_counts_and_red_room(client: TestClient, company_id):
    _create(client, company_id)
    _create(client, company_id, severity="YELLOW", related_entity_type=None, related_entity_id=None, source_module="drills")
    headers = dev_actor_header("officer-1", ["OFFICER"], [company_id])

    r = client.get(f"/companies/{company_id}/alerts/counts", headers=headers)
    assert r.status_code == 200
    assert r.json()["total"] == 2
    assert r.json()["by_severity"]["RED"] == 1

    r = client.get(f"/companies/{company_id}/red-room", headers=headers)
    assert r.status_code == 200
    items = r.json()["items"]
    assert [i["severity"] for i in items] == ["RED", "YELLOW"]
    assert items[0]["view_url"] == "/certificates?id=SMC-2291"
    assert items[0]["remaining_snoozes"] == 2
    assert items[1]["view_url"] == "/ism/drills"
    assert r.json()["counts"]["total"] == 2


def test_red_room_permissions(client: TestClient, company_id):
    r = client.get(
        f"/companies/{company_id}/red-room/permissions",
        headers=dev_actor_header("captain-1", ["CAPTAIN"], [company_id]),
    )
    assert r.json() == {"can_assign": True, "can_escalate": True}

    r = client.get(
        f"/companies/{company_id}/red-room/permissions",
        headers=dev_actor_header("officer-1", ["OFFICER"], [company_id]),
    )
    assert r.json() == {"can_assign": False, "can_escalate": False}


def test_alert_audit_trail(client: TestClient, company_id):
    created = _create(client, company_id, severity="ORANGE")
    headers = dev_actor_header("officer-1", ["OFFICER"], [company_id])
    client.post(f"/companies/{company_id}/alerts/{created['id']}/acknowledge", headers=headers)

    r = client.get(f"/companies/{company_id}/alerts/{created['id']}/audit", headers=headers)
    assert r.status_code == 200
    assert [e["action"] for e in r.json()] == ["alert.created", "alert.acknowledged"]
    assert r.json()[1]["actor_id"] == "officer-1"


def test_audit_trail_filters_by_action_and_carries_request_id(client: TestClient, company_id):
    created = _create(client, company_id, severity="ORANGE")
    headers = dev_actor_header("officer-1", ["OFFICER"], [company_id])
    client.post(
        f"/companies/{company_id}/alerts/{created['id']}/snooze",
        json={"hours": 2},
        headers={**headers, "X-Request-ID": "bridge-console-7"},
    )
    client.post(f"/companies/{company_id}/alerts/{created['id']}/acknowledge", headers=headers)

    r = client.get(
        f"/companies/{company_id}/alerts/{created['id']}/audit",
        params={"action": "alert.snoozed"},
        headers=headers,
    )
    assert r.status_code == 200
    events = r.json()
    assert [e["action"] for e in events] == ["alert.snoozed"]
    assert events[0]["request_id"] == "bridge-console-7"
    assert events[0]["after"]["status"] == "SNOOZED"


def test_api_alias(client: TestClient, company_id):
    created = _create(client, company_id)

    r = client.get(
        f"/api/companies/{company_id}/alerts/{created['id']}",
        headers=dev_actor_header("officer-1", ["OFFICER"], [company_id]),
    )
    assert r.status_code == 200
    assert r.json()["id"] == created["id"]


def test_admin_can_trigger_a_tick(client: TestClient, company_id):
    r = client.post("/admin/escalation/tick", headers=dev_actor_header("ops", ["ADMIN"], ["*"]))
    assert r.status_code == 200
    assert r.json()["skipped"] is False

    r = client.post("/admin/escalation/tick", headers=dev_actor_header("dpa-1", ["DPA"], [company_id]))
    assert r.status_code == 403


def test_company_scoped_captain_cannot_assign_in_another_company(client: TestClient, company_id):
    created = _create(client, company_id)
    other_company = uuid.uuid4()
    header = {
        "X-DEV-ACTOR": json.dumps(
            {
                "actor_id": "capt-1",
                "roles": ["OFFICER"],
                "company_ids": [str(company_id)],
                "company_roles": {str(other_company): ["CAPTAIN"]},
            }
        )
    }

    r = client.post(
        f"/companies/{company_id}/alerts/{created['id']}/assign",
        json={"to_user_id": "crew-7"},
        headers=header,
    )
    assert r.status_code == 403
    assert r.json()["code"] == "unauthorized"

    r = client.get(f"/companies/{company_id}/red-room/permissions", headers=header)
    assert r.json() == {"can_assign": False, "can_escalate": False}
    r = client.get(f"/companies/{other_company}/red-room/permissions", headers=header)
    assert r.json() == {"can_assign": True, "can_escalate": True}
