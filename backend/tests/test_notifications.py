from __future__ import annotations

from importlib import import_module

from fastapi.testclient import TestClient


def _messages(client: TestClient, headers, **params) -> list:
    response = client.get("/api/notifications", headers=headers, params=params)
    assert response.status_code == 200, response.text
    return response.json()


def test_alerts_follow_ticket_status(api_client: TestClient, make_user, make_ticket) -> None:
    admin = make_user("admin")
    outgate = make_user("outgate")
    weighbridge = make_user("weighbridge")
    customs = make_user("customs")

    ticket = make_ticket()
    pending_text = "New Pending Ticket: BJL 1234A (M-0001)"
    assert [row["message"] for row in _messages(api_client, admin)] == [pending_text]
    assert [row["message"] for row in _messages(api_client, outgate)] == [pending_text]
    assert _messages(api_client, weighbridge) == []

    api_client.post("/api/outgate/confirm", json={"ticket_id": ticket["id"]})
    exited_text = "Vehicle Exited: BJL 1234A (M-0001)"
    assert [row["message"] for row in _messages(api_client, admin)] == [exited_text, pending_text]
    assert [row["message"] for row in _messages(api_client, weighbridge)] == [exited_text]
    assert [row["message"] for row in _messages(api_client, outgate)] == [pending_text]
    assert _messages(api_client, customs) == []


def test_flagged_ticket_is_critical(api_client: TestClient, make_user, make_ticket) -> None:
    admin = make_user("admin")
    make_ticket(flagged=True)
    row = _messages(api_client, admin)[0]
    assert row["level"] == "critical"
    assert row["flagged"] is True


def test_read_dismiss_and_clear(api_client: TestClient, make_user, make_ticket) -> None:
    admin = make_user("admin")
    other_admin = make_user("admin")
    weighbridge = make_user("weighbridge")
    make_ticket()
    make_ticket(truck_no="BJL 2")

    first, second = _messages(api_client, admin)
    read = api_client.post(f"/api/notifications/{first['id']}/read", headers=admin).json()
    assert read == {"id": first["id"], "is_read": True, "dismissed": False}

    dismissed = api_client.post(f"/api/notifications/{second['id']}/dismiss", headers=admin).json()
    assert dismissed["dismissed"] is True
    assert [row["id"] for row in _messages(api_client, admin)] == [first["id"]]
    assert len(_messages(api_client, admin, include_dismissed="true")) == 2

    # state is per user
    assert all(not row["is_read"] for row in _messages(api_client, other_admin))

    # weighbridge users cannot touch admin alerts
    assert api_client.post(f"/api/notifications/{first['id']}/read", headers=weighbridge).status_code == 404

    cleared = api_client.post("/api/notifications/clear", headers=other_admin).json()
    assert cleared == {"cleared": 2}
    assert _messages(api_client, other_admin) == []


def test_notifications_need_a_user(api_client: TestClient) -> None:
    assert api_client.get("/api/notifications").status_code == 401
    assert api_client.get("/api/notifications", headers={"X-User-Id": "999"}).status_code == 401


def test_unchanged_status_produces_no_alert(api_client: TestClient, make_user, make_ticket) -> None:
    admin = make_user("admin")
    ticket = make_ticket()
    api_client.patch(f"/api/tickets/{ticket['id']}", json={"driver": "Someone Else"})
    api_client.patch(f"/api/tickets/{ticket['id']}", json={"status": "Pending"})
    assert len(_messages(api_client, admin)) == 1


def test_ticket_alerts_by_role(api_client: TestClient) -> None:
    notifications = import_module("backend.notifications")

    pending = notifications.ticket_alerts("Pending", "BJL 9", "WB-9")
    assert {alert.role for alert in pending} == {"admin", "outgate"}
    assert pending[0].message == "New Pending Ticket: BJL 9 (WB-9)"

    exited = notifications.ticket_alerts("Exited", None, None, flagged=True, previous_status="Pending")
    assert {alert.role for alert in exited} == {"admin", "weighbridge"}
    assert exited[0].message == "Vehicle Exited: Unknown"
    assert exited[0].level == "warning"

    assert notifications.ticket_alerts("Exited", "X", "1", previous_status="Exited") == []
    assert notifications.ticket_alerts("Rejected", "X", "1") == []


def test_duplicate_alert_keeps_other_roles(api_client: TestClient, make_user, monkeypatch) -> None:
    database = import_module("backend.database")
    models = import_module("backend.models")
    notifications = import_module("backend.notifications")
    admin = make_user("admin")
    outgate = make_user("outgate")
    message = "New Pending Ticket: GAM 7 (WB-700)"

    session = database.SessionLocal()
    try:
        ticket = models.Ticket(ticket_no="WB-700", truck_no="GAM 7", status="Pending")
        session.add(ticket)
        session.commit()

        real_add = session.add

        def add_after_other_writer(row):
            # another request stores the admin alert between the check and the commit
            if isinstance(row, models.Notification) and row.role == "admin":
                other = database.SessionLocal()
                try:
                    other.add(models.Notification(ticket_id=row.ticket_id, role="admin", message=row.message))
                    other.commit()
                finally:
                    other.close()
            real_add(row)

        monkeypatch.setattr(session, "add", add_after_other_writer)
        assert notifications.notify_ticket_change(session, ticket) == 1
    finally:
        session.close()

    assert [row["message"] for row in _messages(api_client, admin)] == [message]
    assert [row["message"] for row in _messages(api_client, outgate)] == [message]
