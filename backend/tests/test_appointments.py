from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from backend.appointments import t1_errors


def _create_sad(client: TestClient, sad_no: str) -> None:
    response = client.post("/api/sads", json={"sad_no": sad_no, "regime": "IM4", "declared_weight": 20000})
    assert response.status_code == 201, response.text


def _booking(**overrides) -> dict:
    payload = {
        "agent_tin": "TIN-1001",
        "agent_name": "Gambia Freight Ltd",
        "warehouse_location": "WTGMBJLCON",
        "pickup_date": "2030-05-14",
        "consolidated": "N",
        "truck_number": "BJL 4455C",
        "driver_name": "Musa Camara",
        "driver_license_no": "DL-77",
        "regime": "im4",
        "t1s": [{"sad_no": "7100", "packing_type": "Container", "container_no": "MSCU7654321"}],
    }
    payload.update(overrides)
    return payload


def _book(client: TestClient, headers=None, **overrides) -> dict:
    response = client.post("/api/appointments", json=_booking(**overrides), headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()


def test_booking_allocates_numbers_and_logs(api_client: TestClient, make_user) -> None:
    agent = make_user("agent")
    _create_sad(api_client, "7100")

    first = _book(api_client, headers=agent)
    assert first["appointment_number"] == "3005140001"
    assert first["weighbridge_number"] == "WB300500001"
    assert first["status"] == "Posted"
    assert first["regime"] == "IM4"
    assert first["total_t1s"] == 1
    assert first["t1_records"][0]["packing_type"] == "container"
    assert first["created_by"] == int(agent["X-User-Id"])
    assert first["alerts"] == []

    second = _book(api_client)
    assert (second["appointment_number"], second["weighbridge_number"]) == ("3005140002", "WB300500002")

    later = _book(api_client, pickup_date="2030-05-20")
    assert (later["appointment_number"], later["weighbridge_number"]) == ("3005200001", "WB300500003")

    detail = api_client.get(f"/api/appointments/{first['id']}").json()
    assert detail["appointment"]["id"] == first["id"]
    [created] = detail["logs"]
    assert created["action"] == "create"
    assert created["changed_by"] == int(agent["X-User-Id"])
    assert created["after"]["appointment_number"] == "3005140001"

    assert api_client.get("/api/appointments/999").status_code == 404


@pytest.mark.parametrize(
    "overrides",
    [
        {"t1s": []},
        {
            "t1s": [
                {"sad_no": "7100", "packing_type": "bulk"},
                {"sad_no": "7100", "packing_type": "loose cargo"},
            ]
        },
        {"t1s": [{"sad_no": "7100", "packing_type": "container"}]},
        {
            "consolidated": "Y",
            "t1s": [
                {"sad_no": "7100", "packing_type": "bulk"},
                {"sad_no": "7100", "packing_type": "Bulk"},
            ],
        },
        {"t1s": [{"sad_no": "7100", "packing_type": "barrels"}]},
        {"driver_license_no": "  "},
        {"consolidated": "maybe"},
        {"t1s": [{"sad_no": "0000", "packing_type": "bulk"}]},
    ],
)
def test_invalid_bookings_are_rejected(api_client: TestClient, overrides) -> None:
    _create_sad(api_client, "7100")
    response = api_client.post("/api/appointments", json=_booking(**overrides))
    assert response.status_code == 422, response.text
    assert api_client.get("/api/appointments").json()["total"] == 0


def test_completed_sad_cannot_be_booked(api_client: TestClient) -> None:
    _create_sad(api_client, "7100")
    api_client.patch("/api/sads/7100/status", json={"status": "Completed"})

    response = api_client.post("/api/appointments", json=_booking())
    assert response.status_code == 409
    assert "7100" in response.json()["detail"]


def test_consolidated_booking_carries_several_t1s(api_client: TestClient) -> None:
    _create_sad(api_client, "7100")
    _create_sad(api_client, "7200")
    booked = _book(
        api_client,
        consolidated="y",
        t1s=[
            {"sad_no": "7100", "packing_type": "container", "container_no": "MSCU1"},
            {"sad_no": "7200", "packing_type": "loose_cargo"},
        ],
    )
    assert booked["consolidated"] == "Y"
    assert booked["total_t1s"] == 2
    assert [t1["sad_no"] for t1 in booked["t1_records"]] == ["7100", "7200"]
    assert booked["t1_records"][1]["container_no"] is None


def test_status_change_needs_an_admin(api_client: TestClient, make_user) -> None:
    _create_sad(api_client, "7100")
    booked = _book(api_client)
    url = f"/api/appointments/{booked['id']}/status"

    assert api_client.patch(url, json={"status": "Completed"}).status_code == 401
    assert api_client.patch(url, json={"status": "Completed"}, headers=make_user("outgate")).status_code == 403

    admin = make_user("admin")
    assert api_client.patch(url, json={"status": "Lost"}, headers=admin).status_code == 422
    updated = api_client.patch(url, json={"status": "completed"}, headers=admin)
    assert updated.status_code == 200, updated.text
    assert updated.json()["status"] == "Completed"

    logs = api_client.get(f"/api/appointments/{booked['id']}").json()["logs"]
    assert logs[0]["action"] == "status_change"
    assert logs[0]["before"] == {"status": "Posted"}
    assert logs[0]["after"] == {"status": "Completed"}
    assert logs[0]["changed_by"] == int(admin["X-User-Id"])


def test_comment_clone_and_delete(api_client: TestClient, make_user) -> None:
    _create_sad(api_client, "7100")
    booked = _book(api_client)
    base = f"/api/appointments/{booked['id']}"

    assert api_client.post(f"{base}/comments", json={"message": "Gate 2"}).status_code == 401
    weighbridge = make_user("weighbridge")
    comment = api_client.post(f"{base}/comments", json={"message": " Gate 2 "}, headers=weighbridge)
    assert comment.status_code == 201
    assert comment.json()["message"] == "Gate 2"

    clone = api_client.post(f"{base}/clone")
    assert clone.status_code == 201, clone.text
    copy = clone.json()
    assert copy["status"] == "Posted"
    assert copy["appointment_number"] == "3005140002"
    assert copy["truck_number"] == booked["truck_number"]
    assert [t1["container_no"] for t1 in copy["t1_records"]] == ["MSCU7654321"]
    clone_log = api_client.get(f"/api/appointments/{copy['id']}").json()["logs"][0]
    assert clone_log["action"] == "clone"
    assert clone_log["message"] == f"Cloned from {booked['appointment_number']}"

    assert api_client.delete(base, headers=weighbridge).status_code == 403
    assert api_client.delete(base, headers=make_user("admin")).status_code == 204
    assert api_client.get(base).status_code == 404
    assert api_client.get("/api/appointments").json()["total"] == 1


def test_completing_a_sad_closes_its_appointments(api_client: TestClient, make_user) -> None:
    _create_sad(api_client, "7100")
    _create_sad(api_client, "7200")
    carrying = _book(api_client)
    other = _book(api_client, t1s=[{"sad_no": "7200", "packing_type": "bulk"}])

    customs = make_user("customs")
    assert api_client.patch("/api/sads/7100/status", json={"status": "Completed"}, headers=customs).status_code == 200

    closed = api_client.get(f"/api/appointments/{carrying['id']}").json()
    assert closed["appointment"]["status"] == "Completed"
    assert closed["logs"][0]["action"] == "sad_auto_close"
    assert closed["logs"][0]["changed_by"] == int(customs["X-User-Id"])
    assert api_client.get(f"/api/appointments/{other['id']}").json()["appointment"]["status"] == "Posted"


def test_rename_follows_t1_records(api_client: TestClient) -> None:
    _create_sad(api_client, "7100")
    booked = _book(api_client)
    assert api_client.post("/api/sads/7100/rename", json={"new_sad_no": "7101"}).status_code == 200

    listed = api_client.get("/api/appointments", params={"sad_no": "7101"}).json()
    assert [item["id"] for item in listed["items"]] == [booked["id"]]


def test_list_filters_overdue_and_stats(api_client: TestClient) -> None:
    _create_sad(api_client, "7100")
    _create_sad(api_client, "7200")
    upcoming = _book(api_client)
    overdue = _book(
        api_client,
        pickup_date="2020-01-02",
        truck_number="GAM 9",
        driver_name="Fatou Ceesay",
        t1s=[{"sad_no": "7200", "packing_type": "bulk"}],
    )
    assert overdue["alerts"] == ["pickup_overdue"]

    page = api_client.get("/api/appointments").json()
    assert page["total"] == 2
    assert [item["id"] for item in page["items"]] == [overdue["id"], upcoming["id"]]

    by_driver = api_client.get("/api/appointments", params={"q": "fatou"}).json()
    assert [item["id"] for item in by_driver["items"]] == [overdue["id"]]
    by_number = api_client.get("/api/appointments", params={"q": upcoming["weighbridge_number"]}).json()
    assert [item["id"] for item in by_number["items"]] == [upcoming["id"]]
    by_date = api_client.get("/api/appointments", params={"pickup_date": "2030-05-14"}).json()
    assert [item["id"] for item in by_date["items"]] == [upcoming["id"]]
    by_sad = api_client.get("/api/appointments", params={"sad_no": "7200"}).json()
    assert [item["id"] for item in by_sad["items"]] == [overdue["id"]]
    assert api_client.get("/api/appointments", params={"status": "posted"}).json()["total"] == 2
    assert api_client.get("/api/appointments", params={"status": "gone"}).status_code == 422

    stats = api_client.get("/api/appointments/stats").json()
    assert stats == {"total": 2, "posted": 2, "completed": 0, "overdue": 1, "unique_sads": 2}


def _t1(sad_no: str, packing_type: str, container_no=None) -> SimpleNamespace:
    return SimpleNamespace(sad_no=sad_no, packing_type=packing_type, container_no=container_no)


def test_t1_rules() -> None:
    assert t1_errors("N", [_t1("1", "container", "MSCU1")]) == []
    assert t1_errors("N", []) == ["At least one T1 record is required"]
    assert t1_errors("N", [_t1("1", "bulk"), _t1("2", "bulk")])[0] == "Consolidated = N allows only one T1 record"
    assert t1_errors("Y", [_t1("1", "bulk"), _t1("2", "bulk")]) == ['Packing type "bulk" already added']
    assert t1_errors("Y", [_t1("1", "container")]) == ["Container No required for container packing (SAD 1)"]
