from __future__ import annotations

import csv
import io

from fastapi.testclient import TestClient


def test_confirm_exit_copies_ticket(api_client: TestClient, make_ticket) -> None:
    ticket = make_ticket(truck_no="BJL 5050", sad_no="3300", gross=28000, net=16000, tare=None)

    pending = api_client.get("/api/outgate/pending").json()
    assert [item["id"] for item in pending["items"]] == [ticket["id"]]

    response = api_client.post("/api/outgate/confirm", json={"ticket_id": ticket["id"]})
    assert response.status_code == 201, response.text
    exit_row = response.json()
    assert exit_row["ticket_no"] == ticket["ticket_no"]
    assert exit_row["vehicle_number"] == "BJL 5050"
    assert exit_row["sad_no"] == "3300"
    assert exit_row["driver"] == "Lamin Jallow"
    assert exit_row["tare"] == 12000
    assert exit_row["net"] == 16000

    assert api_client.get(f"/api/tickets/{ticket['id']}").json()["status"] == "Exited"
    assert api_client.get("/api/outgate/pending").json()["total"] == 0
    assert api_client.get(f"/api/outgate/{exit_row['id']}").json()["id"] == exit_row["id"]


def test_driver_override_and_duplicate_exit(api_client: TestClient, make_ticket) -> None:
    ticket = make_ticket()
    first = api_client.post("/api/outgate/confirm", json={"ticket_id": ticket["id"], "driver": "Musa Ceesay"})
    assert first.json()["driver"] == "Musa Ceesay"

    second = api_client.post("/api/outgate/confirm", json={"ticket_id": ticket["id"]})
    assert second.status_code == 409
    assert api_client.get("/api/outgate").json()["total"] == 1


def test_confirm_unknown_ticket(api_client: TestClient) -> None:
    assert api_client.post("/api/outgate/confirm", json={"ticket_id": 999}).status_code == 404
    assert api_client.get("/api/outgate/999").status_code == 404


def test_confirmed_list_filters_and_export(api_client: TestClient, make_ticket) -> None:
    first = make_ticket(truck_no="AAA 100", sad_no="10")
    second = make_ticket(truck_no="BBB 200", sad_no="20")
    for ticket in (first, second):
        api_client.post("/api/outgate/confirm", json={"ticket_id": ticket["id"]})

    assert api_client.get("/api/outgate", params={"q": "bbb"}).json()["total"] == 1
    assert api_client.get("/api/outgate", params={"sad_no": "10"}).json()["total"] == 1

    export = api_client.get("/api/outgate/export.csv")
    assert export.status_code == 200
    rows = list(csv.reader(io.StringIO(export.text)))
    assert rows[0][-1] == "Exit Date"
    assert len(rows) == 3


def test_pending_export(api_client: TestClient, make_ticket) -> None:
    make_ticket(truck_no="CCC 300")
    export = api_client.get("/api/outgate/pending.csv")
    rows = list(csv.reader(io.StringIO(export.text)))
    assert rows[1][1] == "CCC 300"


def test_tickets_waiting_for_delete_are_not_pending_exit(api_client: TestClient, make_ticket) -> None:
    kept = make_ticket(truck_no="DDD 400")
    doomed = make_ticket(truck_no="EEE 500", ticket_no="WB-500")
    assert api_client.delete(f"/api/tickets/{doomed['id']}").status_code == 202

    pending = api_client.get("/api/outgate/pending").json()
    assert pending["total"] == 1
    assert [item["id"] for item in pending["items"]] == [kept["id"]]

    rows = list(csv.reader(io.StringIO(api_client.get("/api/outgate/pending.csv").text)))
    assert [row[1] for row in rows[1:]] == ["DDD 400"]
