from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient


def test_health_endpoint(api_client: TestClient) -> None:
    response = api_client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "running"}


def test_ticket_lifecycle(api_client: TestClient) -> None:
    payload = {
        "truck_no": " BJL 4410C ",
        "sad_no": "7781",
        "gross": 30500,
        "net": 18500,
        "date": datetime.now(timezone.utc).isoformat(),
    }
    create_response = api_client.post("/api/tickets", json=payload)
    assert create_response.status_code == 201, create_response.text
    ticket = create_response.json()
    assert ticket["ticket_no"] == "M-0001"
    assert ticket["manual"] is True
    assert ticket["status"] == "Pending"
    assert ticket["truck_no"] == "BJL 4410C"
    assert pytest.approx(ticket["tare"]) == 12000
    assert ticket["out_of_range"] == []

    next_response = api_client.get("/api/tickets/next-number")
    assert next_response.status_code == 200
    assert next_response.json() == {"next_ticket_no": "M-0002"}

    patch_response = api_client.patch(f"/api/tickets/{ticket['id']}", json={"gross": 31000})
    assert patch_response.status_code == 200, patch_response.text
    updated = patch_response.json()
    assert pytest.approx(updated["net"]) == 19000
    assert pytest.approx(updated["tare"]) == 12000

    list_response = api_client.get("/api/tickets", params={"q": "4410"})
    assert list_response.status_code == 200
    page = list_response.json()
    assert page["total"] == 1
    assert page["items"][0]["id"] == ticket["id"]


def test_ticket_rejects_invalid_weights(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/tickets",
        json={"truck_no": "BJL 1", "sad_no": "1", "gross": 1000, "tare": 1500},
    )
    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert errors["gross"] == "Gross must be greater than Tare"
    assert errors["tare"] == "Tare must be less than Gross"


@pytest.mark.parametrize(
    "weights",
    [
        {"gross": 1000, "tare": 100, "net": "nan"},
        {"gross": "inf", "tare": 100},
        {"gross": 1000, "tare": "-Infinity"},
    ],
)
def test_ticket_rejects_non_finite_weights(api_client: TestClient, weights) -> None:
    response = api_client.post("/api/tickets", json={"truck_no": "BJL 1", "sad_no": "1", **weights})
    assert response.status_code == 422
    assert api_client.get("/api/tickets").json()["total"] == 0


def test_ticket_requires_truck_and_sad(api_client: TestClient) -> None:
    response = api_client.post("/api/tickets", json={"truck_no": "", "sad_no": "12", "gross": 2, "tare": 1})
    assert response.status_code == 422
