from __future__ import annotations

from importlib import import_module
from types import SimpleNamespace
from typing import Any, List

import pytest
import requests
from fastapi.testclient import TestClient


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None):
        self.status_code = status_code
        self._body = body if body is not None else {"status": "sent"}

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return str(self._body)

    def json(self) -> Any:
        return self._body


@pytest.fixture()
def relay(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> SimpleNamespace:
    """Point the relay at a fake proxy and record every outgoing call."""
    settings = import_module("backend.config").settings
    sms = import_module("backend.sms")
    monkeypatch.setattr(settings, "sms_proxy_base", "http://proxy.local/")
    monkeypatch.setattr(settings, "proxy_key", "proxy-secret")

    state = SimpleNamespace(calls=[], sleeps=[], responses=[])

    def fake_post(url, json=None, headers=None, timeout=None):
        state.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = state.responses.pop(0) if state.responses else FakeResponse()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(sms.requests, "post", fake_post)
    monkeypatch.setattr(sms, "time", SimpleNamespace(sleep=state.sleeps.append))
    return state


def test_status_reports_configuration(api_client: TestClient) -> None:
    body = api_client.get("/api/sms").json()
    assert body == {"ok": True, "configured": False, "proxy": None}


def test_missing_fields_and_unconfigured_relay(api_client: TestClient) -> None:
    assert api_client.post("/api/sms", json={"to": "7001234"}).status_code == 400
    assert api_client.post("/api/sms", json={"message": "hello"}).status_code == 400
    assert api_client.post("/api/sms", json={"to": "7001234", "message": "hello"}).status_code == 503


def test_message_is_relayed(api_client: TestClient, relay: SimpleNamespace) -> None:
    response = api_client.post(
        "/api/sms",
        json={"to": "+220 700 1234, 00220 7005555", "message": " Truck cleared "},
    )
    assert response.status_code == 200, response.text
    assert response.json() == {"ok": True, "provider": "comium", "result": {"status": "sent"}}

    call = relay.calls[0]
    assert call["url"] == "http://proxy.local/send-sms"
    assert call["headers"]["x-proxy-key"] == "proxy-secret"
    assert call["json"] == {"from": "NICKTC", "to": "2207001234,2207005555", "text": "Truck cleared"}


def test_nested_recipient_and_sender(api_client: TestClient, relay: SimpleNamespace) -> None:
    response = api_client.post(
        "/api/sms",
        json={"recipients": {"driverPhone": "7001111"}, "text": "Gate open", "from": "GATE"},
    )
    assert response.status_code == 200, response.text
    assert relay.calls[0]["json"] == {"from": "GATE", "to": "7001111", "text": "Gate open"}


def test_transport_errors_are_retried(api_client: TestClient, relay: SimpleNamespace) -> None:
    relay.responses.extend([requests.ConnectionError("refused"), FakeResponse()])
    response = api_client.post("/api/sms", json={"to": "7001234", "message": "hi"})
    assert response.status_code == 200
    assert len(relay.calls) == 2
    assert relay.sleeps == [0.5]


def test_relay_gives_up_after_retries(api_client: TestClient, relay: SimpleNamespace) -> None:
    relay.responses.extend([requests.Timeout("slow")] * 3)
    response = api_client.post("/api/sms", json={"to": "7001234", "message": "hi"})
    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "SMS delivery failed"
    assert len(relay.calls) == 3
    assert relay.sleeps == [0.5, 1.0]


def test_proxy_http_error_is_not_retried(api_client: TestClient, relay: SimpleNamespace) -> None:
    relay.responses.append(FakeResponse(500, {"error": "provider down"}))
    response = api_client.post("/api/sms", json={"to": "7001234", "message": "hi"})
    assert response.status_code == 502
    assert response.json()["detail"]["status"] == 500
    assert len(relay.calls) == 1


def test_api_key_is_enforced_when_set(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = import_module("backend.config").settings
    monkeypatch.setattr(settings, "sendsms_api_key", "letmein")

    assert api_client.get("/api/sms").status_code == 401
    assert api_client.get("/api/sms", headers={"x-api-key": "wrong"}).status_code == 401
    assert api_client.get("/api/sms", headers={"x-api-key": "letmein"}).status_code == 200
    assert api_client.get("/api/sms", headers={"Authorization": "Bearer letmein"}).status_code == 200
