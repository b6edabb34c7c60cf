from __future__ import annotations

import sys
from importlib import import_module
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[2]

SMS_ENV = ("SMS_PROXY_BASE", "PROXY_KEY", "SENDSMS_API_KEY", "SMS_FROM")


def _reload_backend() -> None:
    for name in list(sys.modules):
        if name == "backend" or name.startswith("backend."):
            sys.modules.pop(name, None)


@pytest.fixture()
def api_client(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    """Provide a TestClient wired to an isolated SQLite database and storage folder."""
    if str(REPO_ROOT) not in sys.path:
        sys.path.insert(0, str(REPO_ROOT))

    data_dir = tmp_path_factory.mktemp("data")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{data_dir / 'test_weighbridge.db'}")
    monkeypatch.setenv("STORAGE_DIR", str(data_dir / "storage"))
    monkeypatch.setenv("UNDO_WINDOW_SECONDS", "0")
    # the sweeper runs once at startup; tests purge explicitly
    monkeypatch.setenv("DELETION_SWEEP_INTERVAL", "3600")
    monkeypatch.delenv("LOG_DIR", raising=False)
    for name in SMS_ENV:
        monkeypatch.delenv(name, raising=False)

    _reload_backend()
    app_module = import_module("backend.main")

    with TestClient(app_module.app) as client:
        yield client

    import_module("backend.database").engine.dispose()
    _reload_backend()


@pytest.fixture()
def make_user(api_client: TestClient) -> Callable[..., Dict[str, str]]:
    """Create a user and return the X-User-Id header that acts as them."""
    counter = {"n": 0}

    def _make(role: str = "admin") -> Dict[str, str]:
        counter["n"] += 1
        response = api_client.post(
            "/api/users",
            json={
                "full_name": f"{role.title()} User {counter['n']}",
                "email": f"{role}{counter['n']}@example.com",
                "role": role,
            },
        )
        assert response.status_code == 201, response.text
        return {"X-User-Id": str(response.json()["id"])}

    return _make


@pytest.fixture()
def make_ticket(api_client: TestClient) -> Callable[..., dict]:
    def _make(**overrides) -> dict:
        payload = {
            "truck_no": "BJL 1234A",
            "sad_no": "4521",
            "gross": 32000,
            "tare": 12000,
            "driver": "Lamin Jallow",
            "container_no": "MSCU1234567",
        }
        payload.update(overrides)
        response = api_client.post("/api/tickets", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _make


@pytest.fixture()
def purge_deletions(api_client: TestClient) -> Callable[[], int]:
    """Run the deletion sweep immediately instead of waiting for the background loop."""

    def _purge() -> int:
        database = import_module("backend.database")
        deletions = import_module("backend.deletions")
        session = database.SessionLocal()
        try:
            return deletions.purge_expired(session)
        finally:
            session.close()

    return _purge
