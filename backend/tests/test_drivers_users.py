from __future__ import annotations

from fastapi.testclient import TestClient


def _driver(client: TestClient, **overrides) -> dict:
    payload = {"name": "Ebrima Touray", "phone": "+220 7001234", "license_number": "GM-55"}
    payload.update(overrides)
    response = client.post("/api/drivers", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_driver_uniqueness(api_client: TestClient) -> None:
    driver = _driver(api_client)
    assert driver["is_suspended"] is False

    same_phone = api_client.post("/api/drivers", json={"name": "Other", "phone": "+220 7001234"})
    assert same_phone.status_code == 409
    assert "phone" in same_phone.json()["detail"]

    same_license = api_client.post(
        "/api/drivers", json={"name": "Other", "phone": "555", "license_number": "GM-55"}
    )
    assert same_license.status_code == 409
    assert "license" in same_license.json()["detail"]

    assert api_client.post("/api/drivers", json={"name": "No Phone", "phone": " "}).status_code == 422


def test_driver_update_and_search(api_client: TestClient) -> None:
    first = _driver(api_client)
    second = _driver(api_client, name="Fatou Sowe", phone="7009999", license_number=None)

    conflict = api_client.put(f"/api/drivers/{second['id']}", json={"phone": first["phone"]})
    assert conflict.status_code == 409

    updated = api_client.put(f"/api/drivers/{second['id']}", json={"license_number": "GM-77"})
    assert updated.status_code == 200
    assert updated.json()["license_number"] == "GM-77"

    page = api_client.get("/api/drivers", params={"name": "fatou"}).json()
    assert page["total"] == 1
    assert page["items"][0]["id"] == second["id"]


def test_driver_suspend_picture_and_delete(api_client: TestClient, purge_deletions) -> None:
    driver = _driver(api_client)

    suspended = api_client.post(f"/api/drivers/{driver['id']}/suspend").json()
    assert suspended["is_suspended"] is True
    lifted = api_client.post(f"/api/drivers/{driver['id']}/suspend", params={"suspended": "false"}).json()
    assert lifted["is_suspended"] is False

    picture = api_client.post(
        f"/api/drivers/{driver['id']}/picture",
        files={"file": ("face.png", b"\x89PNG fake", "image/png")},
    )
    assert picture.status_code == 200, picture.text
    assert picture.json()["picture_url"].startswith("/api/files?path=")

    not_image = api_client.post(
        f"/api/drivers/{driver['id']}/picture",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert not_image.status_code == 400

    assert api_client.delete(f"/api/drivers/{driver['id']}").status_code == 202
    assert api_client.get("/api/drivers").json()["total"] == 0
    assert purge_deletions() == 1
    assert api_client.get(f"/api/drivers/{driver['id']}").status_code == 404


def test_user_creation_rules(api_client: TestClient) -> None:
    created = api_client.post(
        "/api/users",
        json={"full_name": "Awa Njie", "email": "Awa.Njie@Example.com", "role": "Weighbridge"},
    )
    assert created.status_code == 201, created.text
    user = created.json()
    assert user["email"] == "awa.njie@example.com"
    assert user["username"] == "awa.njie"
    assert user["role"] == "weighbridge"

    duplicate = api_client.post(
        "/api/users",
        json={"full_name": "Other", "email": "awa.njie@example.com", "role": "agent"},
    )
    assert duplicate.status_code == 409

    second = api_client.post(
        "/api/users",
        json={"full_name": "Awa Two", "email": "awa.njie@other.gm", "role": "agent"},
    ).json()
    assert second["username"] == "awa.njie2"

    bad_email = api_client.post("/api/users", json={"full_name": "X", "email": "nope", "role": "admin"})
    assert bad_email.status_code == 422
    bad_role = api_client.post("/api/users", json={"full_name": "X", "email": "x@y.gm", "role": "pilot"})
    assert bad_role.status_code == 422


def test_user_update_search_and_delete(api_client: TestClient, make_user) -> None:
    headers = make_user("agent")
    user_id = int(headers["X-User-Id"])

    updated = api_client.put(f"/api/users/{user_id}", json={"role": "customs", "full_name": "Kebba Darboe"})
    assert updated.status_code == 200
    assert updated.json()["role"] == "customs"

    found = api_client.get("/api/users", params={"q": "kebba"}).json()
    assert [row["id"] for row in found] == [user_id]

    assert api_client.delete(f"/api/users/{user_id}").status_code == 204
    assert api_client.get(f"/api/users/{user_id}").status_code == 404


def test_preferences_round_trip(api_client: TestClient, make_user) -> None:
    headers = make_user("outgate")

    defaults = api_client.get("/api/users/me/preferences", headers=headers).json()
    assert defaults == {"muted": False, "sound": "beep"}

    saved = api_client.put("/api/users/me/preferences", json={"muted": True, "sound": "chime"}, headers=headers)
    assert saved.status_code == 200
    assert saved.json() == {"muted": True, "sound": "chime"}
    assert api_client.get("/api/users/me/preferences", headers=headers).json()["sound"] == "chime"

    invalid = api_client.put("/api/users/me/preferences", json={"sound": "siren"}, headers=headers)
    assert invalid.status_code == 422
    assert api_client.get("/api/users/me/preferences").status_code == 401
