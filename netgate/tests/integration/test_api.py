from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from netgate.main import create_app
from netgate.tests.helpers import PASSWORD, WINDOWS_UA, mac_of


@pytest.fixture
async def client(settings, database, firewall):
    # Requests arrive through the portal gateway, which reports the client MAC.
    settings = settings.model_copy(update={"TRUSTED_HARDWARE_NETWORKS": ["127.0.0.0/8"]})
    app = create_app(settings=settings, database=database, firewall=firewall)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": WINDOWS_UA},
    ) as ac:
        yield ac


async def _login(client: AsyncClient, identifier: str, n: int, password: str = PASSWORD):
    # Each n is a distinct device.
    return await client.post(
        "/api/auth/login",
        json={"identifier": identifier, "password": password, "mac_address": mac_of(n)},
    )


def _bearer(body: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {body['access_token']}"}


@pytest.mark.asyncio
async def test_health(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "firewall": "memory"}


@pytest.mark.asyncio
async def test_login_and_me(client, make_user) -> None:
    await make_user("uma")
    response = await _login(client, "uma", 1)
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["new_device"] is True
    assert body["network_enforced"] is True

    me = await client.get("/api/auth/me", headers=_bearer(body))
    assert me.status_code == 200
    assert me.json()["username"] == "uma"


@pytest.mark.asyncio
async def test_bad_login_is_generic(client, make_user) -> None:
    await make_user("vera")
    wrong = await _login(client, "vera", 1, password="nope-nope")
    unknown = await _login(client, "nobody", 1)

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"detail": "Invalid credentials", "code": "INVALID_CREDENTIALS"}


@pytest.mark.asyncio
async def test_invalid_mac_is_rejected(client, make_user) -> None:
    await make_user("walt")
    response = await client.post(
        "/api/auth/login",
        json={"identifier": "walt", "password": PASSWORD, "mac_address": "-j ACCEPT"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_quota_rejection_reports_counts(client, make_user) -> None:
    await make_user("xena")
    for n in range(1, 5):
        assert (await _login(client, "xena", n)).status_code == 200

    response = await _login(client, "xena", 5)

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "QUOTA_EXCEEDED"
    assert (body["active"], body["max"]) == (4, 4)


@pytest.mark.asyncio
async def test_refresh_rotation_and_replay(client, make_user) -> None:
    await make_user("yuri")
    tokens = (await _login(client, "yuri", 1)).json()

    rotated = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200
    assert rotated.json()["refresh_token"] != tokens["refresh_token"]

    replay = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["code"] == "TOKEN_REVOKED"
    assert replay.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_logout_revokes_session(client, firewall, make_user) -> None:
    await make_user("zoe")
    tokens = (await _login(client, "zoe", 1)).json()

    response = await client.post(
        "/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=_bearer(tokens),
    )
    assert response.status_code == 200
    assert firewall.rules_for(mac_of(1)) == []

    refresh = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refresh.status_code == 401
    # Logging out twice is still fine.
    again = await client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]})
    assert again.status_code == 200


@pytest.mark.asyncio
async def test_protected_routes_need_a_token(client) -> None:
    response = await client.get("/api/devices")
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_INVALID"


@pytest.mark.asyncio
async def test_profile_update_only_touches_sent_fields(client, coordinator, make_user) -> None:
    user = await make_user("adam")
    await coordinator.users.update_profile(user.id, {"last_name": "Smith"})
    tokens = (await _login(client, "adam", 1)).json()

    response = await client.patch("/api/auth/me", json={"first_name": "Ada"}, headers=_bearer(tokens))
    assert response.status_code == 200
    assert (response.json()["first_name"], response.json()["last_name"]) == ("Ada", "Smith")

    cleared = await client.patch("/api/auth/me", json={"last_name": None}, headers=_bearer(tokens))
    assert cleared.json()["last_name"] is None

    null_email = await client.patch("/api/auth/me", json={"email": None}, headers=_bearer(tokens))
    assert null_email.status_code == 422


@pytest.mark.asyncio
async def test_password_change_signs_everyone_out(client, make_user) -> None:
    await make_user("beth")
    tokens = (await _login(client, "beth", 1)).json()

    too_long = await client.put(
        "/api/auth/password",
        json={"current_password": PASSWORD, "new_password": "x" * 80},
        headers=_bearer(tokens),
    )
    assert too_long.status_code == 422

    response = await client.put(
        "/api/auth/password",
        json={"current_password": PASSWORD, "new_password": "another-long-secret"},
        headers=_bearer(tokens),
    )
    assert response.status_code == 200
    refresh = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refresh.status_code == 401


@pytest.mark.asyncio
async def test_device_routes(client, firewall, make_user) -> None:
    await make_user("carl")
    await make_user("dora")
    carl = (await _login(client, "carl", 1)).json()
    dora = (await _login(client, "dora", 2)).json()

    listed = await client.get("/api/devices", headers=_bearer(carl))
    assert [d["mac_address"] for d in listed.json()] == [mac_of(1)]
    assert listed.json()[0]["device_name"] == "Windows PC"

    device_id = carl["device_id"]
    foreign = await client.get(f"/api/devices/{device_id}", headers=_bearer(dora))
    assert foreign.status_code == 404

    empty = await client.patch(f"/api/devices/{device_id}", json={}, headers=_bearer(carl))
    assert empty.status_code == 422
    renamed = await client.patch(
        f"/api/devices/{device_id}", json={"device_name": " Desk PC "}, headers=_bearer(carl),
    )
    assert renamed.json()["device_name"] == "Desk PC"

    history = await client.get(f"/api/devices/{device_id}/connections", headers=_bearer(carl))
    assert history.json()["total"] == 1
    assert history.json()["items"][0]["is_active"] is True

    firewall.record_traffic("127.0.0.1", 1200, 9)
    traffic = await client.get(f"/api/devices/{device_id}/traffic", headers=_bearer(carl))
    assert traffic.status_code == 200
    assert (traffic.json()["bytes"], traffic.json()["packets"]) == (1200, 9)
    assert (await client.get(f"/api/devices/{device_id}/traffic", headers=_bearer(dora))).status_code == 404

    disconnected = await client.post(f"/api/devices/{device_id}/disconnect", headers=_bearer(carl))
    assert disconnected.status_code == 200
    assert disconnected.json()["sessions_revoked"] == 1

    deleted = await client.delete(f"/api/devices/{device_id}", headers=_bearer(carl))
    assert deleted.status_code == 200
    assert (await client.get(f"/api/devices/{device_id}", headers=_bearer(carl))).status_code == 404


@pytest.mark.asyncio
async def test_admin_routes(client, make_user) -> None:
    await make_user("root", is_admin=True)
    target = await make_user("emma")
    admin = (await _login(client, "root", 10)).json()
    emma = (await _login(client, "emma", 1)).json()

    forbidden = await client.post("/api/admin/network/disconnect-all", headers=_bearer(emma))
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "ADMIN_REQUIRED"

    usage = await client.post("/api/admin/network/collect-usage", headers=_bearer(admin))
    assert usage.json() == {"open_connections": 2, "updated": 2}

    grants = await client.get("/api/admin/network/grants", headers=_bearer(admin))
    assert sorted(g["mac_address"] for g in grants.json()) == [mac_of(1), mac_of(10)]
    assert (await client.get("/api/admin/network/grants", headers=_bearer(emma))).status_code == 403

    report = await client.post(f"/api/admin/users/{target.id}/deactivate", headers=_bearer(admin))
    assert report.status_code == 200
    assert report.json()["devices"] == 1
    assert report.json()["failure_count"] == 0

    locked_out = await client.get("/api/auth/me", headers=_bearer(emma))
    assert locked_out.status_code == 403
    assert locked_out.json()["code"] == "ACCOUNT_INACTIVE"
    # A deactivated account can still log out.
    bye = await client.post(
        "/api/auth/logout", json={"refresh_token": emma["refresh_token"]}, headers=_bearer(emma),
    )
    assert bye.status_code == 200

    initialized = await client.post("/api/admin/network/initialize", headers=_bearer(admin))
    assert initialized.json() == {"regranted": 1, "failed": []}

    everyone = await client.post("/api/admin/network/disconnect-all", headers=_bearer(admin))
    assert everyone.json()["devices_deactivated"] == 1

    purged = await client.delete(f"/api/admin/users/{target.id}", headers=_bearer(admin))
    assert purged.status_code == 200
