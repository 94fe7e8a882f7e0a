import pytest

from bonfire.domain.rendezvous import secrets

LAT, LON = 45.5048, -73.5772


def _headers(user_id):
    return {"X-User-Id": user_id}


async def _create(api_client, pin=None):
    body = {"name": "Quad fire", "latitude": LAT, "longitude": LON, "proximity_radius_meters": 50}
    if pin:
        body["pin"] = pin
    resp = await api_client.post("/bonfires", json=body, headers=_headers("owner"))
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_create_discover_join_and_chat(api_client):
    created = await _create(api_client)
    assert created["current_secret_code"]

    nearby = await api_client.get(
        "/bonfires/nearby", params={"lat": LAT + 0.0001, "lon": LON}, headers=_headers("guest")
    )
    assert nearby.status_code == 200
    assert [item["id"] for item in nearby.json()["items"]] == [created["id"]]

    secret = await api_client.post(
        f"/bonfires/{created['id']}/secret", json={"lat": LAT + 0.0001, "lon": LON}, headers=_headers("guest")
    )
    assert secret.status_code == 200
    code = secret.json()["secret_code"]

    joined = await api_client.post(
        f"/bonfires/{created['id']}/join", json={"secret_code": code.lower()}, headers=_headers("guest")
    )
    assert joined.status_code == 200
    assert joined.json() == {"ok": True, "already_member": False}

    sent = await api_client.post(
        f"/bonfires/{created['id']}/messages", json={"content": "hello fire"}, headers=_headers("guest")
    )
    assert sent.status_code == 201
    listing = await api_client.get(f"/bonfires/{created['id']}/messages", headers=_headers("owner"))
    assert [m["content"] for m in listing.json()["items"]] == ["hello fire"]

    presence = await api_client.post(f"/bonfires/{created['id']}/presence", headers=_headers("guest"))
    assert presence.json() == {"ok": True}

    detail = await api_client.get(f"/bonfires/{created['id']}", headers=_headers("guest"))
    assert detail.status_code == 200
    assert detail.json()["current_secret_code"] is None
    assert detail.json()["participant_count"] == 2


@pytest.mark.asyncio
async def test_join_error_statuses(api_client):
    created = await _create(api_client, pin="1234")
    code = secrets.current_secret(created["id"]).secret
    url = f"/bonfires/{created['id']}/join"

    bad_secret = await api_client.post(url, json={"secret_code": "WRONG"}, headers=_headers("guest"))
    assert bad_secret.status_code == 400
    assert bad_secret.json()["detail"] == "invalid_secret"
    assert "request_id" in bad_secret.json()

    for _ in range(5):
        bad_pin = await api_client.post(url, json={"secret_code": code, "pin": "0000"}, headers=_headers("guest"))
        assert bad_pin.status_code == 401
        assert bad_pin.json()["detail"] == "invalid_pin"

    locked = await api_client.post(url, json={"secret_code": code, "pin": "1234"}, headers=_headers("guest"))
    assert locked.status_code == 429
    assert locked.json()["detail"] == "rate_limited"
    assert locked.json()["retry_after"]
    assert 0 < int(locked.headers["Retry-After"]) <= 900

    missing = await api_client.post("/bonfires/missing/join", json={"secret_code": code}, headers=_headers("guest"))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_secret_fetch_outside_radius_is_forbidden(api_client):
    created = await _create(api_client)
    resp = await api_client.post(
        f"/bonfires/{created['id']}/secret", json={"lat": LAT + 0.01, "lon": LON}, headers=_headers("guest")
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "proximity_denied"


@pytest.mark.asyncio
async def test_lifecycle_policy_errors(api_client):
    created = await _create(api_client)

    not_creator = await api_client.post(f"/bonfires/{created['id']}/end", headers=_headers("guest"))
    assert not_creator.status_code == 403
    assert not_creator.json()["detail"] == "not_creator"

    creator_leave = await api_client.post(f"/bonfires/{created['id']}/leave", headers=_headers("owner"))
    assert creator_leave.status_code == 409

    stranger_chat = await api_client.post(
        f"/bonfires/{created['id']}/messages", json={"content": "hi"}, headers=_headers("guest")
    )
    assert stranger_chat.status_code == 403

    moved = await api_client.post("/bonfires/location", json={"lat": LAT + 0.001, "lon": LON}, headers=_headers("owner"))
    assert moved.json()["updated"] is True

    ended = await api_client.post(f"/bonfires/{created['id']}/end", headers=_headers("owner"))
    assert ended.json() == {"ok": True}
    gone = await api_client.get(f"/bonfires/{created['id']}", headers=_headers("owner"))
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_validation_and_auth(api_client):
    bad_pin = await api_client.post(
        "/bonfires",
        json={"name": "Quad", "latitude": LAT, "longitude": LON, "pin": "12ab"},
        headers=_headers("owner"),
    )
    assert bad_pin.status_code == 422
    assert bad_pin.json()["detail"] == "validation_error"

    anonymous = await api_client.get("/bonfires/nearby", params={"lat": LAT, "lon": LON})
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_metrics_endpoint_requires_admin_token(api_client, monkeypatch):
    from bonfire.settings import settings

    denied = await api_client.get("/metrics")
    assert denied.status_code == 403

    monkeypatch.setattr(settings, "obs_admin_token", "ops-token")
    allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "ops-token"})
    assert allowed.status_code == 200
    assert "bonfire_join_attempts_total" in allowed.text


@pytest.mark.asyncio
async def test_bearer_token_authenticates(api_client):
    from bonfire.infra.jwt import encode_access

    token = encode_access({"sub": "token-user"})
    resp = await api_client.post(
        "/bonfires",
        json={"name": "Token fire", "latitude": LAT, "longitude": LON},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 201
    assert resp.json()["creator_id"] == "token-user"

    garbage = await api_client.get(
        "/bonfires/nearby", params={"lat": LAT, "lon": LON}, headers={"Authorization": "Bearer nope"}
    )
    assert garbage.status_code == 401


@pytest.mark.asyncio
async def test_message_listing_since_cursor(api_client):
    created = await _create(api_client)
    url = f"/bonfires/{created['id']}/messages"
    await api_client.post(url, json={"content": "first"}, headers=_headers("owner"))
    second = await api_client.post(url, json={"content": "second"}, headers=_headers("owner"))

    listing = await api_client.get(url, params={"since": second.json()["created_at"]}, headers=_headers("owner"))

    assert listing.status_code == 200
    assert [m["content"] for m in listing.json()["items"]] == ["second"]
