import pytest
from httpx import ASGITransport, AsyncClient

from disclosure.core.config import settings
from disclosure.core.errors import TransientStoreError
from disclosure.core.security import issue_token
from disclosure.main import app
from disclosure.modules.information_requests.router import get_session
from disclosure.modules.information_requests.service import InformationRequestService

PREFIX = settings.API_PREFIX
READ_WRITE = ["privacy:read", "privacy:write"]


def auth(user_id, scopes=READ_WRITE):
    return {"Authorization": f"Bearer {issue_token(user_id, scopes)}"}


@pytest.fixture
async def client(session_factory, cache, users):
    async def override_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.state.cache = cache
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def create(client, fields=("phone", "address")):
    resp = await client.post(
        f"{PREFIX}/information-requests",
        json={"target_id": "u2", "requested_fields": list(fields), "reason": "verify booking"},
        headers=auth("u1"),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def test_health(client):
    resp = await client.get(f"{PREFIX}/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_request_lifecycle(client):
    req = await create(client)
    assert req["status"] == "pending"
    assert req["requester_id"] == "u1"

    pending = await client.get(f"{PREFIX}/information-requests/pending", headers=auth("u2"))
    assert [r["id"] for r in pending.json()] == [req["id"]]
    sent = await client.get(f"{PREFIX}/information-requests/sent", headers=auth("u1"))
    assert [r["id"] for r in sent.json()] == [req["id"]]

    resp = await client.post(
        f"{PREFIX}/information-requests/{req['id']}/respond",
        json={"approved": True, "shared_fields": ["phone"]},
        headers=auth("u2"),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"

    perms = (await client.get(f"{PREFIX}/users/u2/permissions", headers=auth("u1"))).json()
    assert perms["permissions"] == ["phone"]
    assert perms["entries"][0]["field_camel"] == "phone"

    profile = (await client.get(f"{PREFIX}/users/u2/shared-profile", headers=auth("u1"))).json()
    assert profile["shared"] == {"phone": "+63 917 555 0202"}

    resp = await client.post(f"{PREFIX}/information-requests/{req['id']}/revoke", headers=auth("u2"))
    assert resp.json()["status"] == "revoked"
    perms = (await client.get(f"{PREFIX}/users/u2/permissions", headers=auth("u1"))).json()
    assert perms["permissions"] == []


async def test_only_target_may_respond(client):
    req = await create(client)
    resp = await client.post(
        f"{PREFIX}/information-requests/{req['id']}/respond",
        json={"approved": True, "shared_fields": ["phone"]},
        headers=auth("u1"),
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"


async def test_outsiders_cannot_read_request(client):
    req = await create(client)
    assert (await client.get(f"{PREFIX}/information-requests/{req['id']}", headers=auth("u1"))).status_code == 200
    assert (await client.get(f"{PREFIX}/information-requests/{req['id']}", headers=auth("u3"))).status_code == 403


async def test_missing_token(client):
    resp = await client.get(f"{PREFIX}/information-requests/pending")
    assert resp.status_code == 401
    assert resp.json() == {"error": "unauthenticated", "message": "Missing token", "retryable": False}


async def test_write_needs_write_scope(client):
    resp = await client.post(
        f"{PREFIX}/information-requests",
        json={"target_id": "u2", "requested_fields": ["phone"]},
        headers=auth("u1", ["privacy:read"]),
    )
    assert resp.status_code == 403


async def test_unknown_request(client):
    resp = await client.get(f"{PREFIX}/information-requests/missing", headers=auth("u1"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


async def test_unknown_field_rejected(client):
    resp = await client.post(
        f"{PREFIX}/information-requests",
        json={"target_id": "u2", "requested_fields": ["phone", "shoe_size"]},
        headers=auth("u1"),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"
    assert resp.json()["retryable"] is False


async def test_party_check_retries_transient_failures(client, monkeypatch):
    req = await create(client)
    real_get = InformationRequestService.get_request
    calls = []

    async def flaky_get(self, request_id):
        calls.append(request_id)
        if len(calls) == 1:
            raise TransientStoreError("get_request could not reach the store")
        return await real_get(self, request_id)

    monkeypatch.setattr(InformationRequestService, "get_request", flaky_get)
    resp = await client.post(
        f"{PREFIX}/information-requests/{req['id']}/revoke",
        headers=auth("u2"),
    )
    # the request is still pending, so the retried lookup reaches the service
    assert resp.status_code == 422
    assert len(calls) == 2

    calls.clear()
    resp = await client.post(
        f"{PREFIX}/information-requests/{req['id']}/respond",
        json={"approved": True, "shared_fields": ["phone"]},
        headers=auth("u2"),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"
    assert len(calls) >= 2
