from __future__ import annotations

import asyncio
import uuid

from webhook_service.services.signing import EventSigner

from tests.utils import make_headers


def _body(url: str = "https://example.com/hook", **overrides):
    body = {"name": "billing", "url": url, "events": ["tenant.created"]}
    body.update(overrides)
    return body


async def _create(client, tenant_id: str = "t1", **overrides):
    resp = await client.post("/api/v1/webhooks", json=_body(**overrides), headers=make_headers(tenant_id))
    assert resp.status == 201, await resp.text()
    return await resp.json()


async def _wait_for_logs(client, webhook_id: str, tenant_id: str, status: str, timeout: float = 3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        resp = await client.get(
            f"/api/v1/webhooks/{webhook_id}/logs", headers=make_headers(tenant_id, role="viewer")
        )
        assert resp.status == 200
        data = await resp.json()
        if data["deliveries"] and all(d["status"] == status for d in data["deliveries"]):
            return data
        assert asyncio.get_running_loop().time() < deadline, data
        await asyncio.sleep(0.05)


async def test_create_returns_secret_once(service_client):
    created = await _create(
        service_client, retryConfig={"maxAttempts": 2, "baseDelayMs": 10, "backoffRate": 2}
    )

    assert created["status"] == "ACTIVE"
    assert created["tenantId"] == "t1"
    assert len(created["secret"]) == 64
    assert created["retryConfig"]["maxAttempts"] == 2

    resp = await service_client.get(f"/api/v1/webhooks/{created['id']}", headers=make_headers("t1"))
    assert resp.status == 200
    fetched = await resp.json()
    assert "secret" not in fetched
    assert fetched["url"] == created["url"]


async def test_create_validation_errors(service_client):
    headers = make_headers("t1")
    for body in (
        _body(url="not-a-url"),
        _body(events=[]),
        _body(retryConfig={"maxAttempts": 0}),
        {"name": "missing url"},
    ):
        resp = await service_client.post("/api/v1/webhooks", json=body, headers=headers)
        assert resp.status == 400, body

    resp = await service_client.post("/api/v1/webhooks", data="{nope", headers=headers)
    assert resp.status == 400


async def test_identity_headers_are_required(service_client):
    resp = await service_client.get("/api/v1/webhooks")
    assert resp.status == 401

    headers = make_headers("t1")
    headers["X-User-Id"] = "not-a-uuid"
    resp = await service_client.get("/api/v1/webhooks", headers=headers)
    assert resp.status == 400

    headers = make_headers("t1")
    del headers["X-Tenant-Id"]
    resp = await service_client.get("/api/v1/webhooks", headers=headers)
    assert resp.status == 400


async def test_mutations_require_admin_role(service_client):
    created = await _create(service_client)
    viewer = make_headers("t1", role="viewer")

    resp = await service_client.post("/api/v1/webhooks", json=_body(), headers=viewer)
    assert resp.status == 403
    resp = await service_client.patch(
        f"/api/v1/webhooks/{created['id']}", json={"name": "x"}, headers=viewer
    )
    assert resp.status == 403
    resp = await service_client.delete(f"/api/v1/webhooks/{created['id']}", headers=viewer)
    assert resp.status == 403
    resp = await service_client.post(
        f"/api/v1/webhooks/{created['id']}/rotate-secret", headers=viewer
    )
    assert resp.status == 403

    resp = await service_client.get(f"/api/v1/webhooks/{created['id']}", headers=viewer)
    assert resp.status == 200


async def test_other_tenant_sees_not_found(service_client):
    created = await _create(service_client, tenant_id="t1")
    other = make_headers("t2")

    for method, suffix in (("get", ""), ("patch", ""), ("delete", ""), ("get", "/logs")):
        kwargs = {"json": {"name": "x"}} if method == "patch" else {}
        resp = await getattr(service_client, method)(
            f"/api/v1/webhooks/{created['id']}{suffix}", headers=other, **kwargs
        )
        assert resp.status == 404, (method, suffix)

    resp = await service_client.get("/api/v1/webhooks", headers=other)
    assert (await resp.json())["total"] == 0


async def test_unknown_and_malformed_ids(service_client):
    headers = make_headers("t1")
    resp = await service_client.get(f"/api/v1/webhooks/{uuid.uuid4()}", headers=headers)
    assert resp.status == 404
    resp = await service_client.get("/api/v1/webhooks/not-a-uuid", headers=headers)
    assert resp.status == 400


async def test_list_filters_and_pagination(service_client):
    headers = make_headers("t1")
    first = await _create(service_client, events=["tenant.created"])
    second = await _create(service_client, events=["user.invited"])
    resp = await service_client.patch(
        f"/api/v1/webhooks/{second['id']}", json={"status": "INACTIVE"}, headers=headers
    )
    assert resp.status == 200

    resp = await service_client.get("/api/v1/webhooks", headers=headers)
    data = await resp.json()
    assert data["total"] == 2
    assert data["page"] == 1
    assert all("secret" not in item for item in data["webhooks"])

    resp = await service_client.get("/api/v1/webhooks?status=active", headers=headers)
    assert [w["id"] for w in (await resp.json())["webhooks"]] == [first["id"]]

    resp = await service_client.get("/api/v1/webhooks?event=user.invited", headers=headers)
    assert [w["id"] for w in (await resp.json())["webhooks"]] == [second["id"]]

    resp = await service_client.get("/api/v1/webhooks?limit=1&offset=1", headers=headers)
    data = await resp.json()
    assert len(data["webhooks"]) == 1
    assert data["page"] == 2 and data["pageSize"] == 1

    resp = await service_client.get("/api/v1/webhooks?status=broken", headers=headers)
    assert resp.status == 400


async def test_update_and_delete(service_client):
    headers = make_headers("t1")
    created = await _create(service_client)

    resp = await service_client.patch(
        f"/api/v1/webhooks/{created['id']}",
        json={"url": "https://example.org/v2", "events": ["a.b", "c.d"]},
        headers=headers,
    )
    assert resp.status == 200
    updated = await resp.json()
    assert updated["url"] == "https://example.org/v2"
    assert updated["events"] == ["a.b", "c.d"]
    assert updated["name"] == created["name"]

    resp = await service_client.patch(
        f"/api/v1/webhooks/{created['id']}", json={"secret": "x" * 32}, headers=headers
    )
    assert resp.status == 400

    resp = await service_client.delete(f"/api/v1/webhooks/{created['id']}", headers=headers)
    assert resp.status == 204
    resp = await service_client.get(f"/api/v1/webhooks/{created['id']}", headers=headers)
    assert resp.status == 404


async def test_rotate_secret(service_client):
    created = await _create(service_client)

    resp = await service_client.post(
        f"/api/v1/webhooks/{created['id']}/rotate-secret", headers=make_headers("t1")
    )

    assert resp.status == 200
    rotated = await resp.json()
    assert len(rotated["secret"]) == 64
    assert rotated["secret"] != created["secret"]


async def test_test_endpoint_delivers_immediately(service_client, receiver):
    created = await _create(service_client, url=receiver.url)

    resp = await service_client.post(
        f"/api/v1/webhooks/{created['id']}/test", headers=make_headers("t1")
    )

    assert resp.status == 200
    attempt = await resp.json()
    assert attempt["status"] == "DELIVERED"
    assert attempt["eventType"] == "webhook.test"
    assert "version" not in attempt
    assert "signingSecret" not in attempt
    [body] = receiver.bodies()
    assert body["payload"]["webhookId"] == created["id"]
    assert EventSigner().verify(body["signature"], body["payload"], created["secret"])


async def test_test_endpoint_reports_failure(service_client, receiver):
    receiver.default_status = 500
    created = await _create(service_client, url=receiver.url)

    resp = await service_client.post(
        f"/api/v1/webhooks/{created['id']}/test",
        json={"payload": {"hello": "world"}},
        headers=make_headers("t1"),
    )

    attempt = await resp.json()
    assert attempt["status"] == "FAILED"
    assert attempt["lastError"].startswith("HTTP 500")
    assert receiver.bodies()[0]["payload"] == {"hello": "world"}


async def test_test_endpoint_tolerates_undecodable_reply(service_client, receiver):
    receiver.raw_body = b"\xff\xfe\x00bad"
    created = await _create(service_client, url=receiver.url)

    resp = await service_client.post(
        f"/api/v1/webhooks/{created['id']}/test", headers=make_headers("t1")
    )

    assert resp.status == 200
    attempt = await resp.json()
    assert attempt["status"] == "DELIVERED"
    assert attempt["response"]["status"] == 200


async def test_published_event_is_delivered_and_logged(service_client, receiver):
    created = await _create(service_client, url=receiver.url)
    await _create(service_client, url=receiver.url, events=["user.invited"])
    await _create(service_client, tenant_id="t2", url=receiver.url)

    resp = await service_client.post(
        "/api/v1/events",
        json={"eventType": "tenant.created", "payload": {"tenantId": "t1"}},
        headers=make_headers("t1", role="service"),
    )
    assert resp.status == 202
    data = await resp.json()
    assert data["attempts"] == 1

    logs = await _wait_for_logs(service_client, created["id"], "t1", "DELIVERED")
    [delivery] = logs["deliveries"]
    assert delivery["id"] == data["attemptIds"][0]
    assert delivery["attempt"] == 1
    assert delivery["response"]["status"] == 200

    [body] = receiver.bodies()
    assert body == {
        "event": "tenant.created",
        "payload": {"tenantId": "t1"},
        "signature": body["signature"],
    }
    assert EventSigner().verify(body["signature"], body["payload"], created["secret"])


async def test_published_event_retries_then_fails(service_client, receiver):
    receiver.default_status = 500
    created = await _create(
        service_client,
        url=receiver.url,
        retryConfig={"maxAttempts": 2, "baseDelayMs": 10, "backoffRate": 1},
    )

    resp = await service_client.post(
        "/api/v1/events",
        json={"eventType": "tenant.created", "payload": {}},
        headers=make_headers("t1"),
    )
    assert resp.status == 202

    logs = await _wait_for_logs(service_client, created["id"], "t1", "FAILED")
    [delivery] = logs["deliveries"]
    assert delivery["attempt"] == 2
    assert delivery["lastError"].startswith("HTTP 500")
    assert len(receiver.requests) == 2

    resp = await service_client.get(
        f"/api/v1/webhooks/{created['id']}/logs?status=delivered", headers=make_headers("t1")
    )
    assert (await resp.json())["total"] == 0


async def test_event_validation(service_client):
    resp = await service_client.post(
        "/api/v1/events", json={"payload": {}}, headers=make_headers("t1")
    )
    assert resp.status == 400
    text = await resp.text()
    assert "eventType" in text
    assert "Field required" in text
    assert not text.startswith("[")

    resp = await service_client.post(
        "/api/v1/events", json={"eventType": "nobody.listens"}, headers=make_headers("t1")
    )
    assert resp.status == 202
    assert (await resp.json()) == {"attempts": 0, "attemptIds": []}
