from __future__ import annotations

from webhook_service.domain.enums import DeliveryStatus, WebhookStatus

from tests.utils import make_webhook


async def test_dispatch_enqueues_one_message_per_matching_webhook(
    dispatcher, webhook_repo, store, queue
):
    first = await webhook_repo.create(make_webhook("https://a.example.com/hook"))
    second = await webhook_repo.create(make_webhook("https://b.example.com/hook"))

    attempts = await dispatcher.dispatch("t1", "tenant.created", {"tenantId": "t1"})

    assert len(attempts) == 2
    assert {a.webhook_id for a in attempts} == {first.id, second.id}
    assert all(a.status == DeliveryStatus.PENDING and a.attempt == 1 for a in attempts)

    messages = [message for message, delay in queue.enqueued]
    assert [delay for _, delay in queue.enqueued] == [0, 0]
    assert {m.attempt_id for m in messages} == {a.id for a in attempts}
    by_webhook = {m.webhook_id: m for m in messages}
    assert by_webhook[first.id].secret == first.secret
    assert by_webhook[first.id].payload == {"tenantId": "t1"}
    assert by_webhook[first.id].attempt == 1

    for attempt in attempts:
        stored = await store.get(attempt.id)
        assert stored is not None
        assert stored.tenant_id == "t1"
        assert stored.event_type == "tenant.created"


async def test_dispatch_skips_inactive_other_tenant_and_unsubscribed(
    dispatcher, webhook_repo, queue
):
    active = await webhook_repo.create(make_webhook("https://a.example.com/hook"))
    await webhook_repo.create(
        make_webhook("https://b.example.com/hook", status=WebhookStatus.INACTIVE)
    )
    await webhook_repo.create(make_webhook("https://c.example.com/hook", status=WebhookStatus.FAILED))
    await webhook_repo.create(make_webhook("https://d.example.com/hook", tenant_id="t2"))
    await webhook_repo.create(make_webhook("https://e.example.com/hook", events=["user.invited"]))

    attempts = await dispatcher.dispatch("t1", "tenant.created", {})

    assert [a.webhook_id for a in attempts] == [active.id]
    assert [m.webhook_id for m, _ in queue.enqueued] == [active.id]


async def test_dispatch_with_no_subscribers_is_a_no_op(dispatcher, store, queue):
    assert await dispatcher.dispatch("t1", "tenant.created", {}) == []
    assert queue.enqueued == []


async def test_invalid_url_fails_only_that_webhook(dispatcher, webhook_repo, store, queue):
    broken = await webhook_repo.create(make_webhook("not-a-url"))
    healthy = await webhook_repo.create(make_webhook("https://ok.example.com/hook"))

    attempts = await dispatcher.dispatch("t1", "tenant.created", {"n": 1})

    by_webhook = {a.webhook_id: a for a in attempts}
    assert by_webhook[broken.id].status == DeliveryStatus.FAILED
    assert "enqueue failed" in by_webhook[broken.id].last_error
    assert by_webhook[healthy.id].status == DeliveryStatus.PENDING
    assert [m.webhook_id for m, _ in queue.enqueued] == [healthy.id]

    stored = await store.get(by_webhook[broken.id].id)
    assert stored.status == DeliveryStatus.FAILED


async def test_queue_failure_fails_only_that_webhook(dispatcher, webhook_repo, store, queue):
    flaky = await webhook_repo.create(make_webhook("https://flaky.example.com/hook"))
    healthy = await webhook_repo.create(make_webhook("https://ok.example.com/hook"))
    queue.fail_for.add(flaky.id)

    attempts = await dispatcher.dispatch("t1", "tenant.created", {})

    by_webhook = {a.webhook_id: a for a in attempts}
    assert by_webhook[flaky.id].status == DeliveryStatus.FAILED
    assert "queue unavailable" in by_webhook[flaky.id].last_error
    assert by_webhook[healthy.id].status == DeliveryStatus.PENDING
    assert [m.webhook_id for m, _ in queue.enqueued] == [healthy.id]

    logs, total = await store.list_by_webhook(flaky.id)
    assert total == 1 and logs[0].status == DeliveryStatus.FAILED
