import asyncio

import pytest
from aiohttp import ClientSession, web

from webhook_service.main import create_app
from webhook_service.repositories.memory import InMemoryDeliveryStore, InMemoryWebhookRepository
from webhook_service.services.delivery import DeliveryWorker
from webhook_service.services.dispatcher import DeliveryDispatcher
from webhook_service.services.registry import WebhookRegistry
from webhook_service.settings import Settings

from tests.utils import Receiver, RecordingQueue


@pytest.fixture
async def receiver(aiohttp_server):
    """A real HTTP endpoint standing in for a tenant's webhook receiver."""
    state = Receiver()

    async def handler(request: web.Request) -> web.Response:
        raw = await request.read()
        state.requests.append(({k: v for k, v in request.headers.items()}, raw))
        if state.delay_seconds:
            await asyncio.sleep(state.delay_seconds)
        status = state.next_status()
        if state.raw_body is not None:
            return web.Response(
                body=state.raw_body, status=status, headers={"Content-Type": state.content_type}
            )
        return web.json_response({"received": True}, status=status)

    app = web.Application()
    app.router.add_post("/hook", handler)
    server = await aiohttp_server(app)
    state.url = str(server.make_url("/hook"))
    return state


@pytest.fixture
async def http_session():
    session = ClientSession()
    yield session
    await session.close()


@pytest.fixture
def webhook_repo():
    return InMemoryWebhookRepository()


@pytest.fixture
def store():
    return InMemoryDeliveryStore()


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def registry(webhook_repo):
    return WebhookRegistry(webhook_repo)


@pytest.fixture
def dispatcher(webhook_repo, store, queue):
    return DeliveryDispatcher(webhook_repo, store, queue)


@pytest.fixture
def worker(webhook_repo, store, queue, http_session):
    return DeliveryWorker(
        webhook_repo,
        store,
        queue,
        http_session,
        request_timeout_seconds=0.5,
    )


@pytest.fixture
def app_settings():
    return Settings(
        storage_backend="memory",
        delivery_worker_concurrency=2,
        delivery_poll_timeout_seconds=0.05,
        worker_interval_seconds=3600,
        webhook_request_timeout_seconds=1.0,
    )


@pytest.fixture
async def service_client(aiohttp_client, app_settings):
    """Client for calling the service API backed by the in-memory storage."""
    app = create_app(app_settings)
    return await aiohttp_client(app)
