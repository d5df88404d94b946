"""aiohttp application entrypoint."""
from __future__ import annotations

import structlog
from aiohttp import ClientSession, ClientTimeout, web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from webhook_service.api.router import setup_routes
from webhook_service.db.migrations import apply_migrations
from webhook_service.db.pool import close_pool, init_pool
from webhook_service.domain.webhooks import RetryConfig
from webhook_service.logging_config import configure_logging
from webhook_service.middleware.trace import create_trace_middleware
from webhook_service.otel import setup_otel
from webhook_service.queue import InMemoryDeliveryQueue, PostgresDeliveryQueue
from webhook_service.repositories.deliveries import PostgresDeliveryStore
from webhook_service.repositories.memory import InMemoryDeliveryStore, InMemoryWebhookRepository
from webhook_service.repositories.webhooks import PostgresWebhookRepository
from webhook_service.services.delivery import DeliveryWorker
from webhook_service.services.dependencies import COMPONENTS_KEY, Components
from webhook_service.services.dispatcher import DeliveryDispatcher
from webhook_service.services.registry import WebhookRegistry
from webhook_service.services.worker_pool import DeliveryWorkerPool
from webhook_service.settings import Settings, get_settings
from webhook_service.workers import build_background_worker

logger = structlog.get_logger(__name__)

SETTINGS_KEY = "settings"
_HTTP_SESSION_KEY = "webhook_http_session"
_WORKER_POOL_KEY = "delivery_worker_pool"
_BACKGROUND_WORKER_KEY = "background_worker"


async def _build_storage(settings: Settings):
    if settings.storage_backend == "memory":
        return (
            InMemoryWebhookRepository(),
            InMemoryDeliveryStore(),
            InMemoryDeliveryQueue(
                visibility_timeout_seconds=settings.delivery_visibility_timeout_seconds
            ),
        )
    await apply_migrations(str(settings.database_url))
    pool = await init_pool(settings)
    return (
        PostgresWebhookRepository(pool),
        PostgresDeliveryStore(pool),
        PostgresDeliveryQueue(
            pool, visibility_timeout_seconds=settings.delivery_visibility_timeout_seconds
        ),
    )


async def start_components(app: web.Application) -> None:
    """Wire repositories, queue and services, then start the worker loops."""
    settings: Settings = app[SETTINGS_KEY]
    webhooks, store, queue = await _build_storage(settings)

    session = ClientSession(timeout=ClientTimeout(total=settings.webhook_request_timeout_seconds))
    app[_HTTP_SESSION_KEY] = session

    worker = DeliveryWorker(
        webhooks,
        store,
        queue,
        session,
        request_timeout_seconds=settings.webhook_request_timeout_seconds,
        response_max_chars=settings.webhook_response_max_chars,
    )
    app[COMPONENTS_KEY] = Components(
        registry=WebhookRegistry(
            webhooks,
            default_retry_config=RetryConfig(
                max_attempts=settings.webhook_default_max_attempts,
                base_delay_ms=settings.webhook_default_base_delay_ms,
                backoff_rate=settings.webhook_default_backoff_rate,
            ),
        ),
        dispatcher=DeliveryDispatcher(webhooks, store, queue),
        worker=worker,
        store=store,
        queue=queue,
    )

    pool = DeliveryWorkerPool(
        worker,
        queue,
        concurrency=settings.delivery_worker_concurrency,
        poll_timeout_seconds=settings.delivery_poll_timeout_seconds,
        max_receive_count=settings.delivery_max_receive_count,
    )
    app[_WORKER_POOL_KEY] = pool
    await pool.start()

    background = build_background_worker(settings, store, queue)
    app[_BACKGROUND_WORKER_KEY] = background
    await background.start(app)

    logger.info("webhook service components started", storage_backend=settings.storage_backend)


async def stop_components(app: web.Application) -> None:
    background = app.get(_BACKGROUND_WORKER_KEY)
    if background is not None:
        await background.stop(app)
    pool = app.get(_WORKER_POOL_KEY)
    if pool is not None:
        await pool.stop()
    session = app.get(_HTTP_SESSION_KEY)
    if session is not None:
        await session.close()
    await close_pool()


async def healthcheck(request: web.Request) -> web.Response:
    settings: Settings = request.app[SETTINGS_KEY]
    return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})


def create_app(settings: Settings | None = None) -> web.Application:
    settings = settings or get_settings()
    configure_logging(settings.log_level, service=settings.app_name, env=settings.env)

    app = web.Application()
    app[SETTINGS_KEY] = settings

    app.middlewares.append(create_trace_middleware(settings.app_name))

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=("X-Trace-Id", "X-Request-Id"),
                allow_headers="*",
                allow_methods=("GET", "POST", "PATCH", "DELETE", "OPTIONS"),
            )
            for origin in settings.cors_allowed_origins
        },
    )

    app.router.add_get("/health", healthcheck)
    setup_routes(app)
    setup_otel(app, settings)
    app.on_startup.append(start_components)
    app.on_cleanup.append(stop_components)

    for route in list(app.router.routes()):
        cors.add(route)

    return app


def main() -> None:
    settings = get_settings()
    web.run_app(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
