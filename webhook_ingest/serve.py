"""FastAPI app for the webhook ingest backend.

Service objects (event store, verifiers, dispatcher, account client)
are constructed once here and handed to the routes by reference.

Run with: python -m webhook_ingest.serve
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from webhook_ingest import __version__
from webhook_ingest.accounts import HttpAccountClient
from webhook_ingest.config import Settings, configure_logging, load_settings
from webhook_ingest.webhooks.dispatcher import build_dispatcher
from webhook_ingest.webhooks.handlers import register_webhook_routes
from webhook_ingest.webhooks.idempotency import HandlerGuard
from webhook_ingest.webhooks.pipeline import WebhookServices
from webhook_ingest.webhooks.store import EventStore, InMemoryEventStore, PostgresEventStore
from webhook_ingest.webhooks.verification import build_verifiers

logger = logging.getLogger(__name__)

HEALTH_TEXT = "Webhook ingest backend is running"


def build_store(settings: Settings) -> EventStore:
    if settings.event_store == "memory":
        return InMemoryEventStore()
    return PostgresEventStore(
        settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )


def build_services(settings: Settings) -> WebhookServices:
    """Construct every long-lived collaborator from settings."""
    accounts = None
    if settings.accounts_url:
        accounts = HttpAccountClient(
            settings.accounts_url, timeout=settings.accounts_timeout_seconds
        )
    guard = HandlerGuard.from_url(settings.redis_url) if settings.redis_url else None
    return WebhookServices(
        store=build_store(settings),
        verifiers=build_verifiers(settings),
        dispatcher=build_dispatcher(accounts, guard),
        accounts=accounts,
    )


def create_app(settings: Settings | None = None, services: WebhookServices | None = None) -> FastAPI:
    """Build the FastAPI app. Tests pass their own services."""
    settings = settings or load_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.store.open()
        logger.info("Webhook ingest backend started (store=%s)", type(services.store).__name__)
        try:
            yield
        finally:
            services.store.close()
            if isinstance(services.accounts, HttpAccountClient):
                services.accounts.close()

    app = FastAPI(title="Webhook Ingest", version=__version__, lifespan=lifespan)
    app.state.services = services

    @app.get("/health", response_class=PlainTextResponse)
    async def health():
        """Liveness probe — no auth."""
        return HEALTH_TEXT

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return HEALTH_TEXT

    register_webhook_routes(app, services)
    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
