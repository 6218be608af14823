"""Fábrica da aplicação FastAPI."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from redis import asyncio as redis_asyncio

from advisor_billing.api.routes import router
from advisor_billing.application.billing.engine import BillingEngine
from advisor_billing.application.event_consumer import RealtimeEventConsumer
from advisor_billing.application.lifecycle import SessionLifecycleController
from advisor_billing.application.notifications.alerts import RealtimeAlertSink
from advisor_billing.application.notifications.hub import NotificationHub
from advisor_billing.application.publisher import EventPublisher
from advisor_billing.config.settings import Settings, get_settings
from advisor_billing.infra.dedupe import create_dedupe_store
from advisor_billing.infra.realtime import create_realtime_channel
from advisor_billing.infra.realtime_websocket import ConnectionManager
from advisor_billing.infra.session_store import (
    create_advisor_directory,
    create_session_store,
    create_wallet,
)
from advisor_billing.observability.logging import configure_logging, get_logger
from advisor_billing.observability.middleware import CorrelationIdMiddleware

logger = get_logger(__name__)


def _needs_redis(settings: Settings) -> bool:
    backends = (
        settings.session_store_backend,
        settings.wallet_backend,
        settings.advisor_directory_backend,
        settings.realtime_backend,
    )
    return any(b.lower() == "redis" for b in backends)


def _create_redis_client(redis_url: str | None) -> Any:
    """Cria cliente Redis assíncrono (conexão sob demanda)."""
    if not redis_url:
        raise ValueError("REDIS_URL não configurado para backend redis")
    logger.info("redis_client_configured", extra={"url": redis_url.split("@")[-1]})
    return redis_asyncio.from_url(redis_url, decode_responses=True)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await app.state.billing_engine.shutdown()
    await app.state.notification_hub.close_all()
    await app.state.publisher.channel.close()
    if app.state.redis_client is not None:
        await app.state.redis_client.aclose()
    logger.info("app_shutdown_complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Cria a aplicação FastAPI."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.service_name, settings.log_format)

    validation_errors = settings.validate_all()
    if validation_errors:
        error_msg = "; ".join(validation_errors)
        raise ValueError(f"Configuração inválida: {error_msg}")

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=_lifespan)
    app.add_middleware(CorrelationIdMiddleware, header_name=settings.correlation_id_header)
    app.include_router(router)

    redis_client = _create_redis_client(settings.redis_url) if _needs_redis(settings) else None
    connection_manager = (
        ConnectionManager() if settings.realtime_backend.lower() == "websocket" else None
    )

    app.state.settings = settings
    app.state.redis_client = redis_client
    app.state.connection_manager = connection_manager
    app.state.session_store = create_session_store(
        settings.session_store_backend, client=redis_client
    )
    app.state.wallet = create_wallet(settings, client=redis_client)
    app.state.advisor_directory = create_advisor_directory(settings, client=redis_client)
    app.state.publisher = EventPublisher(
        create_realtime_channel(settings, client=redis_client, manager=connection_manager)
    )
    app.state.billing_engine = BillingEngine(
        app.state.wallet,
        app.state.session_store,
        app.state.publisher,
        settings=settings,
    )
    app.state.lifecycle = SessionLifecycleController(
        app.state.session_store,
        app.state.wallet,
        app.state.advisor_directory,
        app.state.billing_engine,
        app.state.publisher,
        settings=settings,
    )
    app.state.notification_hub = NotificationHub(
        app.state.lifecycle, RealtimeAlertSink(app.state.publisher)
    )
    app.state.dedupe_store = create_dedupe_store(settings)
    app.state.event_consumer = RealtimeEventConsumer(app.state.dedupe_store)

    logger.info(
        "app_created",
        extra={"environment": settings.environment, "realtime_backend": settings.realtime_backend},
    )
    return app


app = create_app()
