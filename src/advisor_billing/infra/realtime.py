"""Fábrica do canal em tempo real."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from advisor_billing.domain.protocols.realtime import RealtimeChannelProtocol
from advisor_billing.infra.realtime_memory import InMemoryRealtimeChannel
from advisor_billing.infra.realtime_redis import RedisRealtimeChannel
from advisor_billing.infra.realtime_websocket import ConnectionManager, WebSocketRealtimeChannel
from advisor_billing.observability.logging import get_logger

if TYPE_CHECKING:
    from advisor_billing.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def create_realtime_channel(
    settings: Settings,
    client: Any | None = None,
    manager: ConnectionManager | None = None,
) -> RealtimeChannelProtocol:
    """Cria o canal conforme settings.realtime_backend (memory | redis | websocket)."""
    backend = settings.realtime_backend.lower()
    logger.info("Canal em tempo real configurado", extra={"backend": backend})

    if backend == "memory":
        return InMemoryRealtimeChannel()
    if backend == "redis":
        if client is None:
            raise ValueError("realtime_backend=redis requer cliente Redis")
        return RedisRealtimeChannel(client, channel_prefix=settings.realtime_channel_prefix)
    if backend == "websocket":
        return WebSocketRealtimeChannel(manager or ConnectionManager())
    raise ValueError(f"Backend de tempo real não reconhecido: {backend}")
