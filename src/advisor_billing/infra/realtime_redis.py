"""Canal em tempo real via Redis Pub/Sub."""

from __future__ import annotations

import logging
from typing import Any

from advisor_billing.domain.errors import TransportError
from advisor_billing.domain.events import RealtimeEvent
from advisor_billing.domain.protocols.realtime import RealtimeChannelProtocol
from advisor_billing.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class RedisRealtimeChannel(RealtimeChannelProtocol):
    """Publica o JSON do evento no canal `{prefix}{room}`."""

    def __init__(self, redis_client: Any, channel_prefix: str = "realtime:") -> None:
        self._redis = redis_client
        self._channel_prefix = channel_prefix

    def channel_for(self, room: str) -> str:
        return f"{self._channel_prefix}{room}"

    async def publish(self, event: RealtimeEvent) -> None:
        try:
            receivers = await self._redis.publish(
                self.channel_for(event.room), event.model_dump_json()
            )
        except Exception as e:
            logger.error(
                "Falha ao publicar evento (Redis)",
                extra={"event_type": event.type, "error_type": type(e).__name__},
            )
            raise TransportError(f"Redis publish failed: {e}") from e

        logger.debug(
            "event_published (Redis)",
            extra={"event_type": event.type, "receivers": receivers},
        )
