"""Publicação best-effort de eventos em tempo real.

Falha de transporte nunca desfaz estado de sessão ou carteira: o erro é
registrado e a operação de negócio segue.
"""

from __future__ import annotations

import logging

from advisor_billing.domain.errors import TransportError
from advisor_billing.domain.events import RealtimeEvent
from advisor_billing.domain.protocols.realtime import RealtimeChannelProtocol
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)


class EventPublisher:
    """Envolve o canal e absorve TransportError."""

    def __init__(self, channel: RealtimeChannelProtocol) -> None:
        self._channel = channel

    @property
    def channel(self) -> RealtimeChannelProtocol:
        return self._channel

    async def publish(self, *events: RealtimeEvent) -> int:
        """Publica os eventos em ordem; retorna quantos foram entregues."""
        delivered = 0
        for event in events:
            try:
                await self._channel.publish(event)
            except TransportError as e:
                logger.warning(
                    "event_delivery_failed",
                    extra={
                        "event_type": event.type,
                        "session_id": short_id(event.session_id),
                        "idempotency_key": event.idempotency_key,
                        "error": str(e),
                    },
                )
                continue
            delivered += 1
        return delivered
