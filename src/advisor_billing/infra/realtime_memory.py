"""Canal em tempo real em memória (dev/testes)."""

from __future__ import annotations

import logging

from advisor_billing.domain.errors import TransportError
from advisor_billing.domain.events import RealtimeEvent
from advisor_billing.domain.protocols.realtime import RealtimeChannelProtocol
from advisor_billing.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class InMemoryRealtimeChannel(RealtimeChannelProtocol):
    """Registra eventos publicados, em ordem.

    `fail_publishes` simula um transporte indisponível.
    """

    def __init__(self) -> None:
        self.published: list[RealtimeEvent] = []
        self.fail_publishes: bool = False

    async def publish(self, event: RealtimeEvent) -> None:
        if self.fail_publishes:
            raise TransportError(f"Canal indisponível para {event.type}")
        self.published.append(event)
        logger.debug("event_published (in-memory)", extra={"event_type": event.type})

    def events_for(self, room: str, event_type: str | None = None) -> list[RealtimeEvent]:
        """Eventos de uma sala (opcionalmente filtrados por tipo)."""
        return [
            e
            for e in self.published
            if e.room == room and (event_type is None or e.type == event_type)
        ]

    def of_type(self, event_type: str) -> list[RealtimeEvent]:
        return [e for e in self.published if e.type == event_type]
