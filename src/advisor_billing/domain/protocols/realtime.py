"""Contrato do canal de eventos em tempo real (at-least-once)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from advisor_billing.domain.events import RealtimeEvent


class RealtimeChannelProtocol(ABC):
    """Entrega eventos tipados para a sala de destino.

    Apenas notificação: nunca é fonte de verdade para dinheiro ou status.
    """

    @abstractmethod
    async def publish(self, event: RealtimeEvent) -> None:
        """Publica o evento na sala `event.room`.

        Raises:
            TransportError: Falha na entrega
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Libera recursos do transporte (opcional)."""
