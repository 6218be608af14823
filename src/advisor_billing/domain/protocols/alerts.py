"""Contrato de alertas ao consultor (som/toast)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from advisor_billing.application.notifications.announcements import SessionAnnouncement


class AlertHandle(ABC):
    """Handle para cancelar um alerta já disparado."""

    @abstractmethod
    async def cancel(self, *, muted: bool = False) -> None:
        """Cancela o sinal; chamadas repetidas são no-op."""
        ...


class AlertSinkProtocol(ABC):
    """Dispara alertas de nova solicitação."""

    @abstractmethod
    async def raise_alert(self, announcement: SessionAnnouncement) -> AlertHandle:
        """Dispara o alerta e retorna o handle de cancelamento."""
        ...
