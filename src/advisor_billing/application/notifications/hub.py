"""Roteia anúncios e ações do consultor para o coordenador de cada consultor."""

from __future__ import annotations

import logging
from typing import Any

from advisor_billing.application.lifecycle import SessionLifecycleController
from advisor_billing.application.notifications.announcements import translate
from advisor_billing.application.notifications.coordinator import (
    AnnounceOutcome,
    NotificationCoordinator,
    ResolutionOutcome,
    new_resolved_window,
)
from advisor_billing.domain.protocols.alerts import AlertSinkProtocol
from advisor_billing.infra.dedupe import DedupeStore
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)


class NotificationHub:
    """Um NotificationCoordinator por consultor com pendências.

    Coordenadores são criados sob demanda e descartados assim que ficam
    ociosos; ids resolvidos vivem numa janela compartilhada, então um
    coordenador recriado continua ignorando reanúncios tardios.
    """

    def __init__(
        self,
        lifecycle: SessionLifecycleController,
        alert_sink: AlertSinkProtocol,
        resolved: DedupeStore | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._alert_sink = alert_sink
        self._resolved = resolved if resolved is not None else new_resolved_window()
        self._coordinators: dict[str, NotificationCoordinator] = {}

    def __len__(self) -> int:
        return len(self._coordinators)

    def get(self, advisor_id: str) -> NotificationCoordinator | None:
        return self._coordinators.get(advisor_id)

    def coordinator_for(self, advisor_id: str) -> NotificationCoordinator:
        coordinator = self._coordinators.get(advisor_id)
        if coordinator is None:
            coordinator = NotificationCoordinator(
                advisor_id, self._lifecycle, self._alert_sink, resolved=self._resolved
            )
            self._coordinators[advisor_id] = coordinator
        return coordinator

    async def ingest(self, channel: str, payload: dict[str, Any]) -> AnnounceOutcome:
        """Traduz o payload do canal e entrega ao coordenador do consultor."""
        announcement = translate(channel, payload)
        if announcement is None:
            logger.debug("announcement_ignored", extra={"channel": channel})
            return AnnounceOutcome.IGNORED
        try:
            return await self.coordinator_for(announcement.advisor_id).announce(announcement)
        finally:
            self._drop_if_idle(announcement.advisor_id)

    async def accept(self, advisor_id: str, session_id: str) -> ResolutionOutcome:
        try:
            return await self.coordinator_for(advisor_id).accept(session_id)
        finally:
            self._drop_if_idle(advisor_id)

    async def decline(
        self, advisor_id: str, session_id: str, reason: str | None = None
    ) -> ResolutionOutcome:
        try:
            return await self.coordinator_for(advisor_id).decline(session_id, reason)
        finally:
            self._drop_if_idle(advisor_id)

    async def mute(self, advisor_id: str, session_id: str) -> bool:
        """Silencia o alerta; consultor sem coordenador não tem nada pendente."""
        coordinator = self._coordinators.get(advisor_id)
        if coordinator is None:
            return False
        return await coordinator.mute(session_id)

    async def close(self, advisor_id: str) -> None:
        coordinator = self._coordinators.pop(advisor_id, None)
        if coordinator is not None:
            await coordinator.close()

    async def close_all(self) -> None:
        for advisor_id in list(self._coordinators):
            await self.close(advisor_id)

    def _drop_if_idle(self, advisor_id: str) -> None:
        coordinator = self._coordinators.get(advisor_id)
        if coordinator is not None and coordinator.is_idle:
            del self._coordinators[advisor_id]
            logger.debug("coordinator_released", extra={"advisor_id": short_id(advisor_id)})
