"""NotificationCoordinator: um alerta por sessão pendente, por consultor.

Responsabilidades:
- Deduplicar anúncios vindos de canais diferentes
- Conferir o anúncio contra o session store (ids e status pending_approval)
- Pré-checar saldo do cliente e recusar automaticamente sem alertar
- Arbitrar accept/decline: o compare-and-set do session store decide,
  o perdedor vira "no longer available" com log de warning
"""

from __future__ import annotations

import logging
from enum import StrEnum

from advisor_billing.application.billing.engine import INSUFFICIENT_FUNDS_REASON
from advisor_billing.application.lifecycle import SessionLifecycleController
from advisor_billing.application.notifications.announcements import SessionAnnouncement
from advisor_billing.domain.errors import (
    InsufficientFundsError,
    SessionNotFoundError,
    StaleStateError,
)
from advisor_billing.domain.models import Session
from advisor_billing.domain.protocols.alerts import AlertHandle, AlertSinkProtocol
from advisor_billing.domain.session.states import SessionStatus
from advisor_billing.infra.dedupe import DedupeStore, InMemoryDedupeStore
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)

# Janela em que ids já resolvidos continuam bloqueando reanúncios.
RESOLVED_TTL_SECONDS = 3600
RESOLVED_MAX_ENTRIES = 10_000


class AnnounceOutcome(StrEnum):
    """Resultado de um anúncio."""

    ANNOUNCED = "announced"
    DUPLICATE = "duplicate"
    """Já anunciado, já resolvido ou a sessão não está mais pendente."""
    AUTO_DECLINED = "auto_declined"
    IGNORED = "ignored"
    """Outro consultor, sessão inexistente ou ids divergentes do store."""


class ResolutionOutcome(StrEnum):
    """Resultado de accept/decline do ponto de vista do consultor."""

    ACCEPTED = "accepted"
    DECLINED = "declined"
    AUTO_DECLINED = "auto_declined"
    NO_LONGER_AVAILABLE = "no_longer_available"


def new_resolved_window() -> DedupeStore:
    """Janela com TTL e teto de entradas para ids resolvidos."""
    return InMemoryDedupeStore(
        ttl_seconds=RESOLVED_TTL_SECONDS, max_entries=RESOLVED_MAX_ENTRIES
    )


class NotificationCoordinator:
    """Estado de notificações de um consultor."""

    def __init__(
        self,
        advisor_id: str,
        lifecycle: SessionLifecycleController,
        alert_sink: AlertSinkProtocol,
        resolved: DedupeStore | None = None,
    ) -> None:
        self._advisor_id = advisor_id
        self._lifecycle = lifecycle
        self._alert_sink = alert_sink
        self._resolved = resolved if resolved is not None else new_resolved_window()
        self._pending: dict[str, SessionAnnouncement] = {}
        self._alerts: dict[str, AlertHandle] = {}
        self._in_flight: set[str] = set()
        self._resolving = 0

    @property
    def advisor_id(self) -> str:
        return self._advisor_id

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    @property
    def is_idle(self) -> bool:
        """Sem pendências, alertas ou chamadas em andamento."""
        return not (self._pending or self._alerts or self._in_flight or self._resolving)

    def is_pending(self, session_id: str) -> bool:
        return session_id in self._pending

    def is_alerting(self, session_id: str) -> bool:
        return session_id in self._alerts

    async def announce(self, announcement: SessionAnnouncement) -> AnnounceOutcome:
        """Alerta o consultor uma única vez por sessão pendente.

        O payload do canal só identifica a sessão; cliente, consultor e
        status valem o que está no session store.
        """
        session_id = announcement.session_id
        if announcement.advisor_id != self._advisor_id:
            return AnnounceOutcome.IGNORED

        if (
            session_id in self._pending
            or session_id in self._in_flight
            or self._resolved.contains(self._resolved_key(session_id))
        ):
            logger.debug(
                "announcement_duplicate",
                extra={"session_id": short_id(session_id), "channel": announcement.channel},
            )
            return AnnounceOutcome.DUPLICATE

        # Reserva antes do primeiro await: anúncios concorrentes param aqui.
        self._in_flight.add(session_id)
        try:
            session = await self._stored_session(session_id)
            if session is None or not self._matches(announcement, session):
                logger.warning(
                    "announcement_mismatch",
                    extra={"session_id": short_id(session_id), "channel": announcement.channel},
                )
                return AnnounceOutcome.IGNORED

            if session.status != SessionStatus.PENDING_APPROVAL:
                self._mark_resolved(session_id)
                logger.info(
                    "announcement_not_pending",
                    extra={"session_id": short_id(session_id), "status": session.status},
                )
                return AnnounceOutcome.DUPLICATE

            check = await self._lifecycle.check_balance(session.client_id)
            if not check.has_sufficient_balance:
                self._mark_resolved(session_id)
                await self._auto_decline(session_id)
                return AnnounceOutcome.AUTO_DECLINED

            self._pending[session_id] = announcement
            self._alerts[session_id] = await self._alert_sink.raise_alert(announcement)
        finally:
            self._in_flight.discard(session_id)

        logger.info(
            "advisor_alerted",
            extra={"session_id": short_id(session_id), "channel": announcement.channel},
        )
        return AnnounceOutcome.ANNOUNCED

    async def mute(self, session_id: str) -> bool:
        """Silencia o alerta; a solicitação continua pendente.

        Returns:
            True se a sessão segue pendente para este consultor
        """
        handle = self._alerts.pop(session_id, None)
        if handle is not None:
            await handle.cancel(muted=True)
        return session_id in self._pending

    async def accept(self, session_id: str) -> ResolutionOutcome:
        """Revalida saldo e delega o aceite; limpa entrada e alerta sempre."""
        self._resolving += 1
        try:
            session = await self._lifecycle.get_session(session_id)
            check = await self._lifecycle.check_balance(session.client_id)
            if not check.has_sufficient_balance:
                return await self._auto_decline(session_id)
            try:
                await self._lifecycle.accept_session(session_id, advisor_id=self._advisor_id)
            except InsufficientFundsError:
                return await self._auto_decline(session_id)
            return ResolutionOutcome.ACCEPTED
        except StaleStateError as e:
            logger.warning(
                "session_no_longer_available",
                extra={"session_id": short_id(session_id), "action": "accept", "reason": str(e)},
            )
            return ResolutionOutcome.NO_LONGER_AVAILABLE
        finally:
            self._resolving -= 1
            await self._clear(session_id)

    async def decline(self, session_id: str, reason: str | None = None) -> ResolutionOutcome:
        """Delega a recusa; limpa entrada e alerta incondicionalmente."""
        self._resolving += 1
        try:
            await self._lifecycle.decline_session(
                session_id, reason=reason, advisor_id=self._advisor_id
            )
            return ResolutionOutcome.DECLINED
        except StaleStateError as e:
            logger.warning(
                "session_no_longer_available",
                extra={"session_id": short_id(session_id), "action": "decline", "reason": str(e)},
            )
            return ResolutionOutcome.NO_LONGER_AVAILABLE
        finally:
            self._resolving -= 1
            await self._clear(session_id)

    async def close(self) -> None:
        """Cancela todos os alertas (consultor ficou offline)."""
        for session_id in list(self._alerts):
            await self._alerts.pop(session_id).cancel()
        self._pending.clear()

    async def _stored_session(self, session_id: str) -> Session | None:
        try:
            return await self._lifecycle.get_session(session_id)
        except SessionNotFoundError:
            return None

    @staticmethod
    def _matches(announcement: SessionAnnouncement, session: Session) -> bool:
        return (
            announcement.client_id == session.client_id
            and announcement.advisor_id == session.advisor_id
        )

    def _resolved_key(self, session_id: str) -> str:
        return f"{self._advisor_id}:{session_id}"

    def _mark_resolved(self, session_id: str) -> None:
        self._resolved.claim(self._resolved_key(session_id))

    async def _auto_decline(self, session_id: str) -> ResolutionOutcome:
        try:
            await self._lifecycle.decline_session(
                session_id, reason=INSUFFICIENT_FUNDS_REASON, advisor_id=self._advisor_id
            )
        except StaleStateError as e:
            logger.warning(
                "auto_decline_skipped",
                extra={"session_id": short_id(session_id), "reason": str(e)},
            )
            return ResolutionOutcome.NO_LONGER_AVAILABLE
        logger.info("session_auto_declined", extra={"session_id": short_id(session_id)})
        return ResolutionOutcome.AUTO_DECLINED

    async def _clear(self, session_id: str) -> None:
        self._pending.pop(session_id, None)
        self._mark_resolved(session_id)
        handle = self._alerts.pop(session_id, None)
        if handle is not None:
            await handle.cancel()
