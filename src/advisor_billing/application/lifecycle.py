"""SessionLifecycleController: máquina de estados da sessão.

Único ponto que muda o status de uma sessão. Inicia e encerra o
BillingEngine e publica os eventos de cada transição.

Regra de desempate: a primeira transição confirmada no session store
(compare-and-set sobre o status) vence; as demais recebem
StaleStateError, que os chamadores tratam como no-op.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from advisor_billing.application.billing.engine import (
    INSUFFICIENT_FUNDS_REASON,
    BillingEngine,
    elapsed_seconds,
    minutes_to_bill,
)
from advisor_billing.application.billing.models import BillingStatus
from advisor_billing.application.publisher import EventPublisher
from advisor_billing.config.settings import Settings, get_settings
from advisor_billing.domain.errors import (
    InsufficientFundsError,
    SessionNotFoundError,
    StaleStateError,
    UnauthorizedError,
    ValidationError,
)
from advisor_billing.domain.events import (
    BillingStart,
    BillingStop,
    ChatRejected,
    ChatRequest,
    ChatResponse,
    InsufficientFunds,
    SessionEnded,
)
from advisor_billing.domain.models import BalanceCheck, Modality, Session, TransactionType
from advisor_billing.domain.money import ZERO, to_money
from advisor_billing.domain.protocols.advisor_directory import AdvisorDirectoryProtocol
from advisor_billing.domain.protocols.session_store import SessionStoreProtocol
from advisor_billing.domain.protocols.wallet import WalletProtocol
from advisor_billing.domain.session.events import SessionAction
from advisor_billing.domain.session.states import SessionStatus
from advisor_billing.domain.session.transitions import validate_transition
from advisor_billing.observability.logging import get_logger, short_id
from advisor_billing.utils.clock import Clock, utc_now
from advisor_billing.utils.ids import new_session_id

logger: logging.Logger = get_logger(__name__)

SYSTEM_ACTOR = "system"
DECLINED_REASON = "declined"
CLIENT_CANCELLED_REASON = "client_cancelled"


def _require_id(value: str | None, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} é obrigatório")
    return value.strip()


class SessionLifecycleController:
    """Orquestra request → accept/decline → end/force_end."""

    def __init__(
        self,
        session_store: SessionStoreProtocol,
        wallet: WalletProtocol,
        advisor_directory: AdvisorDirectoryProtocol,
        engine: BillingEngine,
        publisher: EventPublisher,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        settings = settings or get_settings()
        self._sessions = session_store
        self._wallet = wallet
        self._directory = advisor_directory
        self._engine = engine
        self._publisher = publisher
        self._threshold = to_money(settings.min_funding_threshold)
        self._clock = clock
        engine.bind_termination_handler(self.force_end)

    @property
    def min_funding_threshold(self) -> Decimal:
        return self._threshold

    async def check_balance(
        self, user_id: str, required_amount: Decimal | None = None
    ) -> BalanceCheck:
        """Verifica se o saldo cobre o mínimo exigido (padrão: limiar de admissão)."""
        user_id = _require_id(user_id, "user_id")
        required = to_money(required_amount) if required_amount is not None else self._threshold
        balance = await self._wallet.get_balance(user_id)
        return BalanceCheck(
            has_sufficient_balance=balance >= required,
            balance=balance,
            required_amount=required,
        )

    async def get_session(self, session_id: str) -> Session:
        """Carrega a sessão ou levanta SessionNotFoundError."""
        session_id = _require_id(session_id, "session_id")
        session = await self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Sessão não encontrada: {session_id}")
        return session

    async def request_session(
        self,
        client_id: str,
        advisor_id: str,
        modality: Modality = Modality.CHAT,
        initial_message: str | None = None,
    ) -> Session:
        """Cria uma sessão pending_approval se o cliente passa na admissão.

        Raises:
            ValidationError: Ids ausentes ou cliente == consultor
            InsufficientFundsError: Saldo abaixo do limiar (sessão não é criada)
        """
        client_id = _require_id(client_id, "client_id")
        advisor_id = _require_id(advisor_id, "advisor_id")
        if client_id == advisor_id:
            raise ValidationError("Cliente e consultor devem ser usuários distintos")

        check = await self.check_balance(client_id)
        if not check.has_sufficient_balance:
            logger.info(
                "session_request_rejected_insufficient_funds",
                extra={"client_id": short_id(client_id), "required": str(check.required_amount)},
            )
            raise InsufficientFundsError(
                f"Saldo {check.balance} abaixo do mínimo {check.required_amount}"
            )

        session = await self._sessions.create(
            Session(
                id=new_session_id(),
                client_id=client_id,
                advisor_id=advisor_id,
                modality=modality,
                initial_message=initial_message,
            )
        )
        logger.info(
            "session_requested",
            extra={"session_id": short_id(session.id), "modality": session.modality},
        )
        await self._publisher.publish(
            ChatRequest(
                session_id=session.id,
                room=advisor_id,
                client_id=client_id,
                advisor_id=advisor_id,
                modality=session.modality,
                initial_message=initial_message,
            )
        )
        return session

    async def accept_session(self, session_id: str, advisor_id: str | None = None) -> Session:
        """pending_approval → in_progress; captura a tarifa e inicia a cobrança.

        Raises:
            UnauthorizedError: Ator não é o consultor da sessão
            StaleStateError: Sessão não está pending_approval (corrida perdida)
            InsufficientFundsError: Saldo do cliente caiu abaixo do limiar
        """
        session = await self.get_session(session_id)
        if advisor_id is not None and advisor_id != session.advisor_id:
            raise UnauthorizedError("Apenas o consultor da sessão pode aceitá-la")

        ok, target, reason = validate_transition(session.status, SessionAction.ACCEPT)
        if not ok or target is None:
            raise StaleStateError(reason)

        check = await self.check_balance(session.client_id)
        if not check.has_sufficient_balance:
            raise InsufficientFundsError(
                f"Saldo {check.balance} abaixo do mínimo {check.required_amount}"
            )

        rate = await self._directory.get_rate(session.advisor_id)
        started = await self._sessions.transition_status(
            session.id,
            SessionStatus.PENDING_APPROVAL,
            target,
            rate_per_minute=rate,
            start_time=self._clock(),
        )
        logger.info(
            "session_accepted",
            extra={"session_id": short_id(session.id), "rate_per_minute": str(rate)},
        )

        await self._engine.start_billing_session(started)
        await self._publisher.publish(
            ChatResponse(session_id=session.id, room=session.id, accepted=True),
            BillingStart(
                session_id=session.id,
                room=session.id,
                advisor_id=session.advisor_id,
                client_id=session.client_id,
            ),
        )
        return started

    async def decline_session(
        self,
        session_id: str,
        reason: str | None = None,
        advisor_id: str | None = None,
    ) -> Session:
        """pending_approval → cancelled. No-op se a sessão já é terminal.

        Raises:
            UnauthorizedError: Ator não é o consultor da sessão
            StaleStateError: Sessão já foi aceita
        """
        session = await self.get_session(session_id)
        if advisor_id is not None and advisor_id != session.advisor_id:
            raise UnauthorizedError("Apenas o consultor da sessão pode recusá-la")

        if session.is_terminal:
            logger.info(
                "session_decline_noop",
                extra={"session_id": short_id(session.id), "status": session.status},
            )
            return session

        ok, target, why = validate_transition(session.status, SessionAction.DECLINE)
        if not ok or target is None:
            raise StaleStateError(why)

        reason = reason or DECLINED_REASON
        declined = await self._cancel_pending(session, target, reason)
        if declined is None:
            return await self.get_session(session.id)

        logger.info(
            "session_declined",
            extra={"session_id": short_id(session.id), "reason": reason},
        )
        await self._publisher.publish(
            ChatResponse(session_id=session.id, room=session.id, accepted=False),
            ChatRejected(session_id=session.id, room=session.id, reason=reason),
        )
        return declined

    async def cancel_request(self, session_id: str, client_id: str) -> Session:
        """Cliente retira uma solicitação ainda pendente. No-op se terminal.

        Raises:
            UnauthorizedError: Ator não é o cliente da sessão
            StaleStateError: Sessão já em andamento (use end_session)
        """
        session = await self.get_session(session_id)
        if client_id != session.client_id:
            raise UnauthorizedError("Apenas o cliente da sessão pode cancelar a solicitação")

        if session.is_terminal:
            return session

        ok, target, why = validate_transition(session.status, SessionAction.CLIENT_CANCEL)
        if not ok or target is None:
            raise StaleStateError(why)

        cancelled = await self._cancel_pending(session, target, CLIENT_CANCELLED_REASON)
        if cancelled is None:
            return await self.get_session(session.id)

        logger.info("session_request_cancelled", extra={"session_id": short_id(session.id)})
        await self._publisher.publish(
            SessionEnded(session_id=session.id, room=session.advisor_id, ended_by=client_id)
        )
        return cancelled

    async def end_session(self, session_id: str, ended_by: str) -> Session:
        """Encerra a sessão em andamento. Idempotente para sessões terminais.

        Raises:
            UnauthorizedError: `ended_by` não participa da sessão
            StaleStateError: Sessão ainda pendente (use decline/cancel)
        """
        ended_by = _require_id(ended_by, "ended_by")
        session = await self.get_session(session_id)
        if not session.is_participant(ended_by):
            raise UnauthorizedError("Apenas participantes podem encerrar a sessão")

        if session.is_terminal:
            logger.info(
                "session_end_noop",
                extra={"session_id": short_id(session.id), "status": session.status},
            )
            return session

        ok, _, why = validate_transition(session.status, SessionAction.END)
        if not ok:
            raise StaleStateError(why)

        summary = await self._engine.end_billing_session(
            session.id, SessionStatus.COMPLETED, ended_by=ended_by
        )
        if summary is not None:
            final = summary.session
        else:
            untracked = await self._end_untracked(session, ended_by)
            if untracked is None:
                return await self.get_session(session.id)
            final = untracked

        logger.info(
            "session_ended",
            extra={
                "session_id": short_id(session.id),
                "duration_minutes": final.duration_minutes,
                "amount": str(final.amount),
            },
        )
        await self._publisher.publish(
            BillingStop(session_id=session.id, room=session.id),
            SessionEnded(session_id=session.id, room=session.id, ended_by=ended_by),
        )
        return final

    async def force_end(
        self, session_id: str, reason: str = INSUFFICIENT_FUNDS_REASON
    ) -> Session | None:
        """in_progress → cancelled, com os totais até a última cobrança confirmada.

        Returns:
            Sessão finalizada, ou None se outro ator encerrou antes
        """
        summary = await self._engine.end_billing_session(
            session_id,
            SessionStatus.CANCELLED,
            settle=False,
            cancel_reason=reason,
            ended_by=SYSTEM_ACTOR,
        )
        if summary is None:
            return None

        logger.warning(
            "session_force_ended",
            extra={
                "session_id": short_id(session_id),
                "reason": reason,
                "amount": str(summary.amount),
            },
        )
        events = []
        if reason == INSUFFICIENT_FUNDS_REASON:
            events.append(InsufficientFunds(session_id=session_id, room=session_id))
        events.append(SessionEnded(session_id=session_id, room=session_id, ended_by=SYSTEM_ACTOR))
        await self._publisher.publish(*events)
        return summary.session

    async def get_billing_status(self, session_id: str) -> BillingStatus:
        """Cobrança em memória se ativa; senão, totais persistidos."""
        status = self._engine.get_billing_status(session_id)
        if status is not None:
            return status

        session = await self.get_session(session_id)
        return BillingStatus(
            session_id=session.id,
            is_active=False,
            duration_seconds=(session.duration_minutes or 0) * 60,
            total_billed=session.amount if session.amount is not None else ZERO,
            rate_per_minute=session.rate_per_minute,
        )

    async def _cancel_pending(
        self, session: Session, target: SessionStatus, reason: str
    ) -> Session | None:
        """CAS pending → cancelled; None se a sessão já ficou terminal por outro ator."""
        try:
            return await self._sessions.transition_status(
                session.id,
                SessionStatus.PENDING_APPROVAL,
                target,
                cancel_reason=reason,
            )
        except StaleStateError:
            current = await self.get_session(session.id)
            if current.is_terminal:
                logger.info("session_cancel_noop", extra={"session_id": short_id(session.id)})
                return None
            raise

    async def _end_untracked(self, session: Session, ended_by: str) -> Session | None:
        """Encerra sessão in_progress sem cobrança em memória (ex.: após restart).

        O valor final vem do ledger, então continua igual à soma das cobranças.
        """
        try:
            await self._sessions.transition_status(
                session.id,
                SessionStatus.IN_PROGRESS,
                SessionStatus.COMPLETED,
                ended_by=ended_by,
            )
        except StaleStateError:
            logger.info("session_end_lost_race", extra={"session_id": short_id(session.id)})
            return None

        ledger = await self._wallet.transactions_for(session.id)
        amount = to_money(
            sum(
                (t.amount for t in ledger if t.type == TransactionType.SESSION_PAYMENT),
                ZERO,
            )
        )
        now = self._clock()
        duration = 0
        if session.start_time is not None:
            duration = minutes_to_bill(elapsed_seconds(session.start_time, now))
        logger.warning(
            "session_ended_without_billing_entry",
            extra={"session_id": short_id(session.id), "amount": str(amount)},
        )
        return await self._sessions.finalize(session.id, duration, amount, now)
