"""Motor de cobrança por minuto.

Cada sessão aceita ganha uma tarefa asyncio própria que, a cada tick
(billing_interval_seconds), converte o tempo decorrido em uma cobrança atômica na
carteira. Ciclo, encerramento e encerramento forçado da mesma sessão
são serializados pelo lock do registro; sessões diferentes nunca
disputam entre si.

Regras do ciclo:
- elapsed < 60 s: só atualiza a duração pendente (sem cobrança), qualquer que
  seja a cadência dos ticks
- senão: cobra ceil(elapsed / 60) minutos à tarifa capturada no aceite
- saldo insuficiente: nada muda, a sessão é encerrada à força
- falha de persistência: nada muda, o próximo ciclo repete com a mesma chave
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from advisor_billing.application.billing.models import (
    BillingSession,
    BillingStatus,
    BillingSummary,
    CycleOutcome,
)
from advisor_billing.application.billing.registry import BillingRegistry
from advisor_billing.application.publisher import EventPublisher
from advisor_billing.config.settings import Settings, get_settings
from advisor_billing.domain.errors import (
    InsufficientFundsError,
    PersistenceError,
    StaleStateError,
    ValidationError,
)
from advisor_billing.domain.events import BillingUpdate
from advisor_billing.domain.models import ChargeResult, Session
from advisor_billing.domain.money import to_money
from advisor_billing.domain.protocols.session_store import SessionStoreProtocol
from advisor_billing.domain.protocols.wallet import WalletProtocol
from advisor_billing.domain.session.states import SessionStatus
from advisor_billing.observability.logging import get_logger, short_id
from advisor_billing.observability.middleware import set_correlation_id
from advisor_billing.observability.timing import timed
from advisor_billing.utils.clock import Clock, utc_now
from advisor_billing.utils.ids import charge_idempotency_key

logger: logging.Logger = get_logger(__name__)

SECONDS_PER_MINUTE = 60
INSUFFICIENT_FUNDS_REASON = "insufficient_funds"

TerminationHandler = Callable[[str, str], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


def elapsed_seconds(since: datetime, now: datetime) -> int:
    """Segundos inteiros decorridos (floor, nunca negativo)."""
    return max(0, math.floor((now - since).total_seconds()))


def minutes_to_bill(seconds: int) -> int:
    """Minutos cobrados para um trecho de tempo (arredonda para cima)."""
    return math.ceil(seconds / SECONDS_PER_MINUTE)


class BillingEngine:
    """Medição e cobrança de sessões em andamento."""

    def __init__(
        self,
        wallet: WalletProtocol,
        session_store: SessionStoreProtocol,
        publisher: EventPublisher,
        registry: BillingRegistry | None = None,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        sleep: SleepFn = asyncio.sleep,
        auto_schedule: bool = True,
    ) -> None:
        settings = settings or get_settings()
        self._wallet = wallet
        self._sessions = session_store
        self._publisher = publisher
        self._registry = registry or BillingRegistry(settings.billing_grace_seconds)
        self._interval = settings.billing_interval_seconds
        self._settle_partial = settings.settle_partial_minute_on_end
        self._finalize_retries = settings.finalize_max_retries
        self._finalize_backoff = settings.finalize_retry_backoff_seconds
        self._clock = clock
        self._sleep = sleep
        self._auto_schedule = auto_schedule
        self._on_insufficient_funds: TerminationHandler | None = None

    @property
    def registry(self) -> BillingRegistry:
        return self._registry

    def bind_termination_handler(self, handler: TerminationHandler) -> None:
        """Define quem encerra a sessão quando o saldo acaba (lifecycle.force_end)."""
        self._on_insufficient_funds = handler

    async def start_billing_session(self, session: Session) -> BillingSession:
        """Registra a medição de uma sessão recém-aceita e agenda os ciclos.

        Raises:
            ValidationError: Sessão sem tarifa ou start_time
            StaleStateError: Já existe cobrança registrada para o id
        """
        if session.rate_per_minute is None or session.start_time is None:
            raise ValidationError(f"Sessão {session.id} sem tarifa/início para cobrança")

        entry = BillingSession(
            session_id=session.id,
            client_id=session.client_id,
            advisor_id=session.advisor_id,
            rate_per_minute=session.rate_per_minute,
            start_time=session.start_time,
            last_billing_time=session.start_time,
        )
        self._registry.register(entry)

        logger.info(
            "billing_started",
            extra={
                "session_id": short_id(session.id),
                "rate_per_minute": str(session.rate_per_minute),
                "interval_seconds": self._interval,
            },
        )
        await self._publisher.publish(self._snapshot(entry))

        if self._auto_schedule:
            entry.task = asyncio.create_task(
                self._run_loop(session.id), name=f"billing:{session.id}"
            )
        return entry

    async def run_cycle(self, session_id: str) -> CycleOutcome:
        """Executa um ciclo de cobrança (no máximo um em voo por sessão)."""
        update: BillingUpdate | None = None
        out_of_funds = False

        async with self._registry.exclusive(session_id) as entry:
            if entry is None or not entry.is_active or entry.terminating:
                return CycleOutcome.SKIPPED

            now = self._clock()
            elapsed = elapsed_seconds(entry.last_billing_time, now)
            if elapsed < SECONDS_PER_MINUTE:
                entry.pending_seconds = elapsed
                return CycleOutcome.ACCUMULATED

            amount = to_money(entry.rate_per_minute * minutes_to_bill(elapsed))
            try:
                result = await self._charge(entry, amount)
            except PersistenceError as e:
                logger.warning(
                    "billing_cycle_aborted",
                    extra={
                        "session_id": short_id(session_id),
                        "cycle": entry.cycles_committed + 1,
                        "error": str(e),
                    },
                )
                return CycleOutcome.ABORTED

            if result.committed:
                self._commit(entry, elapsed, now, result)
                update = self._snapshot(entry)
            else:
                entry.terminating = True
                out_of_funds = True

        if out_of_funds:
            logger.info(
                "billing_insufficient_funds",
                extra={"session_id": short_id(session_id), "amount": str(amount)},
            )
            await self._terminate_for_funds(session_id)
            return CycleOutcome.INSUFFICIENT_FUNDS

        if update is not None:
            await self._publisher.publish(update)
        return CycleOutcome.CHARGED

    async def end_billing_session(
        self,
        session_id: str,
        target: SessionStatus = SessionStatus.COMPLETED,
        *,
        settle: bool | None = None,
        cancel_reason: str | None = None,
        ended_by: str | None = None,
    ) -> BillingSummary | None:
        """Encerra a medição e grava os totais finais na sessão.

        Espera o ciclo em voo terminar (mesmo lock), liquida o minuto
        parcial se `settle`, faz a transição in_progress -> target e
        grava duração/valor uma única vez.

        Returns:
            BillingSummary, ou None se a cobrança já estava inativa/desconhecida

        Raises:
            StaleStateError: Sessão não estava mais in_progress no store
            PersistenceError: Finalização falhou após os retries
        """
        settle = self._settle_partial if settle is None else settle

        async with self._registry.exclusive(session_id) as entry:
            if entry is None or not entry.is_active:
                logger.info("billing_end_ignored", extra={"session_id": short_id(session_id)})
                return None

            now = self._clock()
            try:
                if settle:
                    await self._settle_tail(entry, now)
                duration = minutes_to_bill(entry.billed_seconds)
                changes: dict[str, Any] = {}
                if cancel_reason is not None:
                    changes["cancel_reason"] = cancel_reason
                if ended_by is not None:
                    changes["ended_by"] = ended_by
                await self._sessions.transition_status(
                    session_id, SessionStatus.IN_PROGRESS, target, **changes
                )
                session = await self._finalize(session_id, duration, entry.total_billed, now)
            finally:
                entry.is_active = False
                entry.pending_seconds = 0
                self._cancel_task(entry)
                self._registry.retire(session_id)

        logger.info(
            "billing_ended",
            extra={
                "session_id": short_id(session_id),
                "status": target,
                "duration_minutes": duration,
                "amount": str(entry.total_billed),
                "cycles": entry.cycles_committed,
            },
        )
        return BillingSummary(
            session_id=session_id,
            duration_minutes=duration,
            amount=entry.total_billed,
            cycles=entry.cycles_committed,
            session=session,
        )

    def get_billing_status(self, session_id: str) -> BillingStatus | None:
        """Snapshot da cobrança em memória (None se desconhecida)."""
        entry = self._registry.get(session_id)
        if entry is None:
            return None
        pending = 0
        if entry.is_active:
            pending = elapsed_seconds(entry.last_billing_time, self._clock())
        return BillingStatus(
            session_id=session_id,
            is_active=entry.is_active,
            duration_seconds=entry.billed_seconds + pending,
            total_billed=entry.total_billed,
            rate_per_minute=entry.rate_per_minute,
        )

    async def shutdown(self) -> None:
        """Cancela todas as tarefas de cobrança (desligamento do processo)."""
        tasks = [e.task for e in self._registry.active() if e.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("billing_engine_shutdown", extra={"cancelled_tasks": len(tasks)})
        self._registry.clear()

    async def _run_loop(self, session_id: str) -> None:
        set_correlation_id(f"billing-{session_id[:8]}")
        try:
            while True:
                await self._sleep(self._interval)
                entry = self._registry.get(session_id)
                if entry is None or not entry.is_active:
                    return
                try:
                    outcome = await self.run_cycle(session_id)
                except Exception:
                    logger.exception(
                        "billing_cycle_failed", extra={"session_id": short_id(session_id)}
                    )
                    continue
                if outcome in (CycleOutcome.INSUFFICIENT_FUNDS, CycleOutcome.SKIPPED):
                    return
        except asyncio.CancelledError:
            logger.debug("billing_loop_cancelled", extra={"session_id": short_id(session_id)})
            raise

    async def _charge(self, entry: BillingSession, amount: Decimal) -> ChargeResult:
        key = charge_idempotency_key(entry.session_id, entry.cycles_committed + 1)
        try:
            with timed("billing_cycle", session_id=short_id(entry.session_id)):
                return await self._wallet.apply_charge(
                    entry.client_id,
                    entry.advisor_id,
                    amount,
                    reference_id=entry.session_id,
                    idempotency_key=key,
                )
        except InsufficientFundsError:
            balance = entry.last_balance if entry.last_balance is not None else Decimal("0")
            return ChargeResult(committed=False, balance_after=balance, amount=amount)

    def _commit(
        self,
        entry: BillingSession,
        seconds: int,
        now: datetime,
        result: ChargeResult,
    ) -> None:
        amount = result.amount
        requested = to_money(entry.rate_per_minute * minutes_to_bill(seconds))
        if result.replayed and amount != requested:
            # Replay de um ciclo cuja resposta se perdeu: só o trecho pago avança.
            paid_minutes = int(amount / entry.rate_per_minute)
            seconds = min(seconds, paid_minutes * SECONDS_PER_MINUTE)
            now = entry.last_billing_time + timedelta(seconds=seconds)

        entry.billed_seconds += seconds
        entry.pending_seconds = 0
        entry.total_billed += amount
        entry.cycles_committed += 1
        entry.charges.append(amount)
        entry.last_billing_time = now
        entry.last_balance = result.balance_after
        logger.info(
            "billing_cycle_committed",
            extra={
                "session_id": short_id(entry.session_id),
                "cycle": entry.cycles_committed,
                "amount": str(amount),
                "total_billed": str(entry.total_billed),
            },
        )

    async def _settle_tail(self, entry: BillingSession, now: datetime) -> None:
        """Cobra o trecho desde o último ciclo, arredondado para cima."""
        tail = elapsed_seconds(entry.last_billing_time, now)
        if tail <= 0:
            return
        amount = to_money(entry.rate_per_minute * minutes_to_bill(tail))
        try:
            result = await self._charge(entry, amount)
        except PersistenceError as e:
            logger.error(
                "final_settlement_failed",
                extra={"session_id": short_id(entry.session_id), "error": str(e)},
            )
            return
        if not result.committed:
            logger.info(
                "final_settlement_insufficient_funds",
                extra={"session_id": short_id(entry.session_id), "amount": str(amount)},
            )
            return
        self._commit(entry, tail, now, result)

    async def _finalize(
        self, session_id: str, duration: int, amount: Decimal, end_time: datetime
    ) -> Session:
        write_uncertain = False
        for attempt in range(1, self._finalize_retries + 1):
            try:
                return await self._sessions.finalize(session_id, duration, amount, end_time)
            except StaleStateError:
                if not write_uncertain:
                    raise
                # A tentativa anterior pode ter gravado e perdido só a resposta.
                stored = await self._sessions.get(session_id)
                if stored is None or (stored.duration_minutes, stored.amount, stored.end_time) != (
                    duration,
                    amount,
                    end_time,
                ):
                    raise
                logger.info(
                    "session_finalize_confirmed",
                    extra={"session_id": short_id(session_id), "attempt": attempt},
                )
                return stored
            except PersistenceError as e:
                write_uncertain = True
                if attempt == self._finalize_retries:
                    logger.error(
                        "session_finalize_failed",
                        extra={"session_id": short_id(session_id), "attempts": attempt},
                    )
                    raise
                logger.warning(
                    "session_finalize_retry",
                    extra={"session_id": short_id(session_id), "attempt": attempt, "error": str(e)},
                )
                await self._sleep(self._finalize_backoff * attempt)
        raise PersistenceError(f"Finalização não executada para {session_id}")

    async def _terminate_for_funds(self, session_id: str) -> None:
        if self._on_insufficient_funds is not None:
            await self._on_insufficient_funds(session_id, INSUFFICIENT_FUNDS_REASON)
            return
        await self.end_billing_session(
            session_id,
            SessionStatus.CANCELLED,
            settle=False,
            cancel_reason=INSUFFICIENT_FUNDS_REASON,
            ended_by="system",
        )

    def _cancel_task(self, entry: BillingSession) -> None:
        task = entry.task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    def _snapshot(self, entry: BillingSession) -> BillingUpdate:
        return BillingUpdate(
            session_id=entry.session_id,
            room=entry.session_id,
            seq=entry.cycles_committed,
            duration_seconds=entry.billed_seconds,
            amount_billed=entry.total_billed,
            current_balance=entry.last_balance,
        )
