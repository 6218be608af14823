"""Estado efêmero da cobrança por sessão."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from advisor_billing.domain.models import Session
from advisor_billing.domain.money import ZERO


class CycleOutcome(StrEnum):
    """Resultado de um ciclo de cobrança."""

    CHARGED = "charged"
    """Cobrança aplicada e totais atualizados."""

    ACCUMULATED = "accumulated"
    """Menos de um intervalo decorrido; apenas a duração pendente mudou."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    """Saldo não cobre o ciclo; sessão encerrada à força."""

    ABORTED = "aborted"
    """Falha de persistência; nada mudou e o próximo ciclo repete a tentativa."""

    SKIPPED = "skipped"
    """Sessão desconhecida, inativa ou em encerramento."""


@dataclass(slots=True)
class BillingSession:
    """Medição de uma sessão ativa (uma por session_id).

    `lock` serializa ciclo, encerramento e encerramento forçado.
    `billed_seconds` só avança quando uma cobrança é confirmada.
    """

    session_id: str
    client_id: str
    advisor_id: str
    rate_per_minute: Decimal
    start_time: datetime
    last_billing_time: datetime
    billed_seconds: int = 0
    pending_seconds: int = 0
    total_billed: Decimal = ZERO
    cycles_committed: int = 0
    charges: list[Decimal] = field(default_factory=list)
    last_balance: Decimal | None = None
    is_active: bool = True
    terminating: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    task: asyncio.Task[None] | None = None


@dataclass(frozen=True)
class BillingSummary:
    """Totais finais gravados no encerramento."""

    session_id: str
    duration_minutes: int
    amount: Decimal
    cycles: int
    session: Session


@dataclass(frozen=True)
class BillingStatus:
    """Visão consultável da cobrança (tela do cliente/consultor)."""

    session_id: str
    is_active: bool
    duration_seconds: int
    total_billed: Decimal
    rate_per_minute: Decimal | None
