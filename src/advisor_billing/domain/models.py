"""Modelos de domínio (contratos principais)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from advisor_billing.domain.session.states import TERMINAL_STATES, SessionStatus
from advisor_billing.utils.clock import utc_now


class Modality(StrEnum):
    """Modalidade do atendimento."""

    CHAT = "chat"
    VOICE = "voice"
    VIDEO = "video"


class TransactionType(StrEnum):
    """Tipos de lançamento no ledger."""

    SESSION_PAYMENT = "session_payment"
    """Débito do cliente por minutos de sessão."""

    EARNING = "earning"
    """Crédito do consultor (valor líquido de comissão)."""

    TOP_UP = "top_up"
    """Recarga de saldo."""


class Session(BaseModel):
    """Registro durável de uma sessão.

    Mutado apenas pelas transições do SessionLifecycleController.
    A tarifa é capturada no aceite e não muda depois.
    """

    id: str
    client_id: str
    advisor_id: str
    modality: Modality = Modality.CHAT
    status: SessionStatus = SessionStatus.PENDING_APPROVAL
    initial_message: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    rate_per_minute: Decimal | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_minutes: int | None = None
    amount: Decimal | None = None
    cancel_reason: str | None = None
    ended_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        """True quando o status não admite novas transições."""
        return self.status in TERMINAL_STATES

    def is_participant(self, user_id: str) -> bool:
        """True se user_id é o cliente ou o consultor da sessão."""
        return user_id in (self.client_id, self.advisor_id)


class Transaction(BaseModel):
    """Lançamento imutável do ledger (append-only)."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    type: TransactionType
    amount: Decimal
    reference_id: str | None = None
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class ChargeResult(BaseModel):
    """Resultado da cobrança atômica na carteira."""

    model_config = ConfigDict(frozen=True)

    committed: bool
    balance_after: Decimal
    amount: Decimal
    """Valor efetivamente aplicado (o original, em caso de replay)."""
    replayed: bool = False
    """True quando a chave de idempotência já havia sido aplicada."""


class BalanceCheck(BaseModel):
    """Resposta da verificação de saldo mínimo."""

    has_sufficient_balance: bool
    balance: Decimal
    required_amount: Decimal
