"""Eventos publicados no canal em tempo real.

Cada evento tem uma sala (room) de destino e uma chave de idempotência
estável; consumidores deduplicam por essa chave. `billing_update` é um
snapshot: vale o de maior `seq`.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from advisor_billing.domain.models import Modality
from advisor_billing.utils.clock import utc_now


class RealtimeEvent(BaseModel):
    """Envelope comum a todos os eventos."""

    model_config = ConfigDict(frozen=True)

    type: str
    session_id: str
    room: str
    emitted_at: datetime = Field(default_factory=utc_now)

    def key_discriminator(self) -> str:
        """Parte variável da chave de idempotência (vazia = uma vez por sessão)."""
        return ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def idempotency_key(self) -> str:
        suffix = self.key_discriminator()
        base = f"{self.session_id}:{self.type}"
        return f"{base}:{suffix}" if suffix else base


class BillingUpdate(RealtimeEvent):
    type: Literal["billing_update"] = "billing_update"
    seq: int
    duration_seconds: int
    amount_billed: Decimal
    current_balance: Decimal | None = None

    def key_discriminator(self) -> str:
        return str(self.seq)


class InsufficientFunds(RealtimeEvent):
    type: Literal["insufficient_funds"] = "insufficient_funds"


class ChatResponse(RealtimeEvent):
    type: Literal["chat_response"] = "chat_response"
    accepted: bool


class ChatRejected(RealtimeEvent):
    type: Literal["chat_rejected"] = "chat_rejected"
    reason: str | None = None


class SessionEnded(RealtimeEvent):
    type: Literal["session_ended"] = "session_ended"
    ended_by: str


class BillingStart(RealtimeEvent):
    type: Literal["billing_start"] = "billing_start"
    advisor_id: str
    client_id: str


class BillingStop(RealtimeEvent):
    type: Literal["billing_stop"] = "billing_stop"


class ChatRequest(RealtimeEvent):
    """Nova solicitação, entregue na sala do consultor."""

    type: Literal["chat_request"] = "chat_request"
    client_id: str
    advisor_id: str
    modality: Modality = Modality.CHAT
    initial_message: str | None = None


class AdvisorAlert(RealtimeEvent):
    """Sinal de alerta (som/toast) para o consultor."""

    type: Literal["advisor_alert"] = "advisor_alert"
    client_id: str


class AdvisorAlertCancelled(RealtimeEvent):
    type: Literal["advisor_alert_cancelled"] = "advisor_alert_cancelled"
    muted: bool = False
