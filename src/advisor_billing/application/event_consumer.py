"""Consumidor de eventos em tempo real (cliente/consultor).

O canal entrega at-least-once e sem ordem garantida. O consumidor:
- descarta repetições pela chave de idempotência do evento
- mantém, por sessão, apenas o billing_update de maior `seq`
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from pydantic import Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from advisor_billing.domain.errors import ValidationError
from advisor_billing.domain.events import (
    AdvisorAlert,
    AdvisorAlertCancelled,
    BillingStart,
    BillingStop,
    BillingUpdate,
    ChatRejected,
    ChatRequest,
    ChatResponse,
    InsufficientFunds,
    RealtimeEvent,
    SessionEnded,
)
from advisor_billing.infra.dedupe import DedupeStore
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)

AnyRealtimeEvent = Annotated[
    BillingUpdate
    | InsufficientFunds
    | ChatResponse
    | ChatRejected
    | SessionEnded
    | BillingStart
    | BillingStop
    | ChatRequest
    | AdvisorAlert
    | AdvisorAlertCancelled,
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(AnyRealtimeEvent)


def parse_event(payload: dict[str, Any] | str | bytes) -> RealtimeEvent:
    """Reconstrói o evento tipado a partir do payload do canal.

    Raises:
        ValidationError: Payload sem `type` conhecido ou campos inválidos
    """
    try:
        if isinstance(payload, (str, bytes)):
            return _EVENT_ADAPTER.validate_json(payload)
        return _EVENT_ADAPTER.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Evento inválido: {e.error_count()} erro(s)") from e


class RealtimeEventConsumer:
    """Aplica eventos recebidos uma única vez, na ordem que importa."""

    def __init__(self, dedupe_store: DedupeStore) -> None:
        self._dedupe = dedupe_store
        self._latest_billing: dict[str, BillingUpdate] = {}

    def consume(self, payload: dict[str, Any] | str | bytes) -> RealtimeEvent | None:
        """Processa um evento bruto.

        Returns:
            O evento, se novo e relevante; None se duplicado ou obsoleto
        """
        event = parse_event(payload)
        if not self._dedupe.claim(event.idempotency_key):
            logger.debug(
                "event_duplicate_dropped",
                extra={"session_id": short_id(event.session_id), "event_type": event.type},
            )
            return None

        if isinstance(event, BillingUpdate):
            current = self._latest_billing.get(event.session_id)
            if current is not None and current.seq >= event.seq:
                logger.debug(
                    "billing_update_stale",
                    extra={
                        "session_id": short_id(event.session_id),
                        "seq": event.seq,
                        "latest_seq": current.seq,
                    },
                )
                return None
            self._latest_billing[event.session_id] = event
        elif isinstance(event, SessionEnded):
            self.forget(event.session_id)
        return event

    def latest_billing(self, session_id: str) -> BillingUpdate | None:
        return self._latest_billing.get(session_id)

    def forget(self, session_id: str) -> None:
        self._latest_billing.pop(session_id, None)
