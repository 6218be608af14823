"""Adaptadores de canal → anúncio interno de sessão pendente.

A mesma solicitação pode chegar por vários canais: evento de socket
(com vários nomes históricos), feed de mudanças do banco ou evento
reemitido localmente. Todos viram um único SessionAnnouncement; a
deduplicação acontece só no NotificationCoordinator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from advisor_billing.domain.errors import ValidationError
from advisor_billing.domain.models import Modality
from advisor_billing.domain.session.states import SessionStatus

SOCKET_EVENT_NAMES: frozenset[str] = frozenset({
    "chat_request",
    "chat_request_notification",
    "new_chat_request",
    "incoming_chat_request",
    "local_pending_session",
})

CHANGE_FEED_CHANNEL = "change_feed"


@dataclass(frozen=True)
class SessionAnnouncement:
    """Sinal interno: "há uma sessão pendente para este consultor"."""

    session_id: str
    client_id: str
    advisor_id: str
    modality: Modality = Modality.CHAT
    client_name: str | None = None
    initial_message: str | None = None
    channel: str = "chat_request"


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _build(payload: dict[str, Any], channel: str) -> SessionAnnouncement:
    session_id = _pick(payload, "session_id", "sessionId", "id")
    client_id = _pick(payload, "client_id", "clientId")
    advisor_id = _pick(payload, "advisor_id", "advisorId")
    if not (session_id and client_id and advisor_id):
        raise ValidationError(f"Anúncio incompleto no canal {channel}")

    raw_modality = _pick(payload, "modality", "type") or Modality.CHAT
    try:
        modality = Modality(str(raw_modality))
    except ValueError as e:
        raise ValidationError(f"Modalidade inválida: {raw_modality}") from e

    return SessionAnnouncement(
        session_id=str(session_id),
        client_id=str(client_id),
        advisor_id=str(advisor_id),
        modality=modality,
        client_name=_pick(payload, "client_name", "clientName"),
        initial_message=_pick(payload, "initial_message", "initialMessage"),
        channel=channel,
    )


def from_socket_event(event_name: str, payload: dict[str, Any]) -> SessionAnnouncement:
    """Traduz qualquer um dos eventos de socket de solicitação."""
    if event_name not in SOCKET_EVENT_NAMES:
        raise ValidationError(f"Evento de socket desconhecido: {event_name}")
    return _build(payload, event_name)


def from_change_feed(change: dict[str, Any]) -> SessionAnnouncement | None:
    """Traduz um INSERT de sessão pendente; demais mudanças são ignoradas."""
    event_type = str(_pick(change, "eventType", "event_type", "type") or "").upper()
    if event_type != "INSERT":
        return None
    table = change.get("table")
    if table is not None and table != "sessions":
        return None

    record = _pick(change, "new", "record")
    if not isinstance(record, dict):
        raise ValidationError("Mudança sem registro novo")
    if record.get("status") != SessionStatus.PENDING_APPROVAL:
        return None
    return _build(record, CHANGE_FEED_CHANNEL)


def translate(channel: str, payload: dict[str, Any]) -> SessionAnnouncement | None:
    """Roteia para o adaptador do canal.

    Raises:
        ValidationError: Canal desconhecido ou payload incompleto
    """
    if channel == CHANGE_FEED_CHANNEL:
        return from_change_feed(payload)
    return from_socket_event(channel, payload)
