"""Rotas HTTP e WebSocket do núcleo de sessões e cobrança."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from advisor_billing.api.dependencies import (
    get_event_consumer,
    get_lifecycle,
    get_notification_hub,
    get_settings,
)
from advisor_billing.application.event_consumer import RealtimeEventConsumer
from advisor_billing.application.lifecycle import SessionLifecycleController
from advisor_billing.application.notifications.coordinator import ResolutionOutcome
from advisor_billing.application.notifications.hub import NotificationHub
from advisor_billing.config.settings import Settings
from advisor_billing.domain.errors import (
    BillingCoreError,
    InsufficientFundsError,
    PersistenceError,
    SessionNotFoundError,
    StaleStateError,
    TransportError,
    UnauthorizedError,
    ValidationError,
)
from advisor_billing.domain.models import Modality
from advisor_billing.infra.dedupe import DedupeError
from advisor_billing.observability.logging import get_logger, short_id
from advisor_billing.observability.middleware import get_correlation_id

logger = get_logger(__name__)

router = APIRouter()


class CreateSessionRequest(BaseModel):
    client_id: str
    advisor_id: str
    modality: Modality = Modality.CHAT
    initial_message: str | None = None


class AdvisorActionRequest(BaseModel):
    advisor_id: str
    reason: str | None = None


class CancelRequest(BaseModel):
    client_id: str


class EndRequest(BaseModel):
    ended_by: str


class BalanceCheckRequest(BaseModel):
    required_amount: Decimal | None = None


# Ordem importa: SessionNotFoundError é subclasse de ValidationError.
_STATUS_BY_ERROR: tuple[tuple[type[BillingCoreError], int, str], ...] = (
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND, "session_not_found"),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN, "unauthorized"),
    (StaleStateError, status.HTTP_409_CONFLICT, "stale_state"),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED, "insufficient_funds"),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE, "persistence_unavailable"),
    (TransportError, status.HTTP_503_SERVICE_UNAVAILABLE, "transport_unavailable"),
)


def _to_http_error(exc: BillingCoreError) -> HTTPException:
    for error_type, status_code, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(
                status_code=status_code,
                detail={
                    "error": code,
                    "message": str(exc),
                    "correlation_id": get_correlation_id(),
                },
            )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal_error")


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except BillingCoreError as exc:
        logger.info(
            "request_rejected",
            extra={"error_type": type(exc).__name__, "error": str(exc)},
        )
        raise _to_http_error(exc) from exc


_RESOLUTION_ERRORS: dict[ResolutionOutcome, tuple[int, str]] = {
    ResolutionOutcome.AUTO_DECLINED: (status.HTTP_402_PAYMENT_REQUIRED, "insufficient_funds"),
    ResolutionOutcome.NO_LONGER_AVAILABLE: (status.HTTP_409_CONFLICT, "no_longer_available"),
}


def _raise_for_resolution(outcome: ResolutionOutcome) -> None:
    error = _RESOLUTION_ERRORS.get(outcome)
    if error is None:
        return
    status_code, code = error
    raise HTTPException(
        status_code=status_code,
        detail={"error": code, "correlation_id": get_correlation_id()},
    )


@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Healthcheck simples."""
    return {"status": "ok", "service": settings.service_name, "version": settings.version}


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(
    body: CreateSessionRequest,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
) -> dict[str, Any]:
    """Cliente solicita uma sessão (admissão pelo saldo mínimo)."""
    with _domain_errors():
        session = await lifecycle.request_session(
            body.client_id,
            body.advisor_id,
            modality=body.modality,
            initial_message=body.initial_message,
        )
    return session.model_dump(mode="json")


@router.get("/sessions/{session_id}")
async def read_session(
    session_id: str,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
) -> dict[str, Any]:
    with _domain_errors():
        session = await lifecycle.get_session(session_id)
    return session.model_dump(mode="json")


@router.get("/sessions/{session_id}/billing")
async def read_billing_status(
    session_id: str,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
) -> dict[str, Any]:
    """Duração e total cobrado (em memória se ativa, persistido caso contrário)."""
    with _domain_errors():
        billing = await lifecycle.get_billing_status(session_id)
    return {
        "session_id": billing.session_id,
        "is_active": billing.is_active,
        "duration_seconds": billing.duration_seconds,
        "total_billed": str(billing.total_billed),
        "rate_per_minute": (
            str(billing.rate_per_minute) if billing.rate_per_minute is not None else None
        ),
    }


@router.post("/sessions/{session_id}/accept")
async def accept_session(
    session_id: str,
    body: AdvisorActionRequest,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
    hub: NotificationHub = Depends(get_notification_hub),
) -> dict[str, Any]:
    """Consultor aceita; perdedor de corrida recebe 409."""
    with _domain_errors():
        outcome = await hub.accept(body.advisor_id, session_id)
        _raise_for_resolution(outcome)
        session = await lifecycle.get_session(session_id)
    return {"outcome": outcome, "session": session.model_dump(mode="json")}


@router.post("/sessions/{session_id}/decline")
async def decline_session(
    session_id: str,
    body: AdvisorActionRequest,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
    hub: NotificationHub = Depends(get_notification_hub),
) -> dict[str, Any]:
    with _domain_errors():
        outcome = await hub.decline(body.advisor_id, session_id, body.reason)
        _raise_for_resolution(outcome)
        session = await lifecycle.get_session(session_id)
    return {"outcome": outcome, "session": session.model_dump(mode="json")}


@router.post("/sessions/{session_id}/mute")
async def mute_session_alert(
    session_id: str,
    body: AdvisorActionRequest,
    hub: NotificationHub = Depends(get_notification_hub),
) -> dict[str, Any]:
    """Silencia o alerta sem recusar a solicitação."""
    pending = await hub.mute(body.advisor_id, session_id)
    return {"session_id": session_id, "pending": pending}


@router.post("/sessions/{session_id}/cancel")
async def cancel_session_request(
    session_id: str,
    body: CancelRequest,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
) -> dict[str, Any]:
    with _domain_errors():
        session = await lifecycle.cancel_request(session_id, body.client_id)
    return session.model_dump(mode="json")


@router.post("/sessions/{session_id}/end")
async def end_session(
    session_id: str,
    body: EndRequest,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
) -> dict[str, Any]:
    """Encerra a sessão; repetir o pedido devolve o mesmo registro final."""
    with _domain_errors():
        session = await lifecycle.end_session(session_id, body.ended_by)
    return session.model_dump(mode="json")


@router.post("/wallets/{user_id}/balance-check")
async def balance_check(
    user_id: str,
    body: BalanceCheckRequest | None = None,
    lifecycle: SessionLifecycleController = Depends(get_lifecycle),
) -> dict[str, Any]:
    required = body.required_amount if body is not None else None
    with _domain_errors():
        check = await lifecycle.check_balance(user_id, required)
    return check.model_dump(mode="json")


@router.post("/announcements/{source}")
async def ingest_announcement(
    source: str,
    payload: dict[str, Any] = Body(...),
    hub: NotificationHub = Depends(get_notification_hub),
) -> dict[str, Any]:
    """Recebe anúncios de sessão pendente de qualquer canal (socket ou feed)."""
    with _domain_errors():
        outcome = await hub.ingest(source, payload)
    return {"ok": True, "outcome": outcome, "correlation_id": get_correlation_id()}


@router.post("/events")
def ingest_event(
    payload: dict[str, Any] = Body(...),
    consumer: RealtimeEventConsumer = Depends(get_event_consumer),
) -> dict[str, Any]:
    """Entrega at-least-once de um evento do canal (relay/bridge).

    Rota síncrona: o dedupe em Redis usa cliente bloqueante e roda no threadpool.
    """
    try:
        with _domain_errors():
            event = consumer.consume(payload)
    except DedupeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "dedupe_unavailable", "correlation_id": get_correlation_id()},
        ) from exc
    return {
        "applied": event is not None,
        "type": event.type if event is not None else None,
        "correlation_id": get_correlation_id(),
    }


@router.get("/sessions/{session_id}/billing/latest")
def read_latest_billing_update(
    session_id: str,
    consumer: RealtimeEventConsumer = Depends(get_event_consumer),
) -> dict[str, Any]:
    """Último billing_update aplicado (maior seq) de uma sessão ativa."""
    update = consumer.latest_billing(session_id)
    if update is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "billing_update_not_found", "correlation_id": get_correlation_id()},
        )
    return update.model_dump(mode="json")


@router.websocket("/ws/{room}")
async def realtime_socket(websocket: WebSocket, room: str) -> None:
    """Assina os eventos de uma sala (sessão ou consultor)."""
    manager = websocket.app.state.connection_manager
    if manager is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(room, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("websocket_client_left", extra={"room": short_id(room)})
    finally:
        await manager.disconnect(room, websocket)
