"""Correlation-id por request HTTP e por tarefa de cobrança."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Ids maiores que isso vindos do cliente são descartados.
MAX_CORRELATION_ID_LENGTH = 128

_current_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Correlation-id do contexto atual ("" fora de request/tarefa)."""

    return _current_correlation_id.get()


def set_correlation_id(value: str) -> None:
    """Fixa o correlation-id do contexto atual.

    Usado pelas tarefas de cobrança, que rodam fora de qualquer request
    e herdam uma cópia do contexto de quem as criou.
    """

    _current_correlation_id.set(value)


def _accept_incoming(value: str | None) -> str | None:
    if not value or len(value) > MAX_CORRELATION_ID_LENGTH or not value.isprintable():
        return None
    return value


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Propaga o header de correlação ou gera um uuid4 novo.

    O id fica disponível via get_correlation_id() durante o request e
    volta no mesmo header da resposta.
    """

    def __init__(self, app, header_name: str = "x-correlation-id") -> None:  # type: ignore[no-untyped-def]
        super().__init__(app)
        self._header_name = header_name.lower()

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        correlation_id = _accept_incoming(request.headers.get(self._header_name)) or uuid.uuid4().hex
        token = _current_correlation_id.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            _current_correlation_id.reset(token)
        response.headers[self._header_name] = correlation_id
        return response
