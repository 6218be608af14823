"""Session store em memória para desenvolvimento e testes.

⚠️ Não usar em produção!
- Não persiste entre restarts
- Não funciona com múltiplas instâncias
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from advisor_billing.domain.errors import SessionNotFoundError, StaleStateError, ValidationError
from advisor_billing.domain.models import Session
from advisor_billing.domain.protocols.session_store import SessionStoreProtocol
from advisor_billing.domain.session.states import SessionStatus
from advisor_billing.domain.session.transitions import is_allowed_change
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)


class InMemorySessionStore(SessionStoreProtocol):
    """Sessões num dicionário; compare-and-set sob asyncio.Lock.

    Leituras devolvem cópias, então quem chama nunca altera o registro
    sem passar por transition_status/finalize.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self.finalize_writes: int = 0

    async def create(self, session: Session) -> Session:
        async with self._lock:
            if session.id in self._sessions:
                raise ValidationError(f"Sessão já existe: {session.id}")
            self._sessions[session.id] = session.model_copy(deep=True)
        logger.debug("Session created (in-memory)", extra={"session_id": short_id(session.id)})
        return session.model_copy(deep=True)

    async def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug(
                "Session not found (in-memory)",
                extra={"session_id": short_id(session_id)},
            )
            return None
        return session.model_copy(deep=True)

    async def transition_status(
        self,
        session_id: str,
        expected: SessionStatus,
        target: SessionStatus,
        **changes: Any,
    ) -> Session:
        if not is_allowed_change(expected, target):
            raise ValidationError(f"Transição não permitida: {expected} -> {target}")

        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFoundError(f"Sessão não encontrada: {session_id}")
            if current.status != expected:
                raise StaleStateError(
                    f"Sessão {session_id} está em {current.status}, esperado {expected}"
                )
            updated = current.model_copy(update={**changes, "status": target}, deep=True)
            self._sessions[session_id] = updated

        logger.debug(
            "Session status changed (in-memory)",
            extra={"session_id": short_id(session_id), "from": expected, "to": target},
        )
        return updated.model_copy(deep=True)

    async def finalize(
        self,
        session_id: str,
        duration_minutes: int,
        amount: Decimal,
        end_time: datetime,
    ) -> Session:
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFoundError(f"Sessão não encontrada: {session_id}")
            if not current.is_terminal:
                raise StaleStateError(f"Sessão {session_id} ainda não está terminal")
            if current.end_time is not None:
                raise StaleStateError(f"Sessão {session_id} já finalizada")
            updated = current.model_copy(
                update={
                    "duration_minutes": duration_minutes,
                    "amount": amount,
                    "end_time": end_time,
                }
            )
            self._sessions[session_id] = updated
            self.finalize_writes += 1

        logger.debug(
            "Session finalized (in-memory)",
            extra={"session_id": short_id(session_id), "duration_minutes": duration_minutes},
        )
        return updated.model_copy(deep=True)
