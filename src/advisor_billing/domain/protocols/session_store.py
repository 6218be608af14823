"""Contrato de persistência de sessões (assíncrono)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any

from advisor_billing.domain.models import Session
from advisor_billing.domain.session.states import SessionStatus


class SessionStoreProtocol(ABC):
    """Registro durável de sessões.

    `transition_status` é um compare-and-set sobre o status: é assim que
    corridas entre atores (accept/decline, end/end) são detectadas.
    """

    @abstractmethod
    async def create(self, session: Session) -> Session:
        """Persiste uma nova sessão.

        Raises:
            ValidationError: Se o id já existe
            PersistenceError: Em caso de falha no backend
        """
        ...

    @abstractmethod
    async def get(self, session_id: str) -> Session | None:
        """Carrega sessão por ID (None se não existe)."""
        ...

    @abstractmethod
    async def transition_status(
        self,
        session_id: str,
        expected: SessionStatus,
        target: SessionStatus,
        **changes: Any,
    ) -> Session:
        """Move a sessão de `expected` para `target` aplicando `changes`.

        Raises:
            SessionNotFoundError: Sessão inexistente
            ValidationError: Par (expected, target) fora da tabela de transições
            StaleStateError: Status atual diferente de `expected`
            PersistenceError: Em caso de falha no backend
        """
        ...

    @abstractmethod
    async def finalize(
        self,
        session_id: str,
        duration_minutes: int,
        amount: Decimal,
        end_time: datetime,
    ) -> Session:
        """Grava duração/valor finais e end_time (uma única vez).

        Raises:
            SessionNotFoundError: Sessão inexistente
            StaleStateError: end_time já definido ou sessão não terminal
            PersistenceError: Em caso de falha no backend
        """
        ...
