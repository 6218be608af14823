"""Status canônicos de uma sessão cliente/consultor.

- Toda sessão termina em exatamente 1 status terminal
- Transições são explícitas (tabela em transitions.py)
"""

from __future__ import annotations

from enum import StrEnum


class SessionStatus(StrEnum):
    """4 status de uma sessão."""

    PENDING_APPROVAL = "pending_approval"
    """Solicitada pelo cliente, aguardando o consultor."""

    IN_PROGRESS = "in_progress"
    """Aceita; cobrança por minuto ativa."""

    COMPLETED = "completed"
    """Encerrada normalmente por um dos participantes."""

    CANCELLED = "cancelled"
    """Recusada, retirada pelo cliente ou encerrada por falta de saldo."""


TERMINAL_STATES = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.CANCELLED,
})
"""Status que encerram a sessão (sem transições posteriores)."""

NON_TERMINAL_STATES = frozenset({
    s for s in SessionStatus if s not in TERMINAL_STATES
})
"""Status que permitem transições posteriores."""
