"""Ações que movem uma sessão entre status."""

from __future__ import annotations

from enum import StrEnum


class SessionAction(StrEnum):
    """Ações do ciclo de vida."""

    ACCEPT = "accept"
    """Consultor aceitou a solicitação."""

    DECLINE = "decline"
    """Consultor recusou (ou recusa automática por saldo)."""

    CLIENT_CANCEL = "client_cancel"
    """Cliente retirou a solicitação antes do aceite."""

    END = "end"
    """Um participante encerrou a sessão em andamento."""

    FORCE_END = "force_end"
    """Encerramento forçado pelo motor de cobrança."""
