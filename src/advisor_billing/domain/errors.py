"""Taxonomia de erros do núcleo de sessões e cobrança.

Todos herdam de BillingCoreError para que a borda HTTP consiga
mapear uma única família de exceções.
"""

from __future__ import annotations


class BillingCoreError(Exception):
    """Erro base do núcleo de sessões e cobrança."""

    pass


class ValidationError(BillingCoreError):
    """Identificadores ausentes ou malformados."""

    pass


class SessionNotFoundError(ValidationError):
    """Sessão inexistente no session store."""

    pass


class UnauthorizedError(BillingCoreError):
    """Ator não participa da sessão."""

    pass


class StaleStateError(BillingCoreError):
    """Operação contra sessão que não está mais no status esperado.

    Resultado esperado das corridas accept/decline e end/end;
    quem chama trata como no-op.
    """

    pass


class InsufficientFundsError(BillingCoreError):
    """Saldo abaixo do exigido (admissão ou durante a sessão)."""

    pass


class PersistenceError(BillingCoreError):
    """Falha de escrita em um colaborador (carteira ou session store)."""

    pass


class TransportError(BillingCoreError):
    """Falha na entrega de um evento em tempo real."""

    pass
