"""Contrato da carteira (saldo + ledger)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal

from advisor_billing.domain.models import ChargeResult, Transaction


class WalletProtocol(ABC):
    """Carteira com primitiva de cobrança atômica.

    Implementações devem garantir:
    - Débito condicional (saldo >= valor) e crédito numa única operação
    - Idempotência por chave (retry não cobra duas vezes)
    - Ledger append-only
    """

    @abstractmethod
    async def get_balance(self, user_id: str) -> Decimal:
        """Retorna o saldo atual (0 se o usuário não tem carteira).

        Raises:
            PersistenceError: Em caso de falha no backend
        """
        ...

    @abstractmethod
    async def apply_charge(
        self,
        client_id: str,
        advisor_id: str,
        amount: Decimal,
        *,
        reference_id: str,
        idempotency_key: str,
    ) -> ChargeResult:
        """Debita o cliente e credita o consultor atomicamente.

        Args:
            client_id: Usuário debitado
            advisor_id: Usuário creditado (valor líquido de comissão)
            amount: Valor bruto (> 0)
            reference_id: Sessão de origem (gravada no ledger)
            idempotency_key: Chave estável por ciclo de cobrança

        Returns:
            ChargeResult com committed=False se saldo insuficiente

        Raises:
            ValidationError: Valor não positivo
            PersistenceError: Em caso de falha no backend (nada foi aplicado)
        """
        ...

    @abstractmethod
    async def credit(self, user_id: str, amount: Decimal) -> Decimal:
        """Recarga de saldo; retorna o saldo após o crédito."""
        ...

    @abstractmethod
    async def transactions_for(self, reference_id: str) -> list[Transaction]:
        """Lançamentos do ledger ligados a uma sessão, em ordem de commit."""
        ...
