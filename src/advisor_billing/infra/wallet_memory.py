"""Carteira em memória para desenvolvimento e testes.

ATENÇÃO: Não usar em produção!
- Não persiste entre restarts
- Não funciona com múltiplas instâncias
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from advisor_billing.domain.errors import ValidationError
from advisor_billing.domain.models import ChargeResult, Transaction, TransactionType
from advisor_billing.domain.money import ZERO, advisor_share, to_money
from advisor_billing.domain.protocols.wallet import WalletProtocol
from advisor_billing.observability.logging import get_logger, short_id
from advisor_billing.utils.ids import new_transaction_id

logger: logging.Logger = get_logger(__name__)


class InMemoryWallet(WalletProtocol):
    """Saldos e ledger em dicionários, serializados por um asyncio.Lock.

    O lock torna a verificação de saldo e o débito uma única operação;
    nenhuma outra corrotina observa o estado intermediário.
    """

    def __init__(self, commission_rate: Decimal = Decimal("0.20")) -> None:
        self._commission_rate = commission_rate
        self._balances: dict[str, Decimal] = {}
        self._ledger: list[Transaction] = []
        self._applied: dict[str, ChargeResult] = {}
        self._lock = asyncio.Lock()

    def seed(self, user_id: str, amount: Decimal | int | str) -> None:
        """Define o saldo inicial sem gerar lançamento (fixtures/dev)."""
        self._balances[user_id] = to_money(amount)

    @property
    def ledger(self) -> list[Transaction]:
        """Cópia do ledger completo (ordem de commit)."""
        return list(self._ledger)

    async def get_balance(self, user_id: str) -> Decimal:
        return self._balances.get(user_id, ZERO)

    async def apply_charge(
        self,
        client_id: str,
        advisor_id: str,
        amount: Decimal,
        *,
        reference_id: str,
        idempotency_key: str,
    ) -> ChargeResult:
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Valor da cobrança deve ser positivo")

        async with self._lock:
            previous = self._applied.get(idempotency_key)
            if previous is not None:
                logger.info(
                    "charge_replayed",
                    extra={"session_id": short_id(reference_id), "idempotency_key": idempotency_key},
                )
                return previous.model_copy(update={"replayed": True})

            balance = self._balances.get(client_id, ZERO)
            if balance < amount:
                logger.info(
                    "charge_rejected_insufficient_funds",
                    extra={"session_id": short_id(reference_id), "amount": str(amount)},
                )
                return ChargeResult(committed=False, balance_after=balance, amount=amount)

            earning = advisor_share(amount, self._commission_rate)
            self._balances[client_id] = balance - amount
            self._balances[advisor_id] = self._balances.get(advisor_id, ZERO) + earning
            self._ledger.append(
                Transaction(
                    id=new_transaction_id(),
                    user_id=client_id,
                    type=TransactionType.SESSION_PAYMENT,
                    amount=amount,
                    reference_id=reference_id,
                    idempotency_key=idempotency_key,
                )
            )
            self._ledger.append(
                Transaction(
                    id=new_transaction_id(),
                    user_id=advisor_id,
                    type=TransactionType.EARNING,
                    amount=earning,
                    reference_id=reference_id,
                    idempotency_key=idempotency_key,
                )
            )
            result = ChargeResult(
                committed=True, balance_after=self._balances[client_id], amount=amount
            )
            self._applied[idempotency_key] = result

        logger.debug(
            "charge_committed",
            extra={"session_id": short_id(reference_id), "amount": str(amount)},
        )
        return result

    async def credit(self, user_id: str, amount: Decimal) -> Decimal:
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Valor da recarga deve ser positivo")

        async with self._lock:
            self._balances[user_id] = self._balances.get(user_id, ZERO) + amount
            self._ledger.append(
                Transaction(
                    id=new_transaction_id(),
                    user_id=user_id,
                    type=TransactionType.TOP_UP,
                    amount=amount,
                )
            )
            return self._balances[user_id]

    async def transactions_for(self, reference_id: str) -> list[Transaction]:
        return [t for t in self._ledger if t.reference_id == reference_id]
