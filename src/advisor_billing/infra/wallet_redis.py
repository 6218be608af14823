"""Carteira em Redis (produção).

Saldos são inteiros em centavos. A cobrança roda como script Lua:
verificação de saldo, débito, crédito, marca de idempotência e ledger
acontecem atomicamente no servidor, sem leitura seguida de escrita
no cliente.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from advisor_billing.domain.errors import PersistenceError, ValidationError
from advisor_billing.domain.models import ChargeResult, Transaction, TransactionType
from advisor_billing.domain.money import ZERO, advisor_share, from_cents, to_cents, to_money
from advisor_billing.domain.protocols.wallet import WalletProtocol
from advisor_billing.observability.logging import get_logger, short_id
from advisor_billing.utils.ids import new_transaction_id

logger: logging.Logger = get_logger(__name__)

# KEYS: saldo cliente, saldo consultor, marca de idempotência ("saldo:valor"), ledger da sessão
# ARGV: valor (centavos), crédito consultor (centavos), ttl, lançamento débito, lançamento crédito
CHARGE_SCRIPT = """
local applied = redis.call('GET', KEYS[3])
if applied then
  local sep = string.find(applied, ':', 1, true)
  return {1, string.sub(applied, 1, sep - 1), 1, string.sub(applied, sep + 1)}
end
local balance = tonumber(redis.call('GET', KEYS[1]) or '0')
local amount = tonumber(ARGV[1])
if balance < amount then
  return {0, tostring(balance), 0, ARGV[1]}
end
local after = redis.call('DECRBY', KEYS[1], amount)
redis.call('INCRBY', KEYS[2], tonumber(ARGV[2]))
redis.call('SET', KEYS[3], tostring(after) .. ':' .. ARGV[1], 'EX', tonumber(ARGV[3]))
redis.call('RPUSH', KEYS[4], ARGV[4], ARGV[5])
return {1, tostring(after), 0, ARGV[1]}
"""


class RedisWallet(WalletProtocol):
    """Carteira sobre redis.asyncio com cobrança atômica via Lua."""

    def __init__(
        self,
        redis_client: Any,
        commission_rate: Decimal = Decimal("0.20"),
        idempotency_ttl_seconds: int = 86400,
        key_prefix: str = "wallet:",
    ) -> None:
        self._redis = redis_client
        self._commission_rate = commission_rate
        self._idempotency_ttl_seconds = idempotency_ttl_seconds
        self._key_prefix = key_prefix

    def _balance_key(self, user_id: str) -> str:
        return f"{self._key_prefix}balance:{user_id}"

    def _charge_key(self, idempotency_key: str) -> str:
        return f"{self._key_prefix}charge:{idempotency_key}"

    def _ledger_key(self, reference_id: str) -> str:
        return f"{self._key_prefix}ledger:{reference_id}"

    def _topup_key(self, user_id: str) -> str:
        return f"{self._key_prefix}topups:{user_id}"

    async def get_balance(self, user_id: str) -> Decimal:
        try:
            raw = await self._redis.get(self._balance_key(user_id))
        except Exception as e:
            logger.error(
                "Falha ao ler saldo no Redis",
                extra={"user_id": short_id(user_id), "error_type": type(e).__name__},
            )
            raise PersistenceError(f"Redis get_balance failed: {e}") from e
        return from_cents(raw) if raw is not None else ZERO

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

        earning = advisor_share(amount, self._commission_rate)
        debit = Transaction(
            id=new_transaction_id(),
            user_id=client_id,
            type=TransactionType.SESSION_PAYMENT,
            amount=amount,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
        )
        credit = Transaction(
            id=new_transaction_id(),
            user_id=advisor_id,
            type=TransactionType.EARNING,
            amount=earning,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
        )

        try:
            committed, balance_raw, replayed, amount_raw = await self._redis.eval(
                CHARGE_SCRIPT,
                4,
                self._balance_key(client_id),
                self._balance_key(advisor_id),
                self._charge_key(idempotency_key),
                self._ledger_key(reference_id),
                to_cents(amount),
                to_cents(earning),
                self._idempotency_ttl_seconds,
                debit.model_dump_json(),
                credit.model_dump_json(),
            )
        except Exception as e:
            logger.error(
                "Falha na cobrança atômica (Redis)",
                extra={"session_id": short_id(reference_id), "error_type": type(e).__name__},
            )
            raise PersistenceError(f"Redis apply_charge failed: {e}") from e

        result = ChargeResult(
            committed=bool(int(committed)),
            balance_after=from_cents(balance_raw),
            amount=from_cents(amount_raw),
            replayed=bool(int(replayed)),
        )
        logger.debug(
            "Cobrança processada (Redis)",
            extra={
                "session_id": short_id(reference_id),
                "committed": result.committed,
                "replayed": result.replayed,
            },
        )
        return result

    async def credit(self, user_id: str, amount: Decimal) -> Decimal:
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Valor da recarga deve ser positivo")

        entry = Transaction(
            id=new_transaction_id(),
            user_id=user_id,
            type=TransactionType.TOP_UP,
            amount=amount,
        )
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incrby(self._balance_key(user_id), to_cents(amount))
                pipe.rpush(self._topup_key(user_id), entry.model_dump_json())
                after_cents, _ = await pipe.execute()
        except Exception as e:
            logger.error(
                "Falha na recarga (Redis)",
                extra={"user_id": short_id(user_id), "error_type": type(e).__name__},
            )
            raise PersistenceError(f"Redis credit failed: {e}") from e
        return from_cents(after_cents)

    async def transactions_for(self, reference_id: str) -> list[Transaction]:
        try:
            raw_entries = await self._redis.lrange(self._ledger_key(reference_id), 0, -1)
        except Exception as e:
            logger.error(
                "Falha ao ler ledger (Redis)",
                extra={"session_id": short_id(reference_id), "error_type": type(e).__name__},
            )
            raise PersistenceError(f"Redis transactions_for failed: {e}") from e
        return [Transaction.model_validate_json(raw) for raw in raw_entries]
