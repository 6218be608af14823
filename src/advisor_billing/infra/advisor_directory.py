"""Diretório de consultores: tarifa por minuto vigente."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from advisor_billing.domain.errors import PersistenceError, ValidationError
from advisor_billing.domain.money import to_money
from advisor_billing.domain.protocols.advisor_directory import AdvisorDirectoryProtocol
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)


class InMemoryAdvisorDirectory(AdvisorDirectoryProtocol):
    """Tarifas em dicionário (dev/testes)."""

    def __init__(self, rates: dict[str, Decimal] | None = None) -> None:
        self._rates: dict[str, Decimal] = {
            advisor_id: to_money(rate) for advisor_id, rate in (rates or {}).items()
        }

    def set_rate(self, advisor_id: str, rate: Decimal | int | str) -> None:
        self._rates[advisor_id] = to_money(rate)

    async def get_rate(self, advisor_id: str) -> Decimal:
        rate = self._rates.get(advisor_id)
        if rate is None:
            raise ValidationError(f"Consultor sem tarifa cadastrada: {advisor_id}")
        return rate


class RedisAdvisorDirectory(AdvisorDirectoryProtocol):
    """Tarifas num hash Redis (`advisor:rates` → advisor_id: valor)."""

    def __init__(self, redis_client: Any, hash_key: str = "advisor:rates") -> None:
        self._redis = redis_client
        self._hash_key = hash_key

    async def get_rate(self, advisor_id: str) -> Decimal:
        try:
            raw = await self._redis.hget(self._hash_key, advisor_id)
        except Exception as e:
            logger.error(
                "Falha ao ler tarifa (Redis)",
                extra={"advisor_id": short_id(advisor_id), "error_type": type(e).__name__},
            )
            raise PersistenceError(f"Redis get_rate failed: {e}") from e

        if raw is None:
            raise ValidationError(f"Consultor sem tarifa cadastrada: {advisor_id}")
        try:
            return to_money(raw)
        except InvalidOperation as e:
            raise ValidationError(f"Tarifa inválida para {advisor_id}: {raw!r}") from e
