"""Dedupe de eventos em tempo real no lado consumidor.

O canal entrega at-least-once; cada evento traz uma chave de
idempotência estável e o consumidor "reivindica" a chave antes de
aplicar o evento. Segunda reivindicação da mesma chave = repetição.

Backends:
- memory: janela local com TTL e teto de entradas (dev/testes, uma instância)
- redis: SET NX EX compartilhado entre instâncias; fail-closed em staging/prod
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import redis

from advisor_billing.observability.logging import get_logger

if TYPE_CHECKING:
    from advisor_billing.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


class DedupeError(Exception):
    """Backend de dedupe indisponível com fail-closed ativo."""

    pass


class DedupeStore(ABC):
    """Registro de chaves de eventos já aplicados."""

    @abstractmethod
    def claim(self, key: str) -> bool:
        """Reivindica a chave de um evento.

        Args:
            key: idempotency_key do evento

        Returns:
            True na primeira reivindicação; False se o evento já foi visto

        Raises:
            DedupeError: Backend indisponível (fail-closed)
        """
        ...

    @abstractmethod
    def contains(self, key: str) -> bool:
        """Consulta sem reivindicar."""
        ...

    @abstractmethod
    def release(self, key: str) -> bool:
        """Libera a chave (ex.: aplicação do evento falhou e deve ser refeita)."""
        ...


class InMemoryDedupeStore(DedupeStore):
    """Janela local de chaves com expiração.

    ATENÇÃO: cada instância tem a sua janela; não usar com várias réplicas.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_entries: int = 50_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._expires_at: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._expires_at)

    def claim(self, key: str) -> bool:
        now = self._clock()
        self._evict(now)
        if key in self._expires_at:
            return False
        self._expires_at[key] = now + self._ttl_seconds
        if len(self._expires_at) > self._max_entries:
            self._expires_at.popitem(last=False)
        return True

    def contains(self, key: str) -> bool:
        self._evict(self._clock())
        return key in self._expires_at

    def release(self, key: str) -> bool:
        return self._expires_at.pop(key, None) is not None

    def _evict(self, now: float) -> None:
        # Inserção em ordem de chegada: as mais antigas expiram primeiro.
        while self._expires_at:
            key, deadline = next(iter(self._expires_at.items()))
            if deadline > now:
                return
            del self._expires_at[key]


class RedisDedupeStore(DedupeStore):
    """Chaves compartilhadas em Redis com expiração nativa."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        redis_url: str | None = None,
        ttl_seconds: int = 3600,
        fail_closed: bool = True,
        key_prefix: str = "rt-dedupe:",
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("RedisDedupeStore requer client ou redis_url")
        self._client = client
        self._redis_url = redis_url
        self._ttl_seconds = ttl_seconds
        self._fail_closed = fail_closed
        self._key_prefix = key_prefix

    def _redis(self) -> Any:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            logger.info(
                "dedupe_redis_connected",
                extra={"url": self._redis_url.split("@")[-1]},
            )
        return self._client

    def claim(self, key: str) -> bool:
        try:
            created = self._redis().set(
                f"{self._key_prefix}{key}", "1", nx=True, ex=self._ttl_seconds
            )
        except redis.RedisError as e:
            logger.error("dedupe_claim_failed", extra={"error_type": type(e).__name__})
            if self._fail_closed:
                raise DedupeError(f"Dedupe indisponível: {e}") from e
            # fail-open: aplica o evento sem registrar a chave
            return True
        return bool(created)

    def contains(self, key: str) -> bool:
        try:
            return bool(self._redis().exists(f"{self._key_prefix}{key}"))
        except redis.RedisError as e:
            logger.error("dedupe_lookup_failed", extra={"error_type": type(e).__name__})
            if self._fail_closed:
                raise DedupeError(f"Dedupe indisponível: {e}") from e
            return False

    def release(self, key: str) -> bool:
        try:
            return bool(self._redis().delete(f"{self._key_prefix}{key}"))
        except redis.RedisError as e:
            logger.warning("dedupe_release_failed", extra={"error_type": type(e).__name__})
            return False


def create_dedupe_store(settings: Settings, client: Any | None = None) -> DedupeStore:
    """Escolhe o backend por settings.dedupe_backend.

    Raises:
        ValueError: Backend desconhecido ou redis sem REDIS_URL/cliente
    """
    backend = settings.dedupe_backend.lower()
    if backend == "memory":
        logger.info("dedupe_backend_memory", extra={"ttl_seconds": settings.dedupe_ttl_seconds})
        return InMemoryDedupeStore(ttl_seconds=settings.dedupe_ttl_seconds)

    if backend == "redis":
        if client is None and not settings.redis_url:
            raise ValueError("DEDUPE_BACKEND=redis requer REDIS_URL")
        fail_closed = settings.is_production or settings.is_staging
        logger.info(
            "dedupe_backend_redis",
            extra={"ttl_seconds": settings.dedupe_ttl_seconds, "fail_closed": fail_closed},
        )
        return RedisDedupeStore(
            client,
            redis_url=settings.redis_url,
            ttl_seconds=settings.dedupe_ttl_seconds,
            fail_closed=fail_closed,
        )

    raise ValueError(f"Backend de dedupe não reconhecido: {backend}")
