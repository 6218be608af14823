"""Fábricas dos colaboradores persistentes (session store, carteira, diretório).

Centraliza a escolha de backend por settings; o app nunca instancia
implementações diretamente.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from advisor_billing.domain.protocols.advisor_directory import AdvisorDirectoryProtocol
from advisor_billing.domain.protocols.session_store import SessionStoreProtocol
from advisor_billing.domain.protocols.wallet import WalletProtocol
from advisor_billing.infra.advisor_directory import (
    InMemoryAdvisorDirectory,
    RedisAdvisorDirectory,
)
from advisor_billing.infra.session_store_memory import InMemorySessionStore
from advisor_billing.infra.session_store_redis import RedisSessionStore
from advisor_billing.infra.wallet_memory import InMemoryWallet
from advisor_billing.infra.wallet_redis import RedisWallet
from advisor_billing.observability.logging import get_logger

if TYPE_CHECKING:
    from advisor_billing.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def create_session_store(backend: str, client: Any | None = None) -> SessionStoreProtocol:
    """Cria o session store conforme backend (memory | redis)."""
    backend = backend.lower()
    if backend == "memory":
        logger.info("Usando InMemorySessionStore (apenas dev/testes)")
        return InMemorySessionStore()
    if backend == "redis":
        if client is None:
            raise ValueError("session_store_backend=redis requer cliente Redis")
        logger.info("Usando RedisSessionStore")
        return RedisSessionStore(client)
    raise ValueError(f"Backend de session store não reconhecido: {backend}")


def create_wallet(settings: Settings, client: Any | None = None) -> WalletProtocol:
    """Cria a carteira conforme settings.wallet_backend."""
    backend = settings.wallet_backend.lower()
    if backend == "memory":
        logger.info("Usando InMemoryWallet (apenas dev/testes)")
        return InMemoryWallet(commission_rate=settings.platform_commission_rate)
    if backend == "redis":
        if client is None:
            raise ValueError("wallet_backend=redis requer cliente Redis")
        logger.info("Usando RedisWallet")
        return RedisWallet(
            client,
            commission_rate=settings.platform_commission_rate,
            idempotency_ttl_seconds=settings.charge_idempotency_ttl_seconds,
        )
    raise ValueError(f"Backend de carteira não reconhecido: {backend}")


def create_advisor_directory(
    settings: Settings, client: Any | None = None
) -> AdvisorDirectoryProtocol:
    """Cria o diretório de tarifas conforme settings.advisor_directory_backend."""
    backend = settings.advisor_directory_backend.lower()
    if backend == "memory":
        return InMemoryAdvisorDirectory()
    if backend == "redis":
        if client is None:
            raise ValueError("advisor_directory_backend=redis requer cliente Redis")
        return RedisAdvisorDirectory(client)
    raise ValueError(f"Backend de diretório não reconhecido: {backend}")
