"""Registro das cobranças ativas, com acesso exclusivo por sessão."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from advisor_billing.application.billing.models import BillingSession
from advisor_billing.domain.errors import StaleStateError
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)


class BillingRegistry:
    """No máximo uma BillingSession por session_id.

    Registros inativos ficam retidos por `grace_seconds` antes de sair,
    para que um "end" atrasado ainda veja "inativo" e não "desconhecido".
    """

    def __init__(self, grace_seconds: float = 5.0) -> None:
        self._grace_seconds = grace_seconds
        self._entries: dict[str, BillingSession] = {}
        self._retirements: dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, entry: BillingSession) -> None:
        """Registra a cobrança; StaleStateError se o id já existe."""
        if entry.session_id in self._entries:
            raise StaleStateError(f"Cobrança já registrada para {entry.session_id}")
        self._entries[entry.session_id] = entry

    def get(self, session_id: str) -> BillingSession | None:
        return self._entries.get(session_id)

    def active(self) -> list[BillingSession]:
        return [e for e in self._entries.values() if e.is_active]

    @asynccontextmanager
    async def exclusive(self, session_id: str) -> AsyncIterator[BillingSession | None]:
        """Acesso exclusivo ao registro (None se não existe)."""
        entry = self._entries.get(session_id)
        if entry is None:
            yield None
            return
        async with entry.lock:
            yield entry

    def retire(self, session_id: str) -> None:
        """Agenda a remoção do registro após a janela de carência."""
        if session_id not in self._entries or session_id in self._retirements:
            return
        if self._grace_seconds <= 0:
            self.discard(session_id)
            return
        loop = asyncio.get_running_loop()
        self._retirements[session_id] = loop.call_later(
            self._grace_seconds, self.discard, session_id
        )

    def discard(self, session_id: str) -> bool:
        handle = self._retirements.pop(session_id, None)
        if handle is not None:
            handle.cancel()
        removed = self._entries.pop(session_id, None) is not None
        if removed:
            logger.debug("billing_entry_discarded", extra={"session_id": short_id(session_id)})
        return removed

    def clear(self) -> None:
        for handle in self._retirements.values():
            handle.cancel()
        self._retirements.clear()
        self._entries.clear()
