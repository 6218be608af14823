"""Apoio determinístico para testes de cobrança (relógio e sleep controlados)."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

CLIENT_ID = "client-0001"
ADVISOR_ID = "advisor-0001"
OTHER_ADVISOR_ID = "advisor-0002"


class ManualClock:
    """Relógio controlado pelo teste."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def no_sleep(_: float) -> None:
    return None


class SteppedSleep:
    """Sleep que só retorna quando o teste chama tick()."""

    def __init__(self) -> None:
        self.calls = 0
        self._ticks: asyncio.Queue[None] = asyncio.Queue()

    async def __call__(self, seconds: float) -> None:
        self.calls += 1
        await self._ticks.get()

    def tick(self) -> None:
        self._ticks.put_nowait(None)


async def drain(rounds: int = 20) -> None:
    """Deixa o event loop rodar as tarefas pendentes."""
    for _ in range(rounds):
        await asyncio.sleep(0)
