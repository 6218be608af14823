"""Relógio da aplicação (UTC, timezone-aware)."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Retorna o instante atual em UTC."""

    return datetime.now(tz=UTC)
