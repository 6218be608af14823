"""Medição de latência por componente (ciclo de cobrança, finalização)."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Generator
from typing import Any

from advisor_billing.observability.logging import get_logger

logger = get_logger(__name__)


@contextlib.contextmanager
def timed(component: str, **fields: Any) -> Generator[None, None, None]:
    """Loga o tempo gasto no bloco, mesmo quando ele levanta exceção.

    Exemplo:
        with timed("billing_cycle", session_id=short_id(session_id)):
            await wallet.charge(...)

    Campos do log ``component_latency``:
        - component: nome do trecho medido
        - elapsed_ms: milissegundos decorridos (2 casas)
        - campos extras recebidos em ``fields`` (sem PII, sem saldos)
    """
    started = time.perf_counter()
    try:
        yield
    finally:
        logger.info(
            "component_latency",
            extra={
                "component": component,
                "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
                **fields,
            },
        )
