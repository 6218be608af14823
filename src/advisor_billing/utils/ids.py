"""Geradores de identificadores."""

from __future__ import annotations

import uuid


def new_session_id() -> str:
    """Gera um session_id único."""

    return str(uuid.uuid4())


def new_transaction_id() -> str:
    """Gera o id de um lançamento do ledger."""

    return f"txn_{uuid.uuid4().hex}"


def charge_idempotency_key(session_id: str, cycle: int) -> str:
    """Chave de idempotência de uma cobrança: estável entre retries do mesmo ciclo."""

    return f"{session_id}:{cycle}"
