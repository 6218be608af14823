"""Session store em Redis (produção).

Cada sessão é um documento JSON em `session:{id}`. Compare-and-set de
status e finalização rodam como scripts Lua (cjson), então duas
instâncias nunca aplicam transições concorrentes sobre o mesmo status.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic_core import to_jsonable_python

from advisor_billing.domain.errors import (
    PersistenceError,
    SessionNotFoundError,
    StaleStateError,
    ValidationError,
)
from advisor_billing.domain.models import Session
from advisor_billing.domain.protocols.session_store import SessionStoreProtocol
from advisor_billing.domain.session.states import SessionStatus
from advisor_billing.domain.session.transitions import is_allowed_change
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)

# Códigos de retorno dos scripts
_NOT_FOUND = -1
_CONFLICT = 0
_APPLIED = 1

# KEYS: documento; ARGV: status esperado, alterações (JSON)
TRANSITION_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
  return {-1, ''}
end
local doc = cjson.decode(raw)
if doc['status'] ~= ARGV[1] then
  return {0, doc['status']}
end
local changes = cjson.decode(ARGV[2])
for k, v in pairs(changes) do
  doc[k] = v
end
local encoded = cjson.encode(doc)
redis.call('SET', KEYS[1], encoded)
return {1, encoded}
"""

# KEYS: documento; ARGV: status terminais (JSON), alterações (JSON)
FINALIZE_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
  return {-1, ''}
end
local doc = cjson.decode(raw)
local terminal = false
for _, s in ipairs(cjson.decode(ARGV[1])) do
  if doc['status'] == s then
    terminal = true
  end
end
if not terminal then
  return {0, 'not_terminal'}
end
if doc['end_time'] ~= nil and doc['end_time'] ~= cjson.null then
  return {0, 'already_finalized'}
end
local changes = cjson.decode(ARGV[2])
for k, v in pairs(changes) do
  doc[k] = v
end
local encoded = cjson.encode(doc)
redis.call('SET', KEYS[1], encoded)
return {1, encoded}
"""


class RedisSessionStore(SessionStoreProtocol):
    """Armazenamento em Redis para produção (cliente redis.asyncio)."""

    def __init__(self, redis_client: Any, key_prefix: str = "session:") -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}{session_id}"

    async def create(self, session: Session) -> Session:
        try:
            created = await self._redis.set(
                self._key(session.id), session.model_dump_json(), nx=True
            )
        except Exception as e:
            logger.error(
                "Failed to create session in Redis",
                extra={"session_id": short_id(session.id), "error": str(e)},
            )
            raise PersistenceError(f"Redis create failed: {e}") from e

        if not created:
            raise ValidationError(f"Sessão já existe: {session.id}")
        logger.debug("Session created (Redis)", extra={"session_id": short_id(session.id)})
        return session

    async def get(self, session_id: str) -> Session | None:
        try:
            payload = await self._redis.get(self._key(session_id))
        except Exception as e:
            logger.error(
                "Failed to load session from Redis",
                extra={"session_id": short_id(session_id), "error": str(e)},
            )
            raise PersistenceError(f"Redis get failed: {e}") from e

        if not payload:
            logger.debug("Session not found (Redis)", extra={"session_id": short_id(session_id)})
            return None
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return Session.model_validate_json(payload)

    async def transition_status(
        self,
        session_id: str,
        expected: SessionStatus,
        target: SessionStatus,
        **changes: Any,
    ) -> Session:
        if not is_allowed_change(expected, target):
            raise ValidationError(f"Transição não permitida: {expected} -> {target}")

        encoded_changes = _encode_changes({**changes, "status": target})
        code, body = await self._run_script(
            TRANSITION_SCRIPT, session_id, str(expected), encoded_changes, op="transition_status"
        )

        if code == _NOT_FOUND:
            raise SessionNotFoundError(f"Sessão não encontrada: {session_id}")
        if code == _CONFLICT:
            raise StaleStateError(f"Sessão {session_id} está em {body}, esperado {expected}")

        logger.debug(
            "Session status changed (Redis)",
            extra={"session_id": short_id(session_id), "from": expected, "to": target},
        )
        return Session.model_validate_json(body)

    async def finalize(
        self,
        session_id: str,
        duration_minutes: int,
        amount: Decimal,
        end_time: datetime,
    ) -> Session:
        terminal = json.dumps([str(SessionStatus.COMPLETED), str(SessionStatus.CANCELLED)])
        encoded_changes = _encode_changes(
            {"duration_minutes": duration_minutes, "amount": amount, "end_time": end_time}
        )
        code, body = await self._run_script(
            FINALIZE_SCRIPT, session_id, terminal, encoded_changes, op="finalize"
        )

        if code == _NOT_FOUND:
            raise SessionNotFoundError(f"Sessão não encontrada: {session_id}")
        if code == _CONFLICT:
            raise StaleStateError(f"Sessão {session_id} não finalizável: {body}")

        logger.debug(
            "Session finalized (Redis)",
            extra={"session_id": short_id(session_id), "duration_minutes": duration_minutes},
        )
        return Session.model_validate_json(body)

    async def _run_script(
        self, script: str, session_id: str, *args: str, op: str
    ) -> tuple[int, str]:
        try:
            code, body = await self._redis.eval(script, 1, self._key(session_id), *args)
        except Exception as e:
            logger.error(
                "Redis script failed",
                extra={"session_id": short_id(session_id), "operation": op, "error": str(e)},
            )
            raise PersistenceError(f"Redis {op} failed: {e}") from e

        if isinstance(body, bytes):
            body = body.decode("utf-8")
        return int(code), body


def _encode_changes(changes: dict[str, Any]) -> str:
    """Serializa alterações no mesmo formato JSON do documento (pydantic)."""

    return json.dumps(to_jsonable_python(changes))
