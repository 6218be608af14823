"""Canal em tempo real sobre WebSockets (Starlette).

Cada conexão entra numa sala (id da sessão ou do consultor); publicar
um evento envia o JSON para todas as conexões da sala.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from starlette.websockets import WebSocket

from advisor_billing.domain.errors import TransportError
from advisor_billing.domain.events import RealtimeEvent
from advisor_billing.domain.protocols.realtime import RealtimeChannelProtocol
from advisor_billing.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)


class ConnectionManager:
    """Conexões WebSocket ativas agrupadas por sala."""

    def __init__(self) -> None:
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, room: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._rooms[room].add(websocket)
        logger.info("websocket_connected", extra={"room": short_id(room)})

    async def disconnect(self, room: str, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._rooms.get(room)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                del self._rooms[room]
        logger.info("websocket_disconnected", extra={"room": short_id(room)})

    def connections(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def broadcast(self, room: str, message: str) -> int:
        """Envia para a sala; conexões que falham são descartadas.

        Returns:
            Quantidade de conexões que receberam a mensagem
        """
        async with self._lock:
            targets = list(self._rooms.get(room, ()))

        delivered = 0
        for websocket in targets:
            try:
                await websocket.send_text(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "websocket_send_failed",
                    extra={"room": short_id(room), "error_type": type(e).__name__},
                )
                await self.disconnect(room, websocket)
        return delivered

    async def close_all(self) -> None:
        async with self._lock:
            rooms = dict(self._rooms)
            self._rooms.clear()
        for sockets in rooms.values():
            for websocket in sockets:
                try:
                    await websocket.close()
                except Exception as e:
                    logger.debug("websocket_close_failed", extra={"error_type": type(e).__name__})


class WebSocketRealtimeChannel(RealtimeChannelProtocol):
    """Adapta o ConnectionManager ao contrato do canal."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    async def publish(self, event: RealtimeEvent) -> None:
        targets = self._manager.connections(event.room)
        delivered = await self._manager.broadcast(event.room, event.model_dump_json())
        if targets and not delivered:
            raise TransportError(f"Nenhuma conexão recebeu {event.type}")

    async def close(self) -> None:
        await self._manager.close_all()
