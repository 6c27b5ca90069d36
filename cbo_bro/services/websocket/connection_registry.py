import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect

from cbo_bro.models.session import utc_now

logger = logging.getLogger("cbo-bro.websocket.connections")


@dataclass
class Connection:
    """
    Одно живое WebSocket соединение.

    Соединение ссылается на сессию только по ID: сессия его переживает, а
    несколько соединений (вкладок) могут делить одну сессию.
    """

    connection_id: str
    session_id: str
    websocket: WebSocket
    is_open: bool = True
    connected_at: datetime = field(default_factory=utc_now)
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def send(self, envelope: BaseModel) -> bool:
        """
        Отправить конверт клиенту.

        Если соединение уже закрыто, отправка пропускается. Возвращает True,
        если конверт ушел в транспорт.
        """
        if not self.is_open:
            logger.debug(f"[{self.connection_id}] Skip {getattr(envelope, 'type', '?')}: connection closed")
            return False
        async with self._send_lock:
            try:
                await self.websocket.send_json(envelope.model_dump(by_alias=True, mode="json"))
                return True
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self.is_open = False
                logger.info(f"[{self.connection_id}] Send failed, connection marked closed: {e!r}")
                return False


class ConnectionRegistry:
    """Управляет активными WebSocket соединениями: хранит, отдаёт, удаляет."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def register(self, connection: Connection):
        async with self._lock:
            self._connections[connection.connection_id] = connection
        logger.info(
            f"[{connection.session_id}] Connection registered: {connection.connection_id} "
            f"(total={len(self._connections)})"
        )

    async def get(self, connection_id: str) -> Optional[Connection]:
        async with self._lock:
            return self._connections.get(connection_id)

    async def remove(self, connection_id: str) -> Optional[Connection]:
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
        if connection:
            logger.info(
                f"[{connection.session_id}] Connection removed: {connection_id} "
                f"(total={len(self._connections)})"
            )
        return connection

    async def for_session(self, session_id: str) -> List[Connection]:
        async with self._lock:
            return [c for c in self._connections.values() if c.session_id == session_id]

    async def all(self) -> List[Connection]:
        async with self._lock:
            return list(self._connections.values())

    def count(self) -> int:
        return len(self._connections)
