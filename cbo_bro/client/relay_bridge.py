"""
Клиентский мост к WebSocket шлюзу CBO-Bro.

Держит соединение независимо от UI: переподключение с экспоненциальной
задержкой, очередь сообщений на время разрыва, heartbeat и сборка
стримящихся ответов по messageId.
"""

import asyncio
import inspect
import json
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger("cbo-bro.client.relay")

CLEAN_CLOSE_CODES = (1000, 1001)
HEARTBEAT_TIMEOUT_CODE = 4000

Callback = Callable[..., Union[None, Awaitable[None]]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class StreamUpdate:
    """Очередной чанк ответа: дельта и накопленный текст"""

    message_id: str
    delta: str
    content: str


def compute_backoff(failures: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Задержка перед следующей попыткой после `failures` неудачных закрытий подряд"""
    return min(base * 2 ** failures, cap)


class RelayBridge:
    """
    Явный автомат состояний поверх websockets:
    disconnected -> connecting -> connected -> (error|disconnected) -> reconnecting -> connecting ...

    Закрытие с кодом 1000/1001 считается чистым и не ведет к переподключению.
    После max_attempts неудачных попыток подряд мост переходит в failed.

    Пример:
        >>> bridge = RelayBridge("ws://localhost:8082/ws", on_stream=print)
        >>> bridge.connect()
        >>> await bridge.send({"type": "chat", "content": "Hi"})
    """

    def __init__(
        self,
        url: str,
        session_id: Optional[str] = None,
        on_message: Optional[Callback] = None,
        on_stream: Optional[Callback] = None,
        on_state_change: Optional[Callback] = None,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 10,
        queue_size: int = 100,
        heartbeat_interval: float = 30.0,
        heartbeat_timeout: float = 60.0,
        connector: Optional[Callable[[str], Awaitable[Any]]] = None,
    ):
        self.url = url
        self._session_id = session_id
        self._on_message = on_message
        self._on_stream = on_stream
        self._on_state_change = on_state_change
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self._connector = connector or websockets.connect

        self._state = ConnectionState.DISCONNECTED
        self._queue: Deque[Dict[str, Any]] = deque(maxlen=queue_size)
        self._buffers: Dict[str, str] = {}
        self._ws: Optional[Any] = None
        self._supervisor: Optional[asyncio.Task] = None
        self._failures = 0
        self._closing = False
        self._last_seen = 0.0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def queued(self) -> int:
        return len(self._queue)

    def is_running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    # ------------------------------------------------------------------
    # Публичный API
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Запустить цикл подключения, если он еще не идет"""
        if self.is_running():
            return
        self._closing = False
        self._failures = 0
        self._supervisor = asyncio.create_task(self._run())

    async def send(self, envelope: Dict[str, Any]) -> bool:
        """
        Отправить конверт.

        Без соединения конверт ставится в очередь (при переполнении
        вытесняется самый старый) и запускается подключение.

        Returns:
            True, если конверт ушел сразу
        """
        if self._state is ConnectionState.CONNECTED and self._ws is not None:
            try:
                await self._ws.send(json.dumps(envelope))
                return True
            except ConnectionClosed as e:
                logger.info(f"Send failed, queueing: {e}")

        if len(self._queue) == self._queue.maxlen:
            logger.warning("Outbound queue full, dropping oldest message")
        self._queue.append(envelope)
        if not self.is_running():
            self.connect()
        return False

    async def close(self) -> None:
        """Закрыть соединение пользователем (без переподключения)"""
        self._closing = True
        if self._ws is not None:
            try:
                await self._ws.close(code=1000, reason="User initiated disconnect")
            except WebSocketException as e:
                logger.debug(f"Close failed: {e}")
        if self._supervisor is not None:
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
            self._supervisor = None
        self._ws = None
        self._queue.clear()
        self._buffers.clear()
        await self._set_state(ConnectionState.DISCONNECTED)

    async def wait_closed(self) -> None:
        """Дождаться окончания цикла подключения (чистое закрытие или failed)"""
        if self._supervisor is not None:
            await asyncio.shield(self._supervisor)

    # ------------------------------------------------------------------
    # Цикл подключения
    # ------------------------------------------------------------------

    def _build_url(self) -> str:
        if not self._session_id:
            return self.url
        parts = urlsplit(self.url)
        query = dict(parse_qsl(parts.query))
        query["sessionId"] = self._session_id
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def _run(self) -> None:
        while not self._closing:
            await self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._connector(self._build_url())
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                logger.warning(f"Connect to {self.url} failed: {e}")
                await self._set_state(ConnectionState.ERROR)
                clean = False
            else:
                clean = await self._serve(ws)

            if clean or self._closing:
                await self._set_state(ConnectionState.DISCONNECTED)
                return

            self._failures += 1
            if self._failures > self.max_attempts:
                logger.error(f"Max reconnection attempts reached ({self.max_attempts})")
                await self._set_state(ConnectionState.FAILED)
                return

            delay = compute_backoff(self._failures, self.base_delay, self.max_delay)
            logger.info(f"Reconnecting in {delay:g}s (attempt {self._failures})")
            await self._set_state(ConnectionState.RECONNECTING)
            await asyncio.sleep(delay)

    async def _serve(self, ws: Any) -> bool:
        """Обслужить одно открытое соединение. Возвращает True при чистом закрытии."""
        loop = asyncio.get_running_loop()
        self._ws = ws
        self._failures = 0
        self._last_seen = loop.time()
        # Очередь отправляется до перехода в connected, чтобы новые send() не обогнали ее
        await self._flush_queue(ws)
        await self._set_state(ConnectionState.CONNECTED)

        heartbeat = asyncio.create_task(self._heartbeat(ws))
        try:
            async for raw in ws:
                self._last_seen = loop.time()
                await self._handle_frame(raw)
            code = ws.close_code
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            self._ws = None

        logger.info(f"WebSocket closed: code={code}")
        if code in CLEAN_CLOSE_CODES:
            return True
        await self._set_state(ConnectionState.ERROR)
        return False

    async def _flush_queue(self, ws: Any) -> None:
        while self._queue:
            envelope = self._queue.popleft()
            try:
                await ws.send(json.dumps(envelope))
            except ConnectionClosed:
                self._queue.appendleft(envelope)
                return

    async def _heartbeat(self, ws: Any) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if loop.time() - self._last_seen > self.heartbeat_timeout:
                logger.warning("Heartbeat timeout, forcing reconnect")
                await ws.close(code=HEARTBEAT_TIMEOUT_CODE, reason="Heartbeat timeout")
                return
            try:
                await ws.send(json.dumps({"type": "ping"}))
            except ConnectionClosed:
                return

    # ------------------------------------------------------------------
    # Входящие кадры
    # ------------------------------------------------------------------

    async def _handle_frame(self, raw: Union[str, bytes]) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse WebSocket message: {e}")
            return

        msg_type = data.get("type")
        if msg_type == "ping":
            if self._ws is not None:
                await self._ws.send(json.dumps({"type": "pong"}))
            return
        if msg_type == "pong":
            return

        message_id = data.get("messageId")
        if msg_type == "connection.established":
            self._session_id = data.get("sessionId") or self._session_id
        elif msg_type == "stream.start" and message_id:
            self._buffers[message_id] = ""
        elif msg_type == "stream.chunk" and message_id:
            delta = data.get("content", "")
            content = self._buffers.get(message_id, "") + delta
            self._buffers[message_id] = content
            await self._notify(self._on_stream, StreamUpdate(message_id, delta, content))
        elif msg_type in ("stream.end", "stream.error") and message_id:
            self._buffers.pop(message_id, None)

        await self._notify(self._on_message, data)

    async def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(f"State: {self._state.value} -> {state.value}")
        self._state = state
        await self._notify(self._on_state_change, state)

    @staticmethod
    async def _notify(callback: Optional[Callback], *args: Any) -> None:
        if callback is None:
            return
        # Ошибка в UI коде не должна останавливать транспорт
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Callback {getattr(callback, '__name__', callback)!r} failed: {e}", exc_info=True)
