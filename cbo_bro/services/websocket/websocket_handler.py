"""
Главный обработчик WebSocket соединений.

Связывает соединение с сессией и LLM клиентом: разбирает входящие конверты,
стримит ответ провайдера чанками и следит за живостью соединения.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set
from uuid import uuid4

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from cbo_bro.core.errors import CBOBroError, InvalidModeError, MessageValidationError, ToolError
from cbo_bro.models.llm import StreamEvent
from cbo_bro.models.session import VALID_MODES
from cbo_bro.models.websocket import (
    InboundEnvelope,
    WSChatMessage,
    WSConnectionEstablished,
    WSErrorResponse,
    WSHeartbeatPing,
    WSModeChange,
    WSModeChanged,
    WSPing,
    WSPong,
    WSPongResponse,
    WSSessionRestored,
    WSStreamChunk,
    WSStreamEnd,
    WSStreamError,
    WSStreamStart,
    WSToolError,
    WSToolRequest,
    WSToolResult,
    WSToolUse,
)
from cbo_bro.services.llm import BaseLLMClient, format_messages, temperature_for_mode
from cbo_bro.services.session_store import SessionStore
from cbo_bro.services.tools import ToolRegistry

from .connection_registry import Connection, ConnectionRegistry
from .message_parser import WebSocketMessageParser

logger = logging.getLogger("cbo-bro.websocket.handler")

GOING_AWAY = 1001


def default_llm_options(mode: str) -> Dict[str, Any]:
    return {"temperature": temperature_for_mode(mode)}


class WebSocketHandler:
    """
    Главный обработчик WebSocket соединений.

    На каждое соединение запускаются три задачи:
    - reader: читает кадры, отмечает соединение живым и кладет их в очередь;
    - worker: обрабатывает кадры строго по порядку (не более одного
      стрима на соединение, следующие chat ждут в очереди);
    - heartbeat: шлет ping и закрывает соединение, если с прошлого тика
      от клиента ничего не пришло.
    """

    def __init__(
        self,
        message_parser: WebSocketMessageParser,
        session_store: SessionStore,
        llm_client: BaseLLMClient,
        tools: ToolRegistry,
        registry: ConnectionRegistry,
        llm_options: Callable[[str], Dict[str, Any]] = default_llm_options,
        heartbeat_interval: float = 30.0,
        restore_limit: int = 10,
        history_limit: int = 20,
    ):
        """
        Args:
            message_parser: Парсер входящих конвертов
            session_store: Хранилище сессий
            llm_client: LLM клиент со стримингом
            tools: Реестр инструментов
            registry: Реестр активных соединений
            llm_options: Параметры LLM вызова для режима сессии
            heartbeat_interval: Интервал heartbeat (секунды)
            restore_limit: Сколько сообщений отправлять в session.restored
            history_limit: Сколько сообщений истории передавать провайдеру
        """
        self._parser = message_parser
        self._sessions = session_store
        self._llm = llm_client
        self._tools = tools
        self._registry = registry
        self._llm_options = llm_options
        self._heartbeat_interval = heartbeat_interval
        self._restore_limit = restore_limit
        self._history_limit = history_limit
        self._workers: Set[asyncio.Task] = set()

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Обрабатывает WebSocket соединение до его закрытия.

        Flow:
        1. accept, сессия из query параметра sessionId (или новая)
        2. connection.established (+ session.restored, если есть история)
        3. reader / worker / heartbeat до закрытия транспорта
        4. cleanup: heartbeat остановлен, соединение удалено, сессия остается
        """
        await websocket.accept()
        session = self._sessions.get_or_create(websocket.query_params.get("sessionId") or None)
        connection = Connection(connection_id=str(uuid4()), session_id=session.id, websocket=websocket)
        await self._registry.register(connection)
        logger.info(f"[{session.id}] WebSocket connected: {connection.connection_id}")

        await connection.send(
            WSConnectionEstablished(session_id=session.id, connection_id=connection.connection_id)
        )
        if session.messages:
            await connection.send(
                WSSessionRestored(
                    messages=self._sessions.get_history(session.id, limit=self._restore_limit),
                    context=session.context,
                )
            )

        worker = asyncio.create_task(self._process_inbox(connection))
        self._workers.add(worker)
        worker.add_done_callback(self._workers.discard)

        reader = asyncio.create_task(self._read_loop(connection))
        heartbeat = asyncio.create_task(self._heartbeat_loop(connection))
        try:
            await asyncio.wait({reader, heartbeat}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, heartbeat):
                task.cancel()
            await asyncio.gather(reader, heartbeat, return_exceptions=True)
            await self._cleanup(connection)

    async def _read_loop(self, connection: Connection) -> None:
        session_id = connection.session_id
        try:
            while True:
                raw_msg = await connection.websocket.receive_text()
                logger.debug(f"[{session_id}] Received WS message: {raw_msg!r}")
                await connection.inbox.put(raw_msg)
        except WebSocketDisconnect as e:
            logger.info(f"[{session_id}] WebSocket disconnected: code={e.code}")
        except Exception as e:
            logger.error(f"[{session_id}] WS transport error: {e}", exc_info=True)

    async def _heartbeat_loop(self, connection: Connection) -> None:
        # Живость транспорта проверяет uvicorn (ws_ping_interval / ws_ping_timeout),
        # здесь только ping-конверт; молчащий клиент соединение не теряет
        while connection.is_open:
            await asyncio.sleep(self._heartbeat_interval)
            if not await connection.send(WSHeartbeatPing()):
                logger.warning(
                    f"[{connection.session_id}] Heartbeat send failed, terminating {connection.connection_id}"
                )
                await self._terminate(connection)
                return

    async def _terminate(self, connection: Connection) -> None:
        connection.is_open = False
        try:
            await connection.websocket.close(code=GOING_AWAY)
        except (RuntimeError, OSError) as e:
            logger.debug(f"[{connection.session_id}] Close on dead transport failed: {e!r}")

    async def _cleanup(self, connection: Connection) -> None:
        connection.is_open = False
        # Текущий chat дорабатывает и сохраняет ответ в сессию; очередь дальше не читается
        await connection.inbox.put(None)
        await self._registry.remove(connection.connection_id)
        logger.info(f"[{connection.session_id}] WebSocket closed: {connection.connection_id}")

    async def _process_inbox(self, connection: Connection) -> None:
        while True:
            raw_msg = await connection.inbox.get()
            if raw_msg is None or not connection.is_open:
                break
            await self.handle_raw_message(connection, raw_msg)

    async def handle_raw_message(self, connection: Connection, raw_msg: str) -> None:
        """
        Обработать один входящий кадр.

        Любая ошибка превращается в конверт error и не затрагивает
        соединение и другие кадры.
        """
        session_id = connection.session_id
        try:
            message = self._parser.parse(raw_msg)
        except MessageValidationError as e:
            logger.warning(f"[{session_id}] Failed to parse message: {e}")
            await self._send_error(connection, e.message)
            return

        try:
            await self._dispatch(connection, message)
        except CBOBroError as e:
            logger.error(f"[{session_id}] Error handling '{message.type}': {e}")
            await self._send_error(connection, e.message)
        except Exception as e:
            logger.error(f"[{session_id}] Unexpected error handling '{message.type}': {e}", exc_info=True)
            await self._send_error(connection, f"Internal error: {e}")

    async def _dispatch(self, connection: Connection, message: InboundEnvelope) -> None:
        if isinstance(message, WSChatMessage):
            await self._handle_chat(connection, message)
        elif isinstance(message, WSToolRequest):
            await self._handle_tool(connection, message)
        elif isinstance(message, WSModeChange):
            await self._handle_mode(connection, message)
        elif isinstance(message, WSPing):
            await connection.send(WSPongResponse())
        elif isinstance(message, WSPong):
            # Ответ на серверный ping-конверт, действий не требуется
            pass

    async def _handle_chat(self, connection: Connection, message: WSChatMessage) -> None:
        # Сессию мог вытеснить sweep, пока соединение простаивало
        session = self._sessions.get_or_create(connection.session_id)
        mode = session.context.mode
        self._sessions.append_message(session.id, "user", message.content)

        message_id = str(uuid4())
        await connection.send(WSStreamStart(message_id=message_id, mode=mode))
        logger.info(f"[{session.id}] Stream started: {message_id} (mode={mode})")

        async def on_chunk(event: StreamEvent) -> None:
            if event.type == "text-delta" and event.text:
                await connection.send(WSStreamChunk(message_id=message_id, content=event.text))

        history = self._sessions.get_history(session.id, limit=self._history_limit)
        try:
            response = await self._llm.stream(format_messages(history), on_chunk, **self._llm_options(mode))
        except CBOBroError as e:
            logger.error(f"[{session.id}] Stream {message_id} failed: {e}")
            await connection.send(WSStreamError(message_id=message_id, error=e.message))
            return
        except Exception as e:
            logger.error(f"[{session.id}] Stream {message_id} failed: {e}", exc_info=True)
            await connection.send(WSStreamError(message_id=message_id, error=f"Streaming error: {e}"))
            return

        self._sessions.append_message(
            session.id, "assistant", response.content, message_id=message_id, metadata={"mode": mode}
        )
        delivered = await connection.send(WSStreamEnd(message_id=message_id, message=response.content))
        logger.info(
            f"[{session.id}] Stream completed: {message_id} ({len(response.content)} chars, "
            f"delivered={delivered})"
        )

    async def _handle_tool(self, connection: Connection, message: WSToolRequest) -> None:
        session = self._sessions.get_or_create(connection.session_id)
        tool = message.tool
        if self._tools.required_permission(tool) is None:
            logger.warning(f"[{session.id}] Unknown tool requested: {tool}")
            await connection.send(WSToolError(tool=tool, error=f"Unknown tool: {tool}"))
            return
        if not self._tools.has_permission(tool, session.context.permissions):
            logger.warning(f"[{session.id}] Tool permission denied: {tool}")
            await connection.send(WSToolError(tool=tool, error=f"Permission denied for tool: {tool}"))
            return

        await connection.send(WSToolUse(tool=tool, status="executing"))
        if tool not in session.context.active_tools:
            session.context.active_tools.append(tool)
        try:
            result = await self._tools.execute(tool, message.params, session.context.permissions)
        except ToolError as e:
            logger.error(f"[{session.id}] Tool {tool} failed: {e}")
            await connection.send(WSToolError(tool=tool, error=e.message))
            return
        finally:
            if tool in session.context.active_tools:
                session.context.active_tools.remove(tool)

        await connection.send(WSToolResult(tool=tool, result=result, status="completed"))

    async def _handle_mode(self, connection: Connection, message: WSModeChange) -> None:
        if message.mode not in VALID_MODES:
            raise InvalidModeError(message.mode, list(VALID_MODES))

        session = self._sessions.get_or_create(connection.session_id)
        self._sessions.update_context(session.id, mode=message.mode)
        logger.info(f"[{session.id}] Mode changed to {message.mode}")
        await connection.send(
            WSModeChanged(mode=message.mode, message=f"Switched to {message.mode} mode")
        )

    async def _send_error(self, connection: Connection, message: str) -> None:
        await connection.send(WSErrorResponse(error=message))

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Остановить прием кадров и дождаться текущих обработчиков"""
        for connection in await self._registry.all():
            connection.is_open = False
            await connection.inbox.put(None)
        workers = list(self._workers)
        if not workers:
            return
        logger.info(f"Waiting for {len(workers)} WebSocket worker(s) to finish")
        done, pending = await asyncio.wait(workers, timeout=timeout)
        for task in pending:
            logger.warning("WebSocket worker did not finish in time, cancelling")
            task.cancel()
        if pending:
            await asyncio.wait(pending)
