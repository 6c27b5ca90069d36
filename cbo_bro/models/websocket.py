"""
WebSocket конверты (envelopes) CBO-Bro.

Каждое сообщение несет дискриминатор `type`. Входящие конверты приходят от
Mini-App / браузера, исходящие отправляет сервер.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import ConfigDict, Field

from .session import CamelModel, SessionContext, SessionMessage, utc_now


# ---------------------------------------------------------------------------
# Входящие сообщения
# ---------------------------------------------------------------------------


class WSChatMessage(CamelModel):
    type: Literal["chat"]
    content: str = Field(min_length=1)


class WSToolRequest(CamelModel):
    """Запрос на выполнение инструмента"""

    type: Literal["tool"]
    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "tool",
                "tool": "notion.search",
                "params": {"query": "quarterly plan"},
            }
        }
    )


class WSModeChange(CamelModel):
    type: Literal["mode"]
    mode: str


class WSPing(CamelModel):
    type: Literal["ping"]


class WSPong(CamelModel):
    """Ответ клиента на серверный heartbeat ping"""

    type: Literal["pong"]


InboundEnvelope = Union[WSChatMessage, WSToolRequest, WSModeChange, WSPing, WSPong]


# ---------------------------------------------------------------------------
# Исходящие сообщения
# ---------------------------------------------------------------------------


class WSConnectionEstablished(CamelModel):
    type: Literal["connection.established"] = "connection.established"
    session_id: str
    connection_id: str
    timestamp: datetime = Field(default_factory=utc_now)


class WSSessionRestored(CamelModel):
    type: Literal["session.restored"] = "session.restored"
    messages: List[SessionMessage]
    context: SessionContext


class WSStreamStart(CamelModel):
    type: Literal["stream.start"] = "stream.start"
    message_id: str
    mode: str


class WSStreamChunk(CamelModel):
    type: Literal["stream.chunk"] = "stream.chunk"
    message_id: str
    content: str


class WSStreamEnd(CamelModel):
    type: Literal["stream.end"] = "stream.end"
    message_id: str
    message: str


class WSStreamError(CamelModel):
    type: Literal["stream.error"] = "stream.error"
    message_id: str
    error: str


class WSToolUse(CamelModel):
    type: Literal["tool.use"] = "tool.use"
    tool: str
    status: str = "executing"


class WSToolResult(CamelModel):
    type: Literal["tool.result"] = "tool.result"
    tool: str
    result: Optional[Any] = None
    status: str = "completed"


class WSToolError(CamelModel):
    type: Literal["tool.error"] = "tool.error"
    tool: str
    error: str


class WSModeChanged(CamelModel):
    type: Literal["mode.changed"] = "mode.changed"
    mode: str
    message: str


class WSErrorResponse(CamelModel):
    type: Literal["error"] = "error"
    error: str


class WSPongResponse(CamelModel):
    type: Literal["pong"] = "pong"


class WSHeartbeatPing(CamelModel):
    type: Literal["ping"] = "ping"
    timestamp: datetime = Field(default_factory=utc_now)


OutboundEnvelope = Union[
    WSConnectionEstablished,
    WSSessionRestored,
    WSStreamStart,
    WSStreamChunk,
    WSStreamEnd,
    WSStreamError,
    WSToolUse,
    WSToolResult,
    WSToolError,
    WSModeChanged,
    WSErrorResponse,
    WSPongResponse,
    WSHeartbeatPing,
]
