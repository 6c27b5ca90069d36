"""Модели REST API (чат, авторизация, статус)"""

from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from .session import CamelModel, SessionMessage

UserId = Union[int, str]


class HealthResponse(CamelModel):
    status: str
    service: str
    version: str
    timestamp: str


class StatusResponse(CamelModel):
    status: str
    sessions: int
    connections: int
    session_connections: Optional[int] = None
    uptime: float


class ChatMessageRequest(CamelModel):
    user_id: UserId
    message: str = Field(min_length=1)


class ChatMessageResponse(CamelModel):
    response: str


class ChatHistoryResponse(CamelModel):
    messages: List[SessionMessage]


class UserRequest(CamelModel):
    user_id: UserId


class ChatClearResponse(CamelModel):
    success: bool


class AuthCheckResponse(CamelModel):
    authorized: bool
    is_admin: bool


class ErrorResponse(CamelModel):
    error: str
    error_code: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
