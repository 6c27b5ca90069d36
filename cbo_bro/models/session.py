"""
Модели состояния сессии.

Сериализуются в camelCase (createdAt, lastActivity, activeTools), как их
ожидают Mini-App и WebSocket клиенты.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

VALID_MODES = ("analyze", "create", "research", "optimize")
DEFAULT_MODE = "analyze"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_permissions() -> Dict[str, bool]:
    return {
        "notion.read": True,
        "notion.write": False,
        "supabase.read": True,
        "supabase.write": False,
    }


class CamelModel(BaseModel):
    """Базовая модель с camelCase алиасами для JSON"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionMessage(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionContext(CamelModel):
    mode: str = DEFAULT_MODE
    active_tools: List[str] = Field(default_factory=list)
    permissions: Dict[str, bool] = Field(default_factory=default_permissions)
    preferences: Dict[str, Any] = Field(default_factory=dict)


class Session(CamelModel):
    """
    Состояние разговора.

    Сессия живет независимо от соединений: несколько вкладок или Telegram
    чат ссылаются на нее по ID.
    """

    id: str
    messages: List[SessionMessage] = Field(default_factory=list)
    context: SessionContext = Field(default_factory=SessionContext)
    created_at: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)


class SessionStats(BaseModel):
    total: int
    active: int
    idle: int
    avg_messages: float
    modes: Dict[str, int]
