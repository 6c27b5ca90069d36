"""Модели нормализованного LLM стрима"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

StreamEventType = Literal[
    "text-delta",
    "message-start",
    "block-start",
    "block-delta",
    "block-stop",
    "message-stop",
    "error",
]


class StreamEvent(BaseModel):
    """Событие стрима провайдера, приведенное к общему словарю"""

    type: StreamEventType
    text: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class LLMResponse(BaseModel):
    id: Optional[str] = None
    model: Optional[str] = None
    content: str = ""
    stop_reason: Optional[str] = None
    usage: Dict[str, Any] = Field(default_factory=dict)
