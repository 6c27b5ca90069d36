"""
WebSocket модуль CBO-Bro.

Содержит компоненты для обработки WebSocket соединений:
- WebSocketMessageParser: парсинг и валидация входящих конвертов
- ConnectionRegistry: реестр активных соединений
- WebSocketHandler: главный обработчик, координирующий сессии и LLM стрим
"""

from .connection_registry import Connection, ConnectionRegistry
from .message_parser import WebSocketMessageParser
from .websocket_handler import WebSocketHandler

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "WebSocketMessageParser",
    "WebSocketHandler",
]
