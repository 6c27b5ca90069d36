"""
Реестр инструментов, доступных из WebSocket конверта `tool`.

Каждый инструмент требует флаг разрешения в SessionContext.permissions.
Сами интеграции (Notion, Supabase) внешние: обработчики по умолчанию
возвращают payload со статусом pending.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, NamedTuple, Optional

from cbo_bro.core.errors import (
    ToolError,
    ToolPermissionError,
    ToolTimeoutError,
    UnknownToolError,
)

logger = logging.getLogger("cbo-bro.tools")

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolSpec(NamedTuple):
    permission: str
    handler: ToolHandler


def _pending_integration(tool: str, title: str) -> ToolHandler:
    async def handler(params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": tool,
            "status": "pending",
            "message": f"{title} integration pending",
        }

    return handler


class ToolRegistry:
    """
    Реестр инструментов с проверкой разрешений и таймаутом.

    Пример:
        >>> registry = ToolRegistry(timeout=30)
        >>> result = await registry.execute("notion.search", {"query": "q3"}, permissions)
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._tools: Dict[str, ToolSpec] = {}

    @classmethod
    def with_defaults(cls, timeout: float = 30.0) -> "ToolRegistry":
        registry = cls(timeout=timeout)
        registry.register("notion.search", "notion.read", _pending_integration("notion.search", "Notion search"))
        registry.register("notion.create", "notion.write", _pending_integration("notion.create", "Notion create"))
        registry.register("supabase.query", "supabase.read", _pending_integration("supabase.query", "Supabase query"))
        registry.register("supabase.insert", "supabase.write", _pending_integration("supabase.insert", "Supabase insert"))
        return registry

    def register(self, name: str, permission: str, handler: ToolHandler) -> None:
        self._tools[name] = ToolSpec(permission, handler)
        logger.debug(f"Tool registered: {name} (requires {permission})")

    def required_permission(self, tool: str) -> Optional[str]:
        spec = self._tools.get(tool)
        return spec.permission if spec else None

    def has_permission(self, tool: str, permissions: Mapping[str, bool]) -> bool:
        permission = self.required_permission(tool)
        return permission is not None and permissions.get(permission) is True

    async def execute(self, tool: str, params: Dict[str, Any], permissions: Mapping[str, bool]) -> Any:
        """
        Выполнить инструмент.

        Raises:
            UnknownToolError: Инструмент не зарегистрирован
            ToolPermissionError: Нет разрешения в контексте сессии
            ToolTimeoutError: Обработчик не уложился в timeout
            ToolError: Обработчик завершился ошибкой
        """
        spec = self._tools.get(tool)
        if spec is None:
            raise UnknownToolError(tool)
        if permissions.get(spec.permission) is not True:
            raise ToolPermissionError(tool)

        try:
            return await asyncio.wait_for(spec.handler(params), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(tool, self.timeout) from e
        except ToolError:
            raise
        except Exception as e:
            logger.error(f"Tool {tool} failed: {e}", exc_info=True)
            raise ToolError(tool, str(e) or e.__class__.__name__) from e
