"""
Исключения прикладного слоя: доступ и инструменты.
"""

from typing import Any, Dict, Optional

from .base import ApplicationError


class AccessDeniedError(ApplicationError):
    """Исключение: пользователь не в whitelist."""

    status_code = 403

    def __init__(self, user_id: Any = None, message: str = "Access denied"):
        super().__init__(
            message=message,
            details={"user_id": user_id},
            error_code="ACCESS_DENIED"
        )


class AdminAuthError(ApplicationError):
    """Исключение: отсутствует, невалиден или истек admin токен."""

    status_code = 401

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message=message, error_code="ADMIN_AUTH_ERROR")


class ToolError(ApplicationError):
    """Базовая ошибка выполнения инструмента."""

    def __init__(
        self,
        tool: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "TOOL_ERROR"
    ):
        super().__init__(
            message=message,
            details={"tool": tool, **(details or {})},
            error_code=error_code
        )
        self.tool = tool


class ToolPermissionError(ToolError):
    """Исключение: контекст сессии не дает прав на инструмент."""

    status_code = 403

    def __init__(self, tool: str):
        super().__init__(tool, f"Permission denied for tool: {tool}", error_code="TOOL_PERMISSION_DENIED")


class UnknownToolError(ToolError):
    """Исключение: инструмент не зарегистрирован."""

    status_code = 404

    def __init__(self, tool: str):
        super().__init__(tool, f"Unknown tool: {tool}", error_code="UNKNOWN_TOOL")


class ToolTimeoutError(ToolError):
    """Исключение: инструмент не уложился в дедлайн."""

    status_code = 504

    def __init__(self, tool: str, timeout: float):
        super().__init__(
            tool,
            f"Tool {tool} timed out after {timeout:g}s",
            details={"timeout": timeout},
            error_code="TOOL_TIMEOUT"
        )
