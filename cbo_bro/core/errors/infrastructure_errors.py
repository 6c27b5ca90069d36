"""
Инфраструктурные исключения.

Ошибки обращения к LLM провайдеру.
"""

from typing import Any, Dict, Optional

from .base import InfrastructureError


class UpstreamError(InfrastructureError):
    """
    Исключение: ошибка LLM провайдера (HTTP, транспорт или событие error в stream).

    Пример:
        >>> raise UpstreamError("Overloaded", status_code=529)
    """

    def __init__(
        self,
        reason: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=reason,
            details={"upstream_status": status_code, **(details or {})},
            error_code="UPSTREAM_ERROR"
        )
        self.upstream_status = status_code


class UpstreamTimeoutError(UpstreamError):
    """Исключение: провайдер не ответил вовремя."""

    status_code = 504

    def __init__(self, reason: str = "Upstream request timed out"):
        super().__init__(reason)
        self.error_code = "UPSTREAM_TIMEOUT"
