"""
Базовые исключения CBO-Bro Gateway.

Определяют иерархию ошибок для слоев приложения: домен (сессии, режимы,
конфигурация), инфраструктура (LLM провайдер, Telegram) и прикладной слой
(доступ, инструменты).
"""

from typing import Any, Dict, Optional


class CBOBroError(Exception):
    """
    Базовое исключение для всех ошибок приложения.

    Атрибуты:
        message: Сообщение об ошибке
        details: Дополнительные детали ошибки
        error_code: Код ошибки для идентификации

    Пример:
        >>> try:
        ...     raise CBOBroError("Something went wrong")
        ... except CBOBroError as e:
        ...     print(f"Error: {e}")
    """

    # HTTP статус, который используют обработчики исключений FastAPI
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.details = details or {}
        self.error_code = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Преобразовать исключение в словарь.

        Используется в ответах API и при логировании.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class DomainError(CBOBroError):
    """Ошибки бизнес-правил: сессии, режимы, конфигурация."""

    status_code = 400


class InfrastructureError(CBOBroError):
    """Ошибки внешних систем: LLM провайдер, Telegram Bot API, файлы."""

    status_code = 502


class ApplicationError(CBOBroError):
    """Ошибки прикладного слоя: авторизация, инструменты."""

    status_code = 400
