"""
Доменные исключения.

Нарушения правил работы с сессиями, протоколом и конфигурацией бота.
"""

from typing import Any, Dict, List, Optional

from .base import DomainError


class InvalidModeError(DomainError):
    """Исключение: запрошен режим, которого нет в списке допустимых."""

    def __init__(self, mode: Any, valid_modes: List[str]):
        super().__init__(
            message="Invalid mode",
            details={"mode": mode, "valid_modes": valid_modes},
            error_code="INVALID_MODE"
        )


class MessageValidationError(DomainError):
    """
    Исключение: входящее WebSocket сообщение не прошло валидацию.

    Выбрасывается парсером при невалидном JSON или отсутствии полей.
    """

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=reason,
            details=details,
            error_code="MESSAGE_VALIDATION_ERROR"
        )


class UnknownMessageTypeError(MessageValidationError):
    """Исключение: неизвестный тип WebSocket сообщения."""

    def __init__(self, msg_type: Any):
        super().__init__("Unknown message type", details={"type": msg_type})
        self.error_code = "UNKNOWN_MESSAGE_TYPE"


class ConfigValidationError(DomainError):
    """
    Исключение: конфигурация бота не прошла проверку.

    Пример:
        >>> raise ConfigValidationError(["Model is required"])
    """

    def __init__(self, errors: List[str]):
        super().__init__(
            message="Configuration validation failed: " + ", ".join(errors),
            details={"errors": errors},
            error_code="CONFIG_VALIDATION_ERROR"
        )
        self.errors = errors


class DeploymentNotFoundError(DomainError):
    """Исключение: версия для отката не найдена или не содержит снапшота."""

    status_code = 404

    def __init__(self, version: str, reason: str = "not found"):
        super().__init__(
            message=f"Version {version} {reason}",
            details={"version": version},
            error_code="DEPLOYMENT_NOT_FOUND"
        )
