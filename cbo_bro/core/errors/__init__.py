"""
Кастомные исключения CBO-Bro Gateway.
"""

from .base import (
    CBOBroError,
    DomainError,
    InfrastructureError,
    ApplicationError
)

from .domain_errors import (
    InvalidModeError,
    MessageValidationError,
    UnknownMessageTypeError,
    ConfigValidationError,
    DeploymentNotFoundError
)

from .infrastructure_errors import (
    UpstreamError,
    UpstreamTimeoutError
)

from .application_errors import (
    AccessDeniedError,
    AdminAuthError,
    ToolError,
    ToolPermissionError,
    UnknownToolError,
    ToolTimeoutError
)

__all__ = [
    # Базовые исключения
    "CBOBroError",
    "DomainError",
    "InfrastructureError",
    "ApplicationError",

    # Доменные исключения
    "InvalidModeError",
    "MessageValidationError",
    "UnknownMessageTypeError",
    "ConfigValidationError",
    "DeploymentNotFoundError",

    # Инфраструктурные исключения
    "UpstreamError",
    "UpstreamTimeoutError",

    # Доступ и инструменты
    "AccessDeniedError",
    "AdminAuthError",
    "ToolError",
    "ToolPermissionError",
    "UnknownToolError",
    "ToolTimeoutError",
]
