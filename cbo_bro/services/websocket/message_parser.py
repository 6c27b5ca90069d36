"""
Парсер WebSocket сообщений с валидацией.

Обеспечивает строгую типизацию входящих конвертов от Mini-App / браузера.
"""

import json
import logging

from pydantic import ValidationError

from cbo_bro.core.errors import MessageValidationError, UnknownMessageTypeError
from cbo_bro.models.websocket import (
    InboundEnvelope,
    WSChatMessage,
    WSModeChange,
    WSPing,
    WSPong,
    WSToolRequest,
)

logger = logging.getLogger("cbo-bro.websocket.parser")


class WebSocketMessageParser:
    """Парсер WebSocket сообщений с валидацией."""

    def parse(self, raw_message: str) -> InboundEnvelope:
        """
        Парсит и валидирует входящий конверт.

        Args:
            raw_message: Сырое JSON сообщение

        Returns:
            Валидированный конверт соответствующего типа

        Raises:
            MessageValidationError: Невалидный JSON или поля конверта
            UnknownMessageTypeError: Неизвестный тип конверта
        """
        try:
            data = json.loads(raw_message)
        except json.JSONDecodeError as e:
            raise MessageValidationError(f"Invalid JSON: {e}")

        if not isinstance(data, dict):
            raise MessageValidationError("Message must be a JSON object")

        msg_type = data.get("type")
        if not msg_type:
            raise MessageValidationError("Message type is required")

        try:
            if msg_type == "chat":
                return WSChatMessage.model_validate(data)
            elif msg_type == "tool":
                return WSToolRequest.model_validate(data)
            elif msg_type == "mode":
                return WSModeChange.model_validate(data)
            elif msg_type == "ping":
                return WSPing.model_validate(data)
            elif msg_type == "pong":
                return WSPong.model_validate(data)
            else:
                raise UnknownMessageTypeError(msg_type)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            logger.debug(f"Validation failed for '{msg_type}': {e}")
            raise MessageValidationError(
                f"Validation error: invalid or missing fields: {fields}",
                details={"type": msg_type},
            )
