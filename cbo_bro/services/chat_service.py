"""
Non-streaming путь чата, общий для REST API и Telegram.
"""

import logging
from typing import Any, Dict, List, Optional

from cbo_bro.models.admin import BotConfig
from cbo_bro.models.session import SessionMessage
from cbo_bro.services.config_service import ConfigService
from cbo_bro.services.llm import BaseLLMClient, format_messages, temperature_for_mode
from cbo_bro.services.session_store import SessionStore

logger = logging.getLogger("cbo-bro.chat")


class ChatService:
    """
    Обрабатывает одно сообщение целиком: история сессии -> complete -> ответ.

    Пример:
        >>> reply = await chat_service.process_message("123456", "How do I cut costs?")
    """

    def __init__(
        self,
        session_store: SessionStore,
        llm_client: BaseLLMClient,
        config_service: ConfigService,
        history_limit: int = 20,
    ):
        self.session_store = session_store
        self.llm_client = llm_client
        self.config_service = config_service
        self.history_limit = history_limit

    def llm_options(self, mode: str, bot_config: Optional[BotConfig] = None) -> Dict[str, Any]:
        """Параметры вызова LLM: активная конфигурация + температура режима"""
        bot_config = bot_config or self.config_service.get_active_config()
        return {
            "model": bot_config.model_settings.model,
            "max_tokens": bot_config.model_settings.max_tokens,
            "system": bot_config.system_prompt,
            "temperature": temperature_for_mode(mode),
        }

    async def process_message(self, session_id: str, text: str) -> str:
        """
        Обработать сообщение пользователя и вернуть ответ ассистента.

        Сообщение пользователя сохраняется сразу; ответ ассистента только
        при успешном вызове. Ошибки провайдера пробрасываются вызывающему.
        """
        session = self.session_store.get_or_create(session_id)
        self.session_store.append_message(session.id, "user", text)

        history = self.session_store.get_history(session.id, limit=self.history_limit)
        options = self.llm_options(session.context.mode)
        logger.info(f"[{session.id}] Processing message ({len(text)} chars, mode={session.context.mode})")

        response = await self.llm_client.complete(format_messages(history), **options)

        self.session_store.append_message(
            session.id, "assistant", response.content, metadata={"mode": session.context.mode}
        )
        logger.info(f"[{session.id}] Reply ready ({len(response.content)} chars)")
        return response.content

    async def process_with_config(self, message: str, bot_config: Optional[BotConfig] = None) -> str:
        """Разовый запрос с пробной конфигурацией (тестовая консоль админ-панели)"""
        bot_config = bot_config or self.config_service.get_active_config()
        options = self.llm_options("default", bot_config)
        options["temperature"] = bot_config.model_settings.temperature
        response = await self.llm_client.complete([{"role": "user", "content": message}], **options)
        return response.content

    def get_history(self, session_id: str, limit: int = 20) -> List[SessionMessage]:
        if not self.session_store.exists(session_id):
            return []
        return self.session_store.get_history(session_id, limit=limit)

    def clear(self, session_id: str) -> bool:
        return self.session_store.clear(session_id)
