import abc
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Union

from cbo_bro.models.llm import LLMResponse, StreamEvent
from cbo_bro.models.session import SessionMessage

ChunkCallback = Callable[[StreamEvent], Awaitable[None]]

MODE_TEMPERATURES = {
    "analyze": 0.5,
    "create": 0.8,
    "research": 0.3,
    "optimize": 0.6,
}
DEFAULT_TEMPERATURE = 0.7


def temperature_for_mode(mode: str) -> float:
    return MODE_TEMPERATURES.get(mode, DEFAULT_TEMPERATURE)


def format_messages(
    messages: Iterable[Union[SessionMessage, Dict[str, Any]]]
) -> List[Dict[str, str]]:
    """
    Привести историю сессии к формату провайдера: [{"role", "content"}].

    Провайдер требует, чтобы разговор начинался с сообщения пользователя,
    поэтому ведущие сообщения ассистента (после обрезки истории) пропускаются.
    """
    formatted: List[Dict[str, str]] = []
    for msg in messages:
        if isinstance(msg, SessionMessage):
            role, content = msg.role, msg.content
        else:
            role, content = msg["role"], msg["content"]
        if not formatted and role != "user":
            continue
        formatted.append({"role": role, "content": content})
    return formatted


class BaseLLMClient(abc.ABC):
    """
    Базовый класс для всех LLM клиентов.

    Скрывает формат конкретного провайдера: стрим нормализуется в
    фиксированный словарь StreamEvent (text-delta, message-start, block-start,
    block-delta, block-stop, message-stop, error).
    """

    @abc.abstractmethod
    async def complete(self, messages: List[Dict[str, str]], **options: Any) -> LLMResponse:
        """
        Выполняет non-streaming запрос.

        Args:
            messages: Сообщения в формате format_messages()
            **options: model, max_tokens, temperature, system

        Returns:
            LLMResponse с полным текстом ответа

        Raises:
            UpstreamError: Ошибка провайдера после всех повторов
        """

    @abc.abstractmethod
    async def stream(
        self,
        messages: List[Dict[str, str]],
        on_chunk: ChunkCallback,
        **options: Any
    ) -> LLMResponse:
        """
        Выполняет streaming запрос.

        on_chunk вызывается (await) для каждого события в порядке провайдера.
        Завершается после message-stop и возвращает собранный ответ.
        При ошибке провайдера сначала доставляется событие error, затем
        выбрасывается UpstreamError.
        """

    async def close(self) -> None:
        """Освободить сетевые ресурсы клиента"""
