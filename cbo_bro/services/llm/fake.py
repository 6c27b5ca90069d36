import asyncio
import logging
import pprint
from typing import Any, Dict, List, Optional, Sequence

from cbo_bro.core.errors import UpstreamError
from cbo_bro.models.llm import LLMResponse, StreamEvent

from .base import BaseLLMClient, ChunkCallback

logger = logging.getLogger("cbo-bro.llm.fake")


class FakeLLMClient(BaseLLMClient):
    """
    Детерминированный LLM клиент без сети.

    Используется при llm_mode=fake и в тестах. Без сценария отвечает эхом
    последнего сообщения пользователя; со сценарием проигрывает заданные
    события стрима как есть.
    """

    def __init__(
        self,
        script: Optional[Sequence[StreamEvent]] = None,
        reply: Optional[str] = None,
        error: Optional[Exception] = None,
        chunk_delay: float = 0.0,
    ):
        self.script = list(script) if script is not None else None
        self.reply = reply
        self.error = error
        self.chunk_delay = chunk_delay
        self.calls: List[Dict[str, Any]] = []

    def _reply_for(self, messages: List[Dict[str, str]]) -> str:
        if self.reply is not None:
            return self.reply
        last_user = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        return f"Echo: {last_user}"

    def _events_for(self, messages: List[Dict[str, str]]) -> List[StreamEvent]:
        if self.script is not None:
            return self.script
        words = self._reply_for(messages).split(" ")
        deltas = [w if i == 0 else " " + w for i, w in enumerate(words)]
        return (
            [StreamEvent(type="message-start", data={"id": "msg_fake"}),
             StreamEvent(type="block-start", data={"index": 0})]
            + [StreamEvent(type="text-delta", text=d) for d in deltas]
            + [StreamEvent(type="block-stop", data={"index": 0}),
               StreamEvent(type="message-stop")]
        )

    async def complete(self, messages: List[Dict[str, str]], **options: Any) -> LLMResponse:
        self.calls.append({"messages": messages, "options": options})
        logger.debug(
            f"[FakeLLMClient] complete called with: {pprint.pformat(self.calls[-1], indent=2, width=120)}"
        )
        if self.chunk_delay:
            await asyncio.sleep(self.chunk_delay)
        if self.error is not None:
            raise self.error
        return LLMResponse(id="msg_fake", model="fake-llm", content=self._reply_for(messages), stop_reason="end_turn")

    async def stream(
        self,
        messages: List[Dict[str, str]],
        on_chunk: ChunkCallback,
        **options: Any
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "options": options, "stream": True})
        parts: List[str] = []
        for event in self._events_for(messages):
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            await on_chunk(event)
            if event.type == "text-delta":
                parts.append(event.text or "")
            elif event.type == "error":
                raise UpstreamError(event.error or "Upstream stream error")
            elif event.type == "message-stop":
                return LLMResponse(id="msg_fake", model="fake-llm", content="".join(parts), stop_reason="end_turn")

        reason = "Upstream stream ended unexpectedly"
        await on_chunk(StreamEvent(type="error", error=reason))
        raise UpstreamError(reason)
