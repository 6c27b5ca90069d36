"""
Клиент Anthropic Messages API.

Обращается к POST /v1/messages через httpx и читает Server-Sent Events
стрима, приводя события провайдера к общему словарю StreamEvent.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from cbo_bro.core.errors import UpstreamError, UpstreamTimeoutError
from cbo_bro.models.llm import LLMResponse, StreamEvent
from cbo_bro.services.retry_service import call_with_retry

from .base import BaseLLMClient, ChunkCallback

logger = logging.getLogger("cbo-bro.llm.anthropic")

MESSAGES_PATH = "/v1/messages"


class AnthropicClient(BaseLLMClient):
    """
    LLM клиент для Anthropic.

    Пример:
        >>> client = AnthropicClient(api_key="sk-ant-...")
        >>> response = await client.complete([{"role": "user", "content": "Hi"}])
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        api_version: str = "2023-06-01",
        model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 4096,
        request_timeout: float = 30.0,
        stream_timeout: float = 120.0,
        max_retries: int = 3,
        retry_min_wait: float = 2.0,
        retry_max_wait: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.stream_timeout = stream_timeout
        self.max_retries = max_retries
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=request_timeout,
            transport=transport,
            headers={
                "x-api-key": api_key,
                "anthropic-version": api_version,
                "content-type": "application/json",
            },
        )

    def _build_payload(self, messages: List[Dict[str, str]], stream: bool, **options: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": options.get("model") or self.model,
            "max_tokens": options.get("max_tokens") or self.max_tokens,
            "messages": messages,
        }
        if options.get("system"):
            payload["system"] = options["system"]
        if options.get("temperature") is not None:
            payload["temperature"] = options["temperature"]
        if stream:
            payload["stream"] = True
        return payload

    async def complete(self, messages: List[Dict[str, str]], **options: Any) -> LLMResponse:
        payload = self._build_payload(messages, stream=False, **options)
        logger.debug(f"[AnthropicClient] complete: model={payload['model']} messages={len(messages)}")

        async def _post() -> httpx.Response:
            response = await self._client.post(MESSAGES_PATH, json=payload)
            response.raise_for_status()
            return response

        try:
            response = await call_with_retry(
                _post,
                max_attempts=self.max_retries,
                min_wait=self.retry_min_wait,
                max_wait=self.retry_max_wait,
            )
        except httpx.TimeoutException as e:
            logger.error(f"[AnthropicClient] Request timed out: {e}")
            raise UpstreamTimeoutError() from e
        except httpx.HTTPStatusError as e:
            reason = _error_message(e.response)
            logger.error(f"[AnthropicClient] HTTP {e.response.status_code}: {reason}")
            raise UpstreamError(reason, status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"[AnthropicClient] Transport error: {e}")
            raise UpstreamError(f"Upstream transport error: {e}") from e

        data = response.json()
        content = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        return LLMResponse(
            id=data.get("id"),
            model=data.get("model"),
            content=content,
            stop_reason=data.get("stop_reason"),
            usage=data.get("usage") or {},
        )

    async def stream(
        self,
        messages: List[Dict[str, str]],
        on_chunk: ChunkCallback,
        **options: Any
    ) -> LLMResponse:
        payload = self._build_payload(messages, stream=True, **options)
        logger.debug(f"[AnthropicClient] stream: model={payload['model']} messages={len(messages)}")
        try:
            return await self._stream(payload, on_chunk)
        except httpx.TimeoutException as e:
            logger.error(f"[AnthropicClient] Stream timed out: {e}")
            await on_chunk(StreamEvent(type="error", error="Upstream request timed out"))
            raise UpstreamTimeoutError() from e
        except httpx.HTTPError as e:
            logger.error(f"[AnthropicClient] Stream transport error: {e}")
            reason = f"Upstream transport error: {e}"
            await on_chunk(StreamEvent(type="error", error=reason))
            raise UpstreamError(reason) from e

    async def _stream(self, payload: Dict[str, Any], on_chunk: ChunkCallback) -> LLMResponse:
        result = LLMResponse(model=payload["model"])
        parts: List[str] = []
        completed = False

        async with self._client.stream(
            "POST", MESSAGES_PATH, json=payload, timeout=self.stream_timeout
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                reason = _error_message(response)
                logger.error(f"[AnthropicClient] HTTP {response.status_code}: {reason}")
                await on_chunk(StreamEvent(type="error", error=reason))
                raise UpstreamError(reason, status_code=response.status_code)

            event_name: Optional[str] = None
            async for line in response.aiter_lines():
                # Пустая строка - разделитель SSE событий
                if not line:
                    event_name = None
                    continue

                if line.startswith("event:"):
                    event_name = line[6:].strip()
                    continue

                if not line.startswith("data:"):
                    # SSE комментарий или неизвестная строка
                    continue

                try:
                    data = json.loads(line[5:].strip())
                except json.JSONDecodeError as e:
                    logger.warning(f"[AnthropicClient] Failed to parse SSE data for '{event_name}': {e}")
                    continue

                kind = data.get("type") or event_name

                if kind == "message_start":
                    message = data.get("message", {})
                    result.id = message.get("id")
                    result.model = message.get("model") or result.model
                    result.usage.update(message.get("usage") or {})
                    await on_chunk(StreamEvent(type="message-start", data=message))

                elif kind == "content_block_start":
                    await on_chunk(StreamEvent(type="block-start", data=data))

                elif kind == "content_block_delta":
                    delta = data.get("delta", {})
                    await on_chunk(StreamEvent(type="block-delta", data=data))
                    if delta.get("type") == "text_delta":
                        text = delta.get("text", "")
                        parts.append(text)
                        await on_chunk(StreamEvent(type="text-delta", text=text))

                elif kind == "content_block_stop":
                    await on_chunk(StreamEvent(type="block-stop", data=data))

                elif kind == "message_delta":
                    result.stop_reason = data.get("delta", {}).get("stop_reason") or result.stop_reason
                    result.usage.update(data.get("usage") or {})

                elif kind == "message_stop":
                    completed = True
                    await on_chunk(StreamEvent(type="message-stop"))
                    break

                elif kind == "error":
                    error = data.get("error", {})
                    reason = error.get("message") or "Upstream stream error"
                    logger.error(f"[AnthropicClient] Provider error event: {error}")
                    await on_chunk(StreamEvent(type="error", error=reason, data=error))
                    raise UpstreamError(reason, details={"type": error.get("type")})

                elif kind == "ping":
                    continue

                else:
                    logger.debug(f"[AnthropicClient] Ignoring SSE event: {kind}")

        if not completed:
            reason = "Upstream stream ended unexpectedly"
            logger.error(f"[AnthropicClient] {reason}")
            await on_chunk(StreamEvent(type="error", error=reason))
            raise UpstreamError(reason)

        result.content = "".join(parts)
        logger.info(
            f"[AnthropicClient] Stream completed: id={result.id} chars={len(result.content)} "
            f"stop_reason={result.stop_reason}"
        )
        return result

    async def close(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    """Достать текст ошибки из тела ответа провайдера"""
    try:
        body = response.json()
    except ValueError:
        return f"Upstream HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"Upstream HTTP {response.status_code}"
