"""
LLM клиенты CBO-Bro.

Фабрика create_llm_client() выбирает реализацию по config.llm_mode.
"""

import logging

from cbo_bro.core.config import AppConfig

from .anthropic_client import AnthropicClient
from .base import (
    BaseLLMClient,
    ChunkCallback,
    DEFAULT_TEMPERATURE,
    MODE_TEMPERATURES,
    format_messages,
    temperature_for_mode,
)
from .fake import FakeLLMClient

logger = logging.getLogger("cbo-bro.llm")


def create_llm_client(settings: AppConfig) -> BaseLLMClient:
    if settings.llm_mode == "fake":
        logger.info("Using FakeLLMClient (llm_mode=fake)")
        return FakeLLMClient()
    if not settings.anthropic_api_key:
        logger.warning("CBO_BRO__ANTHROPIC_API_KEY is not set, upstream calls will be rejected")
    return AnthropicClient(
        api_key=settings.anthropic_api_key,
        base_url=settings.anthropic_base_url,
        api_version=settings.anthropic_version,
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
        request_timeout=settings.request_timeout,
        stream_timeout=settings.stream_timeout,
        max_retries=settings.llm_max_retries,
    )


__all__ = [
    "AnthropicClient",
    "BaseLLMClient",
    "ChunkCallback",
    "DEFAULT_TEMPERATURE",
    "FakeLLMClient",
    "MODE_TEMPERATURES",
    "create_llm_client",
    "format_messages",
    "temperature_for_mode",
]
