from functools import lru_cache
from typing import Optional

from telegram import Bot

from cbo_bro.core.config import config
from cbo_bro.services.admin_auth_service import AdminAuthService
from cbo_bro.services.chat_service import ChatService
from cbo_bro.services.config_service import ConfigService
from cbo_bro.services.llm import BaseLLMClient, create_llm_client
from cbo_bro.services.session_cleanup import SessionSweeper
from cbo_bro.services.session_store import SessionStore
from cbo_bro.services.telegram import TelegramAdapter
from cbo_bro.services.tools import ToolRegistry
from cbo_bro.services.websocket import ConnectionRegistry, WebSocketHandler, WebSocketMessageParser
from cbo_bro.services.whitelist_service import WhitelistService

# Singletons через lru_cache


@lru_cache
def get_session_store() -> SessionStore:
    return SessionStore(timeout=config.session_timeout, max_messages=config.session_max_messages)


@lru_cache
def get_session_sweeper() -> SessionSweeper:
    return SessionSweeper(get_session_store(), interval=config.session_sweep_interval)


@lru_cache
def get_llm_client() -> BaseLLMClient:
    return create_llm_client(config)


@lru_cache
def get_config_service() -> ConfigService:
    return ConfigService(config.admin_config_dir)


@lru_cache
def get_whitelist_service() -> WhitelistService:
    return WhitelistService(config.whitelist_path)


@lru_cache
def get_tool_registry() -> ToolRegistry:
    return ToolRegistry.with_defaults(timeout=config.tool_timeout)


@lru_cache
def get_connection_registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@lru_cache
def get_chat_service() -> ChatService:
    return ChatService(get_session_store(), get_llm_client(), get_config_service())


@lru_cache
def get_websocket_handler() -> WebSocketHandler:
    return WebSocketHandler(
        message_parser=WebSocketMessageParser(),
        session_store=get_session_store(),
        llm_client=get_llm_client(),
        tools=get_tool_registry(),
        registry=get_connection_registry(),
        llm_options=get_chat_service().llm_options,
        heartbeat_interval=config.heartbeat_interval,
        restore_limit=config.session_restore_limit,
    )


@lru_cache
def get_admin_auth_service() -> AdminAuthService:
    return AdminAuthService(
        secret=config.jwt_secret,
        algorithm=config.jwt_algorithm,
        expire_hours=config.jwt_expire_hours,
        bot_token=config.telegram_bot_token,
    )


@lru_cache
def get_telegram_adapter() -> Optional[TelegramAdapter]:
    if not config.telegram_bot_token:
        return None
    return TelegramAdapter(
        bot=Bot(token=config.telegram_bot_token),
        chat_service=get_chat_service(),
        whitelist=get_whitelist_service(),
        reply_deadline=config.telegram_reply_deadline,
        menu_text=config.telegram_menu_text,
        version=config.version,
    )
