import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket

from cbo_bro.core.config import config, logger
from cbo_bro.core.dependencies import (
    get_chat_service,
    get_connection_registry,
    get_session_store,
    get_websocket_handler,
    get_whitelist_service,
)
from cbo_bro.core.errors import AccessDeniedError
from cbo_bro.models.rest import (
    AuthCheckResponse,
    ChatClearResponse,
    ChatHistoryResponse,
    ChatMessageRequest,
    ChatMessageResponse,
    HealthResponse,
    StatusResponse,
    UserId,
    UserRequest,
)
from cbo_bro.services.chat_service import ChatService
from cbo_bro.services.session_store import SessionStore
from cbo_bro.services.websocket import ConnectionRegistry, WebSocketHandler
from cbo_bro.services.whitelist_service import WhitelistService

router = APIRouter()

STARTED_AT = time.monotonic()

HISTORY_LIMIT = 20


def ensure_whitelisted(whitelist: WhitelistService, user_id: UserId) -> None:
    if not whitelist.is_whitelisted(user_id):
        logger.warning(f"Unauthorized API access attempt from user {user_id}")
        raise AccessDeniedError(user_id)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        status="healthy",
        service="cbo-bro",
        version=config.version,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/api/status", response_model=StatusResponse)
async def status(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    session_store: SessionStore = Depends(get_session_store),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """Состояние сервиса; с sessionId также число вкладок, открытых в этой сессии"""
    session_connections = None
    if session_id:
        session_connections = len(await registry.for_session(session_id))
    return StatusResponse(
        status="online",
        sessions=session_store.count(),
        connections=registry.count(),
        session_connections=session_connections,
        uptime=round(time.monotonic() - STARTED_AT, 3),
    )


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    handler: WebSocketHandler = Depends(get_websocket_handler),
):
    await handler.handle_connection(websocket)


# ==================== Mini-App chat API ====================


@router.post("/api/chat/message", response_model=ChatMessageResponse)
async def chat_message(
    request: ChatMessageRequest,
    chat_service: ChatService = Depends(get_chat_service),
    whitelist: WhitelistService = Depends(get_whitelist_service),
):
    ensure_whitelisted(whitelist, request.user_id)
    response = await chat_service.process_message(str(request.user_id), request.message)
    return ChatMessageResponse(response=response)


@router.get(
    "/api/chat/history/{user_id}",
    response_model=ChatHistoryResponse,
    response_model_by_alias=True,
)
async def chat_history(
    user_id: str,
    chat_service: ChatService = Depends(get_chat_service),
    whitelist: WhitelistService = Depends(get_whitelist_service),
):
    ensure_whitelisted(whitelist, user_id)
    return ChatHistoryResponse(messages=chat_service.get_history(user_id, limit=HISTORY_LIMIT))


@router.post("/api/chat/clear", response_model=ChatClearResponse)
async def chat_clear(
    request: UserRequest,
    chat_service: ChatService = Depends(get_chat_service),
    whitelist: WhitelistService = Depends(get_whitelist_service),
):
    ensure_whitelisted(whitelist, request.user_id)
    chat_service.clear(str(request.user_id))
    return ChatClearResponse(success=True)


@router.post("/api/auth/check", response_model=AuthCheckResponse)
async def auth_check(
    request: UserRequest,
    whitelist: WhitelistService = Depends(get_whitelist_service),
):
    return AuthCheckResponse(
        authorized=whitelist.is_whitelisted(request.user_id),
        is_admin=whitelist.is_admin(request.user_id),
    )
