"""
Admin panel API.

Every route except /api/admin/auth is guarded by AdminAuthMiddleware, which
puts the decoded token into request.state.admin.
"""

import time
from collections import Counter
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from cbo_bro.core.config import config, logger
from cbo_bro.core.dependencies import (
    get_admin_auth_service,
    get_chat_service,
    get_config_service,
    get_session_store,
    get_whitelist_service,
)
from cbo_bro.models.admin import (
    AdminAuthResponse,
    BotConfig,
    ConfigExport,
    ConfigTestRequest,
    ConfigUpdateRequest,
    Deployment,
    DeploymentStatus,
    DeployRequest,
    PromptUpdateRequest,
    RollbackRequest,
    TelegramAuthRequest,
)
from cbo_bro.services.admin_auth_service import AdminAuthService
from cbo_bro.services.chat_service import ChatService
from cbo_bro.services.config_service import ConfigService, detect_flow, detect_flow_key
from cbo_bro.services.session_store import SessionStore
from cbo_bro.services.whitelist_service import WhitelistService

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _admin_name(request: Request) -> str:
    admin = getattr(request.state, "admin", {}) or {}
    return admin.get("username") or str(admin.get("userId", "unknown"))


@router.post("/auth", response_model=AdminAuthResponse)
async def admin_auth(
    auth: TelegramAuthRequest,
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
    whitelist: WhitelistService = Depends(get_whitelist_service),
):
    # Hash Telegram Login Widget проверяется только в production
    if config.is_production and not auth_service.verify_telegram_auth(auth.model_dump()):
        logger.warning(f"Invalid Telegram auth data for user {auth.id}")
        return JSONResponse(status_code=401, content={"error": "Invalid authentication"})

    if not whitelist.is_admin(auth.id):
        logger.warning(f"Non-admin user {auth.id} ({auth.username}) attempted admin access")
        return JSONResponse(status_code=403, content={"error": "Admin access required"})

    token = auth_service.create_token(auth.id, auth.username, auth.first_name)
    logger.info(f"Admin {auth.username} ({auth.id}) logged in")
    return AdminAuthResponse(
        token=token,
        user={"id": auth.id, "username": auth.username, "first_name": auth.first_name},
    )


# ==================== Configuration ====================


@router.get("/config", response_model=BotConfig)
async def get_config(config_service: ConfigService = Depends(get_config_service)):
    return config_service.get_active_config()


@router.post("/config")
async def save_config(
    update: ConfigUpdateRequest,
    request: Request,
    config_service: ConfigService = Depends(get_config_service),
):
    config_service.save_config(update.config)
    logger.info(f"Configuration updated by {_admin_name(request)}")
    return {"success": True}


@router.get("/config/export", response_model=ConfigExport)
async def export_config(config_service: ConfigService = Depends(get_config_service)):
    return config_service.export_config()


@router.post("/config/import")
async def import_config(
    data: Dict[str, Any],
    request: Request,
    config_service: ConfigService = Depends(get_config_service),
):
    config_service.import_config(data)
    logger.info(f"Configuration imported by {_admin_name(request)}")
    return {"success": True}


@router.get("/prompt")
async def get_prompt(config_service: ConfigService = Depends(get_config_service)):
    return {"prompt": config_service.get_active_config().system_prompt}


@router.post("/prompt")
async def save_prompt(
    update: PromptUpdateRequest,
    request: Request,
    config_service: ConfigService = Depends(get_config_service),
):
    config_service.update_prompt(update.prompt)
    logger.info(f"Prompt updated by {_admin_name(request)}")
    return {"success": True}


@router.post("/test")
async def run_config_test(
    test: ConfigTestRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    started = time.monotonic()
    response = await chat_service.process_with_config(test.message, test.config)
    return {
        "response": response,
        # Грубая оценка: ~4 символа на токен
        "tokens": -(-len(response) // 4),
        "responseTime": int((time.monotonic() - started) * 1000),
        "flow": detect_flow(test.message, test.config.flow_keywords if test.config else None),
    }


# ==================== Deployment ====================


@router.get("/deploy/status", response_model=DeploymentStatus)
async def deploy_status(config_service: ConfigService = Depends(get_config_service)):
    return config_service.get_deployment_status()


@router.post("/deploy")
async def deploy(
    body: DeployRequest,
    request: Request,
    config_service: ConfigService = Depends(get_config_service),
):
    deployment = config_service.deploy(body.environment, deployed_by=_admin_name(request))
    return {
        "success": True,
        "message": "Deployment initiated",
        "environment": deployment.environment,
        "version": deployment.version,
    }


@router.get("/deploy/history", response_model=List[Deployment])
async def deploy_history(config_service: ConfigService = Depends(get_config_service)):
    return config_service.get_deployment_history()


@router.post("/deploy/rollback")
async def rollback(
    body: RollbackRequest,
    request: Request,
    config_service: ConfigService = Depends(get_config_service),
):
    config_service.rollback(body.version)
    logger.info(f"Rolled back to {body.version} by {_admin_name(request)}")
    return {"success": True}


# ==================== Analytics ====================


@router.get("/analytics/stats")
async def analytics_stats(session_store: SessionStore = Depends(get_session_store)):
    stats = session_store.stats()
    user_messages = sum(
        1 for session in session_store.all_sessions() for m in session.messages if m.role == "user"
    )
    return {
        "total_queries": user_messages,
        "active_users": stats.active,
        "total_sessions": stats.total,
        "avg_messages": stats.avg_messages,
        "modes": stats.modes,
    }


@router.get("/analytics/flows")
async def analytics_flows(
    session_store: SessionStore = Depends(get_session_store),
    config_service: ConfigService = Depends(get_config_service),
):
    keywords = config_service.get_active_config().flow_keywords
    counts: Counter = Counter({key: 0 for key in keywords})
    for session in session_store.all_sessions():
        for message in session.messages:
            if message.role == "user":
                counts[detect_flow_key(message.content, keywords) or "general"] += 1
    return dict(counts)
