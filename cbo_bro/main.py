"""
CBO-Bro Gateway - main application entry point.

FastAPI service for the CBO-Bro Telegram bot and Mini-App: WebSocket streaming
chat, REST chat API, Telegram webhook and admin panel API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from telegram.error import TelegramError

from cbo_bro.api.v1 import admin, endpoints, telegram
from cbo_bro.core.config import config, logger
from cbo_bro.core.dependencies import (
    get_config_service,
    get_llm_client,
    get_session_sweeper,
    get_telegram_adapter,
    get_websocket_handler,
    get_whitelist_service,
)
from cbo_bro.core.errors import CBOBroError
from cbo_bro.middleware.admin_auth import AdminAuthMiddleware
from cbo_bro.models.rest import ErrorResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting CBO-Bro Gateway...")
    logger.info(f"Environment: {config.environment}")
    logger.info(f"Version: {config.version}")
    logger.info(f"LLM mode: {config.llm_mode}")

    get_config_service()
    get_whitelist_service()
    sweeper = get_session_sweeper()
    await sweeper.start()
    logger.info("✓ Session sweeper started")

    adapter = get_telegram_adapter()
    if adapter is not None:
        try:
            await adapter.start()
            if config.is_production and config.webhook_url:
                base_url = config.webhook_url.rstrip("/")
                await adapter.configure_webhook(f"{base_url}/telegram-webhook", base_url)
            logger.info("✓ Telegram bot ready")
        except TelegramError as e:
            logger.error(f"Failed to initialize Telegram bot: {e}")
    else:
        logger.warning("CBO_BRO__TELEGRAM_BOT_TOKEN is not set, Telegram webhook disabled")

    yield

    logger.info("Shutting down CBO-Bro Gateway...")
    await get_websocket_handler().shutdown()
    await sweeper.stop()
    if adapter is not None:
        await adapter.stop()
    await get_llm_client().close()


# Create FastAPI application
app = FastAPI(
    title="CBO-Bro Gateway",
    description="Telegram bot and Mini-App gateway to the Claude API",
    version=config.version,
    docs_url="/docs" if config.is_development else None,
    redoc_url="/redoc" if config.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(AdminAuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if config.is_development else config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CBOBroError)
async def cbo_bro_error_handler(request: Request, exc: CBOBroError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message, error_code=exc.error_code, details=exc.details).model_dump(),
    )


# Include API routers
app.include_router(endpoints.router)
app.include_router(telegram.router)
app.include_router(admin.router)


def run():
    import uvicorn

    uvicorn.run(
        "cbo_bro.main:app",
        host=config.host,
        port=config.port,
        reload=config.is_development,
        log_level=config.log_level.lower(),
        ws_ping_interval=config.heartbeat_interval,
        ws_ping_timeout=config.heartbeat_interval,
    )


if __name__ == "__main__":
    run()
