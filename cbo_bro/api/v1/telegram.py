"""Telegram webhook routes"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from cbo_bro.core.config import logger
from cbo_bro.core.dependencies import get_telegram_adapter
from cbo_bro.services.telegram import TelegramAdapter

router = APIRouter(tags=["telegram"])


async def _process_update(request: Request, adapter: Optional[TelegramAdapter]) -> dict:
    # Telegram повторяет апдейт при любом ответе кроме 200
    if adapter is None:
        logger.warning("Telegram update received but bot is not configured")
        return {"ok": True}
    try:
        payload = await request.json()
        await adapter.process_webhook(payload)
    except Exception as e:
        logger.error(f"Webhook processing failed: {e}", exc_info=True)
    return {"ok": True}


@router.post("/telegram-webhook")
async def telegram_webhook(
    request: Request,
    adapter: Optional[TelegramAdapter] = Depends(get_telegram_adapter),
):
    return await _process_update(request, adapter)


@router.post("/webhook/main")
async def telegram_webhook_main(
    request: Request,
    adapter: Optional[TelegramAdapter] = Depends(get_telegram_adapter),
):
    return await _process_update(request, adapter)
