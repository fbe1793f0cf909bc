"""Webhook endpoints for Telegram push deliveries."""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from ..telegram.source import TelegramSource

logger = logging.getLogger("pulsewire.api.webhook")

router = APIRouter()


class WebhookAck(BaseModel):
    ok: bool = True
    accepted: bool


class SourceStatus(BaseModel):
    mode: str
    bot_username: Optional[str] = None
    source: Dict[str, int]
    queue: Dict[str, int]


def get_telegram_source(request: Request) -> TelegramSource:
    """Resolve the Telegram source from application state."""

    source = getattr(request.app.state, "telegram_source", None)
    if source is None:
        raise RuntimeError("Telegram source not initialised")
    return source


@router.post("/telegram/webhook", response_model=WebhookAck)
async def telegram_webhook(
    request: Request,
    source: TelegramSource = Depends(get_telegram_source),
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
) -> WebhookAck:
    """Receive one update from Telegram."""

    if not source.verify_secret(secret_token):
        logger.warning("Webhook request with invalid secret token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid secret token")

    try:
        payload = await request.json()
    except ValueError:
        # Acknowledge anyway so Telegram does not redeliver garbage
        logger.warning("Webhook body is not JSON, discarding")
        return WebhookAck(accepted=False)

    return WebhookAck(accepted=source.handle_update(payload))


@router.get("/telegram/status", response_model=SourceStatus)
async def telegram_status(
    source: TelegramSource = Depends(get_telegram_source),
) -> SourceStatus:
    """Capture and queue counters."""

    return SourceStatus(
        mode="webhook" if source.config.use_webhook else "polling",
        bot_username=(source.bot_info or {}).get("username"),
        source=source.stats,
        queue=source.ingestor.stats,
    )
