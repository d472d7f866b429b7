"""
relaybot/api/webhook.py

Purpose: Telegram webhook and captcha web app endpoints

- Checks the webhook secret header
- Validates the update payload before anything else runs
- Acknowledges at once and handles the update in the background
- Serves the captcha page and accepts its token
"""

import secrets
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError as PydanticValidationError

from relaybot.core.config import settings
from relaybot.core.exceptions import AuthenticationError, InvalidUpdateError
from relaybot.core.logging import get_logger
from relaybot.flow.dispatcher import handle_update
from relaybot.flow.handlers.verification import render_verify_page, submit_captcha_token
from relaybot.schemas.response import WebhookAck
from relaybot.schemas.telegram import Update
from relaybot.schemas.verification import TokenSubmission, TokenResult

logger = get_logger(__name__)
router = APIRouter()


@router.post("/webhook", response_model=WebhookAck)
async def webhook_handler(
    request: Request,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
) -> WebhookAck:
    """
    Telegram webhook endpoint.

    Raises:
        AuthenticationError: Secret header missing or wrong (401)
        InvalidUpdateError: Body is not JSON or not an update (400)
    """
    if settings.WEBHOOK_SECRET and not secrets.compare_digest(
        x_telegram_bot_api_secret_token or "", settings.WEBHOOK_SECRET
    ):
        logger.warning("Webhook call with a bad secret token")
        raise AuthenticationError("Invalid webhook secret")

    try:
        payload = await request.json()
    except ValueError:
        logger.error("Webhook body is not valid JSON")
        raise InvalidUpdateError("Invalid JSON body")

    try:
        update = Update.model_validate(payload)
    except PydanticValidationError as e:
        logger.error(f"Webhook payload is not an update: {e.error_count()} error(s)")
        raise InvalidUpdateError("Invalid update payload")

    logger.debug(f"📨 Update {update.update_id} accepted")
    background_tasks.add_task(handle_update, update)
    return WebhookAck()


@router.get("/verify", response_class=HTMLResponse)
async def verify_page(user_id: Optional[str] = None) -> HTMLResponse:
    """Captcha page opened from the Telegram web app button."""
    page = await render_verify_page(user_id)
    if page is None:
        raise HTTPException(status_code=400, detail="Missing user id or captcha site key")
    return HTMLResponse(page)


@router.post("/submit_token", response_model=TokenResult)
async def submit_token(request: Request) -> JSONResponse:
    """Accepts a captcha token; 400 with success=false when it is rejected."""
    try:
        body = TokenSubmission.model_validate(await request.json())
    except (ValueError, PydanticValidationError):
        return JSONResponse(status_code=400, content=TokenResult(success=False).model_dump())

    success = await submit_captcha_token(body.token, body.user_id)
    return JSONResponse(
        status_code=200 if success else 400,
        content=TokenResult(success=success).model_dump(),
    )
