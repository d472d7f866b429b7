"""
relaybot/flow/handlers/verification.py

Handles: onboarding and human verification

- Welcome message (text or media config) on /start
- Captcha web app (Cloudflare Turnstile or Google reCAPTCHA)
- Optional security question after the captcha
"""

import html
import json
from typing import Optional, Dict, Any

import httpx

from relaybot.core.config import settings
from relaybot.core.exceptions import GatewayError, TopicInvalidError
from relaybot.core.logging import get_logger, LogContext
from relaybot.flow.relay import get_relay_engine
from relaybot.flow.states import UserState
from relaybot.models.user import UserRecord
from relaybot.schemas.telegram import Message
from relaybot.services.config_service import get_config_service, safe_json
from relaybot.services.telegram_gateway import HTML, best_effort, get_gateway
from relaybot.services.user_service import get_user_service
from relaybot.utils.formatting import escape
from relaybot.utils.constants import (
    WELCOME_FALLBACK,
    DEFAULT_FIRST_NAME,
    CAPTCHA_PROMPT,
    CAPTCHA_BUTTON,
    QA_PROMPT,
    CAPTCHA_PASSED_QA,
    VERIFIED_MESSAGE,
    WRONG_ANSWER,
    TURNSTILE_SCRIPT,
    TURNSTILE_VERIFY_URL,
    RECAPTCHA_SCRIPT,
    RECAPTCHA_VERIFY_URL,
)

logger = get_logger(__name__)

CAPTCHA_TIMEOUT = 10.0

VERIFY_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<script src="https://telegram.org/js/telegram-web-app.js"></script>
<script src="{script_url}" async defer></script>
<style>body{{display:flex;justify-content:center;align-items:center;height:100vh;background:#fff;font-family:sans-serif}}#c{{text-align:center;padding:20px;background:#f0f0f0;border-radius:10px}}</style>
</head>
<body>
<div id="c"><h3>🛡️ Security check</h3><div class="{widget_class}" data-sitekey="{site_key}" data-callback="onToken"></div><div id="m"></div></div>
<script>
const tg = window.Telegram.WebApp;
tg.ready();
function onToken(token) {{
  const m = document.getElementById('m');
  m.innerText = 'Verifying...';
  fetch({submit_url}, {{method: 'POST', headers: {{'Content-Type': 'application/json'}}, body: JSON.stringify({{token: token, userId: {user_id}}})}})
    .then(r => r.json())
    .then(d => {{
      if (d.success) {{ m.innerText = '✅'; setTimeout(() => {{ tg.close(); window.close(); }}, 1000); }}
      else {{ m.innerText = '❌'; }}
    }})
    .catch(() => {{ m.innerText = 'Error'; }});
}}
</script>
</body>
</html>"""


def captcha_site_key(mode: str) -> Optional[str]:
    return settings.RECAPTCHA_SITE_KEY if mode == "recaptcha" else settings.TURNSTILE_SITE_KEY


def parse_welcome(raw: str) -> Optional[Dict[str, Any]]:
    """Media welcome config ({"type", "file_id", "caption"}) or None for plain text."""
    if not raw.strip().startswith("{"):
        return None
    config = safe_json(raw, None)
    return config if isinstance(config, dict) and config.get("type") else None


async def send_start(user: UserRecord, message: Message) -> None:
    """
    Onboards a user after /start (or any first message).

    Resends the profile card into an existing topic, sends the welcome,
    then offers the captcha or asks the security question.
    """
    gateway = get_gateway()
    config = get_config_service()
    users = get_user_service()
    user_id = user.user_id

    with LogContext(user_id=user_id):
        if user.topic_id:
            await _refresh_topic_card(user, message)

        await _send_welcome(user_id, message)

        mode = await config.get("captcha_mode")
        captcha_on = await config.get_bool("enable_verify")
        qa_on = await config.get_bool("enable_qa_verify")
        site_key = captcha_site_key(mode)

        if captcha_on and settings.PUBLIC_URL and site_key:
            url = f"{settings.PUBLIC_URL}{settings.API_PREFIX}/verify?user_id={user_id}"
            await gateway.send_message(
                user_id,
                CAPTCHA_PROMPT,
                parse_mode=HTML,
                reply_markup={"inline_keyboard": [[{"text": CAPTCHA_BUTTON, "web_app": {"url": url}}]]},
            )
            return

        if captcha_on:
            logger.warning("Captcha enabled but PUBLIC_URL or site key missing, skipping captcha")

        if qa_on:
            await users.set_state(user_id, UserState.PENDING_VERIFICATION)
            user.state = UserState.PENDING_VERIFICATION
            question = await config.get("verif_q")
            await gateway.send_message(user_id, QA_PROMPT + escape(question), parse_mode=HTML)
        elif captcha_on:
            await users.set_state(user_id, UserState.VERIFIED)
            user.state = UserState.VERIFIED
            await gateway.send_message(user_id, VERIFIED_MESSAGE)


async def _refresh_topic_card(user: UserRecord, message: Message) -> None:
    cards = get_relay_engine().cards
    try:
        card_id = await cards.send_card(user, message.from_user, user.topic_id, message.date)
    except TopicInvalidError:
        card_id = None

    users = get_user_service()
    if card_id is None:
        await users.clear_topic(user.user_id)
        user.topic_id = None
        return
    user.info.card_message_id = card_id
    await users.update_info(user.user_id, card_message_id=card_id)


async def _send_welcome(user_id: str, message: Message) -> None:
    gateway = get_gateway()
    raw = await get_config_service().get("welcome_msg")
    first_name = (message.from_user.first_name if message.from_user else "") or DEFAULT_FIRST_NAME

    media = parse_welcome(raw)
    text = media.get("caption", "") if media else raw
    text = text.replace("{name}", escape(first_name)).replace("{user}", escape(first_name))

    try:
        media_type = media.get("type") if media else None
        if media_type == "photo":
            await gateway.send_photo(user_id, media["file_id"], caption=text, parse_mode=HTML)
        elif media_type == "video":
            await gateway.send_video(user_id, media["file_id"], caption=text, parse_mode=HTML)
        elif media_type == "animation":
            await gateway.send_animation(user_id, media["file_id"], caption=text, parse_mode=HTML)
        else:
            await gateway.send_message(user_id, text, parse_mode=HTML)
    except GatewayError as e:
        logger.warning(f"Welcome message rejected ({e.description}), sending fallback")
        await best_effort(gateway.send_message(user_id, WELCOME_FALLBACK, parse_mode=HTML), "welcome fallback")


async def verify_answer(user: UserRecord, answer: str) -> bool:
    """
    Checks the security question answer (whitespace-insensitive at the ends).

    Returns:
        True if the user is now verified
    """
    gateway = get_gateway()
    expected = await get_config_service().get("verif_a")

    if answer.strip() == expected.strip():
        await get_user_service().set_state(user.user_id, UserState.VERIFIED)
        user.state = UserState.VERIFIED
        await gateway.send_message(user.user_id, VERIFIED_MESSAGE)
        return True

    await gateway.send_message(user.user_id, WRONG_ANSWER)
    return False


async def render_verify_page(user_id: Optional[str]) -> Optional[str]:
    """
    HTML for the captcha web app.

    Returns:
        The page, or None when the user id or the site key is missing
    """
    mode = await get_config_service().get("captcha_mode")
    site_key = captcha_site_key(mode)
    if not user_id or not site_key:
        return None

    recaptcha = mode == "recaptcha"
    return VERIFY_PAGE.format(
        script_url=RECAPTCHA_SCRIPT if recaptcha else TURNSTILE_SCRIPT,
        widget_class="g-recaptcha" if recaptcha else "cf-turnstile",
        site_key=html.escape(site_key),
        submit_url=json.dumps(f"{settings.API_PREFIX}/submit_token"),
        user_id=json.dumps(str(user_id)),
    )


async def verify_captcha_token(
    token: str,
    mode: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    Asks the captcha provider whether a widget token is valid.

    Turnstile takes a JSON body, reCAPTCHA a form body.
    """
    async with httpx.AsyncClient(timeout=CAPTCHA_TIMEOUT, transport=transport) as client:
        try:
            if mode == "recaptcha":
                response = await client.post(
                    RECAPTCHA_VERIFY_URL,
                    data={"secret": settings.RECAPTCHA_SECRET_KEY or "", "response": token},
                )
            else:
                response = await client.post(
                    TURNSTILE_VERIFY_URL,
                    json={"secret": settings.TURNSTILE_SECRET_KEY or "", "response": token},
                )
            result = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Captcha provider unreachable: {e}")
            return False
        except ValueError:
            logger.error(f"Captcha provider returned non-JSON (HTTP {response.status_code})")
            return False

    return bool(result.get("success"))


async def submit_captcha_token(
    token: Optional[str],
    user_id: Optional[str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    Completes the captcha step for a user.

    Args:
        token: Widget token posted by the verify page
        user_id: Telegram user id the page was opened for
        transport: Optional httpx transport (tests)

    Returns:
        True if the token was accepted
    """
    if not token or not user_id:
        return False

    user_id = str(user_id)
    config = get_config_service()
    mode = await config.get("captcha_mode")

    with LogContext(user_id=user_id):
        if not await verify_captcha_token(token, mode, transport):
            logger.warning("Captcha token rejected")
            return False

        gateway = get_gateway()
        users = get_user_service()
        await users.get_or_create(user_id)

        if await config.get_bool("enable_qa_verify"):
            await users.set_state(user_id, UserState.PENDING_VERIFICATION)
            question = await config.get("verif_q")
            await best_effort(gateway.send_message(user_id, CAPTCHA_PASSED_QA + question), "QA prompt")
        else:
            await users.set_state(user_id, UserState.VERIFIED)
            await best_effort(gateway.send_message(user_id, VERIFIED_MESSAGE), "verified notice")

        logger.info("✅ Captcha passed")
        return True
