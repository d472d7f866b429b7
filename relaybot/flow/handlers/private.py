"""
relaybot/flow/handlers/private.py

Handles: messages in the bot's private chat

- Verification gate with a short warning cooldown
- /start and /help commands
- Admin panel input
- Routing by verification state
"""

import time
from typing import Dict

from relaybot.core.config import settings
from relaybot.core.logging import get_logger, LogContext
from relaybot.flow.handlers.admin_menu import show_menu, register_commands, handle_admin_input
from relaybot.flow.handlers.inbox import handle_verified_message
from relaybot.flow.handlers.verification import send_start, verify_answer
from relaybot.flow.states import UserState
from relaybot.models.user import UserRecord
from relaybot.schemas.telegram import Message
from relaybot.services.config_service import ConfigService, get_config_service
from relaybot.services.telegram_gateway import HTML, get_gateway
from relaybot.services.user_service import get_user_service
from relaybot.utils.constants import VERIFY_FIRST, WARN_COOLDOWN_SECONDS, ADMIN_HELP

logger = get_logger(__name__)

# user id -> monotonic time of the last "verify first" warning
_warned_at: Dict[str, float] = {}


def warn_allowed(user_id: str, now: float) -> bool:
    """True (and records the warning) unless one was sent within the cooldown."""
    last = _warned_at.get(user_id)
    if last is not None and now - last < WARN_COOLDOWN_SECONDS:
        return False
    _warned_at[user_id] = now
    return True


async def verification_enabled(config: ConfigService) -> bool:
    return await config.get_bool("enable_verify") or await config.get_bool("enable_qa_verify")


async def handle_private(message: Message) -> None:
    user_id = str(message.chat.id)
    text = message.text or ""
    is_owner = user_id in settings.admin_ids

    config = get_config_service()
    users = get_user_service()
    gateway = get_gateway()
    user = await users.get_or_create(user_id)

    with LogContext(user_id=user_id, state=user.state.value):
        # pending users pass through so they can answer the question
        if text != "/start" and not is_owner:
            if await verification_enabled(config) and user.state is UserState.NEW:
                if warn_allowed(user_id, time.monotonic()):
                    await gateway.send_message(user_id, VERIFY_FIRST, reply_to_message_id=message.message_id)
                return

        if text == "/start":
            if is_owner:
                await register_commands()
                await show_menu(user_id)
                return
            await _set_state(user, UserState.NEW)
            await send_start(user, message)
            return

        if text == "/help" and is_owner:
            await gateway.send_message(user_id, ADMIN_HELP, parse_mode=HTML)
            return

        if user.is_blocked:
            logger.debug("Ignoring message from blocked user")
            return

        if await config.is_authorized_admin(user_id) and user.state is not UserState.VERIFIED:
            await _set_state(user, UserState.VERIFIED)

        if is_owner:
            state = await config.get_admin_state(user_id)
            if state and state.get("action") == "input":
                await handle_admin_input(message, state)
                return

        if not await verification_enabled(config):
            if user.state is not UserState.VERIFIED:
                await _set_state(user, UserState.VERIFIED)
            await handle_verified_message(message, user)
            return

        if user.state is UserState.PENDING_VERIFICATION:
            await verify_answer(user, text)
        elif user.state is UserState.VERIFIED:
            await handle_verified_message(message, user)
        else:
            await send_start(user, message)


async def _set_state(user: UserRecord, state: UserState) -> None:
    await get_user_service().set_state(user.user_id, state)
    user.state = state
