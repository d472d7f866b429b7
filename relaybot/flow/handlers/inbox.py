"""
relaybot/flow/handlers/inbox.py

Handles: messages from verified users

Filters run in order, each may stop the message:
1. Blocked keywords (strike counter, block at threshold)
2. Content-type switches (authorized admins bypass)
3. Busy-mode notice (does not stop the message)
4. Keyword auto-replies
Surviving messages go to the relay engine.
"""

import re
import time
from typing import Optional, List, Any

from relaybot.core.logging import get_logger, LogContext
from relaybot.flow.handlers.admin import manage_blacklist
from relaybot.flow.relay import get_relay_engine
from relaybot.models.user import UserRecord
from relaybot.schemas.telegram import Message, CONTENT_SWITCHES, classify_content
from relaybot.services.config_service import get_config_service
from relaybot.services.telegram_gateway import best_effort, get_gateway
from relaybot.services.user_service import get_user_service
from relaybot.utils.constants import (
    BLOCKED_NOTICE,
    KEYWORD_STRIKE,
    CONTENT_NOT_ACCEPTED,
    BUSY_PREFIX,
    BUSY_REPLY_INTERVAL_SECONDS,
    AUTO_REPLY_PREFIX,
)

logger = get_logger(__name__)

DEFAULT_BLOCK_THRESHOLD = 5


def pattern_matches(pattern: Any, text: str) -> bool:
    """Case-insensitive regex search; invalid patterns never match."""
    if not pattern:
        return False
    try:
        return re.search(str(pattern), text, re.IGNORECASE) is not None
    except re.error:
        logger.warning(f"Skipping invalid keyword pattern: {pattern!r}")
        return False


def find_auto_reply(rules: List[Any], text: str) -> Optional[str]:
    for rule in rules:
        if isinstance(rule, dict) and pattern_matches(rule.get("keywords"), text):
            return rule.get("response") or None
    return None


async def handle_verified_message(message: Message, user: UserRecord) -> None:
    """
    Applies the inbox filters, then relays the message.

    Args:
        message: Private message from a verified user
        user: Sender's record
    """
    config = get_config_service()
    gateway = get_gateway()
    text = message.text or ""

    with LogContext(user_id=user.user_id):
        if text and await _keyword_strike(message, user):
            return

        kind = classify_content(message)
        switch = CONTENT_SWITCHES.get(kind)
        if switch is not None:
            key, label = switch
            if not await config.get_bool(key) and not await config.is_authorized_admin(user.user_id):
                logger.info(f"Rejected {kind.value} message ({key} off)")
                await gateway.send_message(user.user_id, CONTENT_NOT_ACCEPTED.format(label=label))
                return

        if await config.get_bool("busy_mode"):
            await _busy_notice(user)

        if text:
            reply = find_auto_reply(await config.get_json("keyword_responses", []), text)
            if reply:
                await gateway.send_message(user.user_id, AUTO_REPLY_PREFIX + reply)
                return

        await get_relay_engine().relay(message, user)


async def _keyword_strike(message: Message, user: UserRecord) -> bool:
    """Counts a strike when the text hits a blocked keyword. True if the message stops here."""
    config = get_config_service()
    keywords = await config.get_json("block_keywords", [])
    if not any(pattern_matches(k, message.text) for k in keywords):
        return False

    count = user.block_count + 1
    limit = await config.get_int("block_threshold", DEFAULT_BLOCK_THRESHOLD) or DEFAULT_BLOCK_THRESHOLD
    blocking = count >= limit

    await get_user_service().update(user.user_id, block_count=count, is_blocked=blocking)
    user.block_count = count
    user.is_blocked = blocking
    logger.warning(f"Keyword strike {count}/{limit}")

    gateway = get_gateway()
    if blocking:
        await manage_blacklist(user, message.from_user, True)
        await gateway.send_message(user.user_id, BLOCKED_NOTICE)
    else:
        await gateway.send_message(user.user_id, KEYWORD_STRIKE.format(count=count, limit=limit))
    return True


async def _busy_notice(user: UserRecord) -> None:
    now = time.time()
    last = user.info.last_busy_reply or 0
    if now - last <= BUSY_REPLY_INTERVAL_SECONDS:
        return

    busy_msg = await get_config_service().get("busy_msg")
    await best_effort(get_gateway().send_message(user.user_id, BUSY_PREFIX + busy_msg), "busy notice")
    user.info.last_busy_reply = now
    await get_user_service().update_info(user.user_id, last_busy_reply=now)
