"""
relaybot/flow/dispatcher.py

Purpose: Central update dispatcher

- Receives validated updates from the webhook
- Routes them by chat (private chat vs admin group) and update type
- Never raises: handler errors are logged, Telegram already got its 200
"""

from relaybot.core.config import settings
from relaybot.core.logging import get_logger, LogContext
from relaybot.schemas.telegram import Update, Chat

logger = get_logger(__name__)


def is_admin_group(chat: Chat) -> bool:
    return str(chat.id) == str(settings.ADMIN_GROUP_ID)


async def handle_update(update: Update) -> None:
    """
    Handles one Telegram update.

    Args:
        update: Validated webhook payload
    """
    with LogContext(update_id=update.update_id):
        try:
            await route_update(update)
        except Exception as e:
            logger.error(f"❌ Update handling failed: {e}", exc_info=True)


async def route_update(update: Update) -> None:
    from relaybot.flow.handlers.private import handle_private
    from relaybot.flow.handlers.admin import (
        handle_admin_reply,
        handle_admin_edit,
        handle_user_edit,
        handle_callback,
    )

    if update.edited_message is not None:
        message = update.edited_message
        if is_admin_group(message.chat):
            await handle_admin_edit(message)
        elif message.is_private:
            await handle_user_edit(message)
        return

    message = update.message
    if message is None:
        if update.callback_query is not None:
            await handle_callback(update.callback_query)
        return

    if message.is_private:
        await handle_private(message)
    elif is_admin_group(message.chat):
        await handle_admin_reply(message)
    else:
        logger.debug(f"Ignoring message from chat {message.chat.id}")
