"""
relaybot/flow/handlers/admin.py

Handles: the admin group side

- Admin replies inside a user topic are copied back to the user
- Note input for profile cards
- Edit notifications in both directions
- Card buttons (block / unblock / note / re-pin)
- The blocklist topic
"""

from typing import Optional

from relaybot.core.config import settings
from relaybot.core.exceptions import ErrorKind, GatewayError
from relaybot.core.logging import get_logger, LogContext
from relaybot.flow.handlers.admin_menu import handle_config_callback
from relaybot.flow.relay import get_relay_engine
from relaybot.models.user import UserRecord
from relaybot.schemas.telegram import Message, CallbackQuery, TgUser
from relaybot.services.config_service import get_config_service
from relaybot.services.message_service import get_message_service
from relaybot.services.telegram_gateway import HTML, best_effort, get_gateway
from relaybot.services.user_service import get_user_service
from relaybot.utils.formatting import build_user_meta, cached_tg_user, escape
from relaybot.utils.constants import (
    ADMIN_REPLIED,
    ADMIN_REPLY_FAILED,
    ADMIN_EDIT_NOTICE,
    USER_EDIT_LOG,
    MEDIA_PLACEHOLDER,
    NON_TEXT_PLACEHOLDER,
    NOTE_PROMPT,
    NOTE_UPDATED,
    NOTE_CLEAR_COMMANDS,
    BLOCKLIST_TOPIC_NAME,
    BLOCKLIST_ENTRY_TITLE,
    BUTTON_UNBLOCK,
    USER_BLOCKED,
    USER_UNBLOCKED,
)

logger = get_logger(__name__)


async def handle_admin_reply(message: Message) -> None:
    """
    Copies an admin's message in a user topic back to that user.

    Replies to a relayed message become replies to the original message
    in the user's chat.
    """
    if not message.message_thread_id or message.from_user is None or message.from_user.is_bot:
        return

    admin_id = str(message.from_user.id)
    config = get_config_service()
    if not await config.is_authorized_admin(admin_id):
        return

    state = await config.get_admin_state(admin_id)
    if state and state.get("action") == "input_note":
        await handle_note_input(message, admin_id, str(state.get("target", "")))
        return

    user = await get_user_service().find_by_topic(str(message.message_thread_id))
    if user is None:
        return

    reply_to: Optional[int] = None
    if message.reply_to_message is not None:
        ref = await get_message_service().find_by_topic_message(message.reply_to_message.message_id)
        if ref is not None:
            reply_to = ref.message_id

    gateway = get_gateway()
    with LogContext(user_id=user.user_id, topic_id=user.topic_id):
        try:
            await gateway.copy_message(user.user_id, message.chat.id, message.message_id, reply_to_message_id=reply_to)
        except GatewayError as e:
            logger.warning(f"Admin reply not delivered: {e.description}")
            await best_effort(
                gateway.send_message(message.chat.id, ADMIN_REPLY_FAILED, message_thread_id=message.message_thread_id),
                "reply failure notice",
            )
            return

        if await config.get_bool("enable_admin_receipt"):
            await best_effort(
                gateway.send_message(
                    message.chat.id,
                    ADMIN_REPLIED,
                    message_thread_id=message.message_thread_id,
                    reply_to_message_id=message.message_id,
                    disable_notification=True,
                ),
                "admin receipt",
            )


async def handle_note_input(message: Message, admin_id: str, target: str) -> None:
    config = get_config_service()
    users = get_user_service()

    user = await users.get(target)
    if user is None:
        await config.clear_admin_state(admin_id)
        return

    text = message.text or ""
    user.info.note = None if text in NOTE_CLEAR_COMMANDS else text
    await get_relay_engine().cards.refresh_card(user)
    await users.update_info(target, note=user.info.note)
    await config.clear_admin_state(admin_id)

    await best_effort(
        get_gateway().send_message(message.chat.id, NOTE_UPDATED, message_thread_id=message.message_thread_id),
        "note confirmation",
    )


async def handle_admin_edit(message: Message) -> None:
    """Tells the user that an admin edited a message in their topic."""
    if not message.message_thread_id:
        return
    user = await get_user_service().find_by_topic(str(message.message_thread_id))
    if user is None:
        return

    text = message.text or message.caption or MEDIA_PLACEHOLDER
    await get_gateway().send_message(user.user_id, ADMIN_EDIT_NOTICE.format(text=escape(text)), parse_mode=HTML)


async def handle_user_edit(message: Message) -> None:
    """Logs a user's edit into their topic, showing the previous text."""
    if message.from_user is None:
        return
    user = await get_user_service().get(str(message.from_user.id))
    if user is None or not user.topic_id:
        return

    messages = get_message_service()
    old = await messages.get(user.user_id, message.message_id)
    new_text = message.text or message.caption or NON_TEXT_PLACEHOLDER

    await get_gateway().send_message(
        settings.ADMIN_GROUP_ID,
        USER_EDIT_LOG.format(old=escape(old.text if old else "?"), new=escape(new_text)),
        message_thread_id=user.topic_id,
        parse_mode=HTML,
    )
    if old is not None:
        await messages.update_text(user.user_id, message.message_id, new_text)


async def handle_callback(callback: CallbackQuery) -> None:
    """Routes inline button presses (panel buttons and profile card buttons)."""
    data = callback.data or ""
    action, _, rest = data.partition(":")
    message = callback.message
    gateway = get_gateway()
    config = get_config_service()

    if action == "config":
        await handle_config_callback(callback)
        return

    if message is None:
        await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
        return

    if action == "note" and rest.startswith("set:"):
        admin_id = str(callback.from_user.id)
        if not await config.is_authorized_admin(admin_id):
            await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
            return
        await config.set_admin_state(admin_id, {"action": "input_note", "target": rest[len("set:"):]})
        await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
        await gateway.send_message(message.chat.id, NOTE_PROMPT, message_thread_id=message.message_thread_id)
        return

    if str(message.chat.id) != str(settings.ADMIN_GROUP_ID):
        await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
        return

    if action == "pin_card":
        await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
        await get_relay_engine().cards.pin(message.message_thread_id, message.message_id)
    elif action in ("block", "unblock"):
        await set_blocked(callback, rest, action == "block")
    else:
        await best_effort(gateway.answer_callback_query(callback.id), "callback answer")


async def set_blocked(callback: CallbackQuery, user_id: str, blocking: bool) -> None:
    """Block or unblock from a card button; resets the strike counter either way."""
    message = callback.message
    gateway = get_gateway()
    users = get_user_service()

    user = await users.get_or_create(user_id)
    blocklist_topic = await get_config_service().get("blocked_topic_id")

    with LogContext(user_id=user_id):
        await users.update(user_id, is_blocked=blocking, block_count=0)
        user.is_blocked = blocking
        user.block_count = 0
        logger.info("User blocked by admin" if blocking else "User unblocked by admin")

        await get_relay_engine().cards.update_card_buttons(user, blocking)
        await manage_blacklist(user, cached_tg_user(user), blocking)

        in_blocklist = bool(blocklist_topic) and str(message.message_thread_id or "") == blocklist_topic
        if not blocking and in_blocklist:
            # the pressed entry was just deleted, so answer with a toast
            await best_effort(gateway.answer_callback_query(callback.id, USER_UNBLOCKED), "callback answer")
            return

        await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
        await best_effort(
            gateway.send_message(
                message.chat.id,
                USER_BLOCKED if blocking else USER_UNBLOCKED,
                message_thread_id=message.message_thread_id,
            ),
            "block notice",
        )


async def manage_blacklist(user: UserRecord, tg_user: Optional[TgUser], blocking: bool) -> None:
    """
    Mirrors a block/unblock into the blocklist topic.

    The topic is created on the first block. Blocking posts the user's card
    with an unblock button; unblocking deletes that post.
    """
    config = get_config_service()
    users = get_user_service()
    gateway = get_gateway()
    admin_group = settings.ADMIN_GROUP_ID

    topic_id = await config.get("blocked_topic_id")
    if not topic_id and blocking:
        try:
            topic = await gateway.create_forum_topic(admin_group, BLOCKLIST_TOPIC_NAME)
        except GatewayError as e:
            logger.error(f"Blocklist topic not created: {e.description}")
            return
        topic_id = str(topic["message_thread_id"])
        await config.set("blocked_topic_id", topic_id)
    if not topic_id:
        return

    if blocking:
        meta = build_user_meta(tg_user or cached_tg_user(user), user)
        try:
            entry = await gateway.send_message(
                admin_group,
                f"{BLOCKLIST_ENTRY_TITLE}\n{meta.card}",
                message_thread_id=topic_id,
                parse_mode=HTML,
                reply_markup={"inline_keyboard": [[{"text": BUTTON_UNBLOCK, "callback_data": f"unblock:{user.user_id}"}]]},
            )
        except GatewayError as e:
            logger.warning(f"Blocklist entry not posted: {e.description}")
            if e.kind is ErrorKind.THREAD_NOT_FOUND:
                await config.set("blocked_topic_id", "")
            return
        user.info.blacklist_message_id = entry["message_id"]
        await users.update_info(user.user_id, blacklist_message_id=user.info.blacklist_message_id)
        return

    if user.info.blacklist_message_id:
        try:
            await gateway.delete_message(admin_group, user.info.blacklist_message_id)
        except GatewayError as e:
            logger.debug(f"Blocklist entry not deleted: {e.description}")
            if e.kind is ErrorKind.THREAD_NOT_FOUND:
                await config.set("blocked_topic_id", "")
        user.info.blacklist_message_id = None
        await users.update_info(user.user_id, blacklist_message_id=None)
