"""
relaybot/flow/handlers/admin_menu.py

Handles: the owner control panel (private chat)

Callback data format: config:<action>:<key>:<value>

- menu     render a panel (main, base, fl, ar, kw, auth, bak, busy)
- toggle   set a boolean switch
- cl       clear a value
- del      remove a list item
- edit/add ask for free-text input (handled by handle_admin_input)
"""

import json
import re
import time
from typing import Optional, Dict, Any, List, Tuple

from relaybot.core.config import settings
from relaybot.core.exceptions import GatewayError
from relaybot.core.logging import get_logger, LogContext
from relaybot.schemas.telegram import CallbackQuery, Message, largest_photo_id
from relaybot.services.config_service import get_config_service
from relaybot.services.telegram_gateway import HTML, best_effort, get_gateway
from relaybot.utils.formatting import escape
from relaybot.utils.constants import (
    BUTTON_BACK,
    PANEL_TITLE,
    PANEL_NO_PERMISSION,
    PANEL_ERROR,
    PANEL_BASE,
    PANEL_AUTO_REPLY,
    PANEL_KEYWORDS,
    PANEL_FILTERS,
    PANEL_ADMINS,
    PANEL_BACKUP,
    PANEL_BUSY,
    BASE_TITLE,
    BUTTON_WELCOME,
    BUTTON_QUESTION,
    BUTTON_ANSWER,
    BUTTON_CAPTCHA_MODE,
    BUTTON_QA_TOGGLE,
    CAPTCHA_LABELS,
    CAPTCHA_OFF,
    CAPTCHA_SWITCHED,
    CAPTCHA_DISABLED,
    FILTERS_TITLE,
    FILTER_LABELS,
    LIST_TITLE,
    BUTTON_LIST_DELETE,
    BUTTON_LIST_ADD,
    BACKUP_TITLE,
    BUTTON_SET_BACKUP,
    BUTTON_CLEAR_BACKUP,
    BUTTON_RESET_BLOCKLIST,
    BUSY_TITLE,
    BUSY_ON,
    BUSY_OFF,
    BUTTON_BUSY_SWITCH,
    BUTTON_BUSY_MESSAGE,
    INPUT_CANCEL,
    INPUT_PROMPT,
    AUTO_REPLY_PROMPT,
    WELCOME_PROMPT,
    INPUT_SAVED,
    AUTO_REPLY_SEPARATOR,
    AUTO_REPLY_FORMAT_ERROR,
    WELCOME_MEDIA_LABEL,
    COMMAND_START_USER,
    COMMAND_START_ADMIN,
    COMMAND_HELP_ADMIN,
)

logger = get_logger(__name__)

# Short list names used in callback data -> config keys
LIST_KEYS: Dict[str, str] = {
    "ar": "keyword_responses",
    "kw": "block_keywords",
    "auth": "authorized_admins",
}

BACK = {"text": BUTTON_BACK, "callback_data": "config:menu"}

Keyboard = Dict[str, Any]


def _button(text: str, data: str) -> Dict[str, str]:
    return {"text": text, "callback_data": data}


def _on_off(value: bool) -> str:
    return "✅" if value else "❌"


# ============================================================
# PANELS
# ============================================================

def main_panel() -> Tuple[str, Keyboard]:
    return PANEL_TITLE, {
        "inline_keyboard": [
            [_button(PANEL_BASE, "config:menu:base"), _button(PANEL_AUTO_REPLY, "config:menu:ar")],
            [_button(PANEL_KEYWORDS, "config:menu:kw"), _button(PANEL_FILTERS, "config:menu:fl")],
            [_button(PANEL_ADMINS, "config:menu:auth"), _button(PANEL_BACKUP, "config:menu:bak")],
            [_button(PANEL_BUSY, "config:menu:busy")],
        ]
    }


async def base_panel() -> Tuple[str, Keyboard]:
    config = get_config_service()
    mode = await config.get("captcha_mode")
    captcha_on = await config.get_bool("enable_verify")
    qa_on = await config.get_bool("enable_qa_verify")

    captcha = CAPTCHA_LABELS.get(mode, mode) if captcha_on else CAPTCHA_OFF
    text = BASE_TITLE.format(captcha=captcha, qa=_on_off(qa_on))
    return text, {
        "inline_keyboard": [
            [
                _button(BUTTON_WELCOME, "config:edit:welcome_msg"),
                _button(BUTTON_QUESTION, "config:edit:verif_q"),
                _button(BUTTON_ANSWER, "config:edit:verif_a"),
            ],
            [_button(BUTTON_CAPTCHA_MODE.format(captcha=captcha), "config:rotate_mode")],
            [_button(BUTTON_QA_TOGGLE.format(state=_on_off(qa_on)), f"config:toggle:enable_qa_verify:{str(not qa_on).lower()}")],
            [BACK],
        ]
    }


async def filters_panel() -> Tuple[str, Keyboard]:
    config = get_config_service()
    buttons = []
    for label, key in FILTER_LABELS:
        on = await config.get_bool(key)
        buttons.append(_button(f"{label} {_on_off(on)}", f"config:toggle:{key}:{str(not on).lower()}"))

    rows = [buttons[i:i + 2] for i in range(0, len(buttons), 2)]
    rows.append([BACK])
    return FILTERS_TITLE, {"inline_keyboard": rows}


def _item_id(item: Any) -> str:
    return str(item.get("id")) if isinstance(item, dict) else str(item)


async def list_panel(name: str) -> Tuple[str, Keyboard]:
    items = await get_config_service().get_json(LIST_KEYS[name], [])
    rows: List[List[Dict[str, str]]] = []
    for item in items:
        label = item.get("keywords", "") if isinstance(item, dict) else item
        rows.append([_button(BUTTON_LIST_DELETE.format(item=label), f"config:del:{name}:{_item_id(item)}")])
    rows.append([_button(BUTTON_LIST_ADD, f"config:add:{name}")])
    rows.append([BACK])
    return LIST_TITLE.format(name=name), {"inline_keyboard": rows}


async def backup_panel() -> Tuple[str, Keyboard]:
    config = get_config_service()
    backup = await config.get("backup_group_id")
    blocklist = await config.get("blocked_topic_id")
    text = BACKUP_TITLE.format(
        backup=escape(backup) or "none",
        blocklist=f"✅ ({escape(blocklist)})" if blocklist else "⏳",
    )
    return text, {
        "inline_keyboard": [
            [_button(BUTTON_SET_BACKUP, "config:edit:backup_group_id"), _button(BUTTON_CLEAR_BACKUP, "config:cl:backup_group_id")],
            [_button(BUTTON_RESET_BLOCKLIST, "config:cl:blocked_topic_id")],
            [BACK],
        ]
    }


async def busy_panel() -> Tuple[str, Keyboard]:
    config = get_config_service()
    on = await config.get_bool("busy_mode")
    message = await config.get("busy_msg")
    text = BUSY_TITLE.format(status=BUSY_ON if on else BUSY_OFF, message=escape(message))
    return text, {
        "inline_keyboard": [
            [_button(BUTTON_BUSY_SWITCH.format(status=BUSY_OFF if on else BUSY_ON), f"config:toggle:busy_mode:{str(not on).lower()}")],
            [_button(BUTTON_BUSY_MESSAGE, "config:edit:busy_msg")],
            [BACK],
        ]
    }


async def build_panel(menu: Optional[str]) -> Tuple[str, Keyboard]:
    if menu == "base":
        return await base_panel()
    if menu == "fl":
        return await filters_panel()
    if menu in LIST_KEYS:
        return await list_panel(menu)
    if menu == "bak":
        return await backup_panel()
    if menu == "busy":
        return await busy_panel()
    return main_panel()


async def show_menu(chat_id: Any, message_id: Optional[int] = None, menu: Optional[str] = None) -> None:
    """Sends a panel, or edits the panel message in place when message_id is given."""
    text, keyboard = await build_panel(menu)
    gateway = get_gateway()
    if message_id:
        await gateway.edit_message_text(chat_id, message_id, text, parse_mode=HTML, reply_markup=keyboard)
    else:
        await gateway.send_message(chat_id, text, parse_mode=HTML, reply_markup=keyboard)


# ============================================================
# CALLBACKS
# ============================================================

async def handle_config_callback(callback: CallbackQuery) -> None:
    """
    Handles a `config:` button press from an owner admin.

    Args:
        callback: Callback query whose data starts with "config:"
    """
    gateway = get_gateway()
    admin_id = str(callback.from_user.id)

    if admin_id not in settings.admin_ids:
        await best_effort(gateway.answer_callback_query(callback.id, PANEL_NO_PERMISSION, show_alert=True), "callback answer")
        return
    if callback.message is None:
        await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
        return

    parts = (callback.data or "").split(":", 3)[1:]
    action, key, value = (parts + [None, None, None])[:3]
    chat_id = callback.message.chat.id
    message_id = callback.message.message_id

    with LogContext(user_id=admin_id):
        try:
            if action == "rotate_mode":
                toast = await rotate_captcha_mode()
                await best_effort(gateway.answer_callback_query(callback.id, toast), "callback answer")
                await show_menu(chat_id, message_id, "base")
                return

            await best_effort(gateway.answer_callback_query(callback.id), "callback answer")
            await apply_config_action(chat_id, message_id, action, key, value)
        except GatewayError as e:
            logger.error(f"Panel action {action} failed: {e.description}")
            await best_effort(gateway.answer_callback_query(callback.id, PANEL_ERROR, show_alert=True), "callback answer")


async def rotate_captcha_mode() -> str:
    """turnstile -> recaptcha -> off -> turnstile. Returns the toast text."""
    config = get_config_service()
    mode = await config.get("captcha_mode")
    enabled = await config.get_bool("enable_verify")

    if enabled and mode == "turnstile":
        next_mode, next_enabled = "recaptcha", "true"
    elif enabled:
        next_mode, next_enabled = mode, "false"
    else:
        next_mode, next_enabled = "turnstile", "true"

    await config.set("captcha_mode", next_mode)
    await config.set("enable_verify", next_enabled)
    if next_enabled == "false":
        return CAPTCHA_DISABLED
    return CAPTCHA_SWITCHED.format(label=CAPTCHA_LABELS[next_mode])


async def apply_config_action(
    chat_id: Any,
    message_id: int,
    action: Optional[str],
    key: Optional[str],
    value: Optional[str],
) -> None:
    config = get_config_service()

    if action == "toggle" and key:
        await config.set(key, value or "false")
        menu = {"busy_mode": "busy", "enable_qa_verify": "base"}.get(key, "fl")
        await show_menu(chat_id, message_id, menu)
    elif action == "cl" and key:
        await config.set(key, "[]" if key == "authorized_admins" else "")
        await show_menu(chat_id, message_id, "auth" if key == "authorized_admins" else "bak")
    elif action == "del" and key in LIST_KEYS:
        real_key = LIST_KEYS[key]
        items = await config.get_json(real_key, [])
        items = [item for item in items if _item_id(item) != value]
        await config.set(real_key, json.dumps(items, ensure_ascii=False))
        await show_menu(chat_id, message_id, key)
    elif action in ("edit", "add") and key:
        state_key = f"{key}_add" if action == "add" else key
        await config.set_admin_state(str(chat_id), {"action": "input", "key": state_key})
        if key == "ar" and action == "add":
            prompt = AUTO_REPLY_PROMPT
        elif key == "welcome_msg":
            prompt = WELCOME_PROMPT
        else:
            prompt = INPUT_PROMPT.format(key=key)
        await get_gateway().edit_message_text(chat_id, message_id, prompt, parse_mode=HTML)
    else:
        await show_menu(chat_id, message_id, key)


# ============================================================
# FREE-TEXT INPUT
# ============================================================

def welcome_media_config(message: Message) -> Optional[str]:
    """JSON welcome config for a photo/video/GIF message, or None for text."""
    if message.photo:
        media_type, file_id = "photo", largest_photo_id(message.photo)
    elif message.video:
        media_type, file_id = "video", message.video.file_id
    elif message.animation:
        media_type, file_id = "animation", message.animation.file_id
    else:
        return None
    return json.dumps({"type": media_type, "file_id": file_id, "caption": message.caption or ""}, ensure_ascii=False)


async def handle_admin_input(message: Message, state: Dict[str, Any]) -> None:
    """
    Stores the value an owner typed after pressing an edit/add button.

    Args:
        message: The owner's private message
        state: Pending input state, e.g. {"action": "input", "key": "ar_add"}
    """
    config = get_config_service()
    gateway = get_gateway()
    admin_id = str(message.chat.id)
    text = message.text or ""

    if text == INPUT_CANCEL:
        await config.clear_admin_state(admin_id)
        await show_menu(admin_id)
        return

    key = str(state.get("key", ""))
    value = text

    if key == "welcome_msg":
        value = welcome_media_config(message) or text
    elif key.endswith("_add"):
        name = key[: -len("_add")]
        if name not in LIST_KEYS:
            await config.clear_admin_state(admin_id)
            return
        key = LIST_KEYS[name]
        items = await config.get_json(key, [])
        if name == "ar":
            keywords, sep, response = text.partition(AUTO_REPLY_SEPARATOR)
            if not (sep and keywords and response):
                await gateway.send_message(admin_id, AUTO_REPLY_FORMAT_ERROR)
                return
            items.append({"keywords": keywords, "response": response, "id": int(time.time() * 1000)})
        else:
            items.append(text.strip())
        value = json.dumps(items, ensure_ascii=False)
    elif key == "authorized_admins":
        ids = [part.strip() for part in re.split(r"[,，]", text) if part.strip()]
        value = json.dumps(ids)

    await config.set(key, value)
    await config.clear_admin_state(admin_id)
    logger.info(f"Panel input saved for {key}", extra={"user_id": admin_id})

    shown = WELCOME_MEDIA_LABEL if key == "welcome_msg" and value.startswith("{") else value[:100]
    await gateway.send_message(admin_id, INPUT_SAVED.format(key=key, value=shown))
    await show_menu(admin_id)


# ============================================================
# COMMANDS
# ============================================================

async def register_commands() -> None:
    """Default /start for everyone, plus /start and /help for each admin chat."""
    gateway = get_gateway()
    default_scope = {"type": "default"}

    await best_effort(gateway.delete_my_commands(scope=default_scope), "delete commands")
    await best_effort(
        gateway.set_my_commands([{"command": "start", "description": COMMAND_START_USER}], scope=default_scope),
        "default commands",
    )

    admins = list(dict.fromkeys(settings.admin_ids + await get_config_service().authorized_admins()))
    admin_commands = [
        {"command": "start", "description": COMMAND_START_ADMIN},
        {"command": "help", "description": COMMAND_HELP_ADMIN},
    ]
    for admin_id in admins:
        await best_effort(
            gateway.set_my_commands(admin_commands, scope={"type": "chat", "chat_id": admin_id}),
            "admin commands",
        )
