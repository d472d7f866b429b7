"""
relaybot/utils/formatting.py

Purpose: HTML rendering helpers

- Profile card text for a user (name, handle, id, note, timestamp)
- Inline keyboard attached to the card
- Quote-block rendering for "> text" messages
"""

import html
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any
from zoneinfo import ZoneInfo

from relaybot.core.config import settings
from relaybot.models.user import UserRecord
from relaybot.schemas.telegram import TgUser
from relaybot.utils.constants import (
    TOPIC_NAME_MAX_LENGTH,
    CARD_TITLE,
    UNNAMED_USER,
    NO_USERNAME,
    CARD_TIME_FORMAT,
    BUTTON_BLOCK,
    BUTTON_UNBLOCK,
    BUTTON_NOTE,
    BUTTON_PIN,
    QUOTE_MARKERS,
)

_QUOTE_PREFIX = re.compile(r"^(?:[>》]|&gt;)\s?")


def escape(text: Any) -> str:
    """HTML-escapes &, < and > (quotes are left alone, as Telegram expects)."""
    return html.escape(str(text or ""), quote=False)


@dataclass(frozen=True)
class UserMeta:
    user_id: str
    name: str
    username: Optional[str]
    topic_name: str
    card: str


def display_name(tg_user: TgUser) -> str:
    name = f"{tg_user.first_name or ''} {tg_user.last_name or ''}".strip()
    return name or UNNAMED_USER


def format_timestamp(unix_seconds: float, tz_name: Optional[str] = None) -> str:
    tz = ZoneInfo(tz_name or settings.DISPLAY_TIMEZONE)
    return datetime.fromtimestamp(unix_seconds, tz).strftime(CARD_TIME_FORMAT)


def build_user_meta(tg_user: TgUser, record: UserRecord, date: Optional[float] = None) -> UserMeta:
    """
    Builds the display metadata for a user.

    Args:
        tg_user: Live sender info (or a stand-in rebuilt from cached fields)
        record: Stored user record (supplies the note)
        date: Unix time shown on the card; defaults to now

    Returns:
        UserMeta with the topic name and the HTML card
    """
    user_id = str(tg_user.id)
    name = display_name(tg_user)
    handle = f"@{tg_user.username}" if tg_user.username else NO_USERNAME
    note = f"\n📝 <b>Note:</b> {escape(record.info.note)}" if record.info.note else ""
    when = format_timestamp(date if date else time.time())

    card = (
        f"<b>{CARD_TITLE}</b>\n---\n"
        f"👤: <code>{escape(name)}</code>\n"
        f"🏷️: {escape(handle)}\n"
        f"🆔: <code>{user_id}</code>{note}\n"
        f"🕒: <code>{when}</code>"
    )

    return UserMeta(
        user_id=user_id,
        name=name,
        username=tg_user.username,
        topic_name=name[:TOPIC_NAME_MAX_LENGTH],
        card=card,
    )


def cached_tg_user(record: UserRecord) -> TgUser:
    """Sender stand-in built from cached fields, for cards refreshed outside a message."""
    return TgUser(
        id=int(record.user_id),
        first_name=record.info.name or "",
        username=record.info.username or None,
    )


def card_keyboard(user_id: str, is_blocked: bool) -> Dict[str, Any]:
    """Inline keyboard attached to a profile card."""
    toggle = (
        {"text": BUTTON_UNBLOCK, "callback_data": f"unblock:{user_id}"}
        if is_blocked
        else {"text": BUTTON_BLOCK, "callback_data": f"block:{user_id}"}
    )
    return {
        "inline_keyboard": [
            [toggle, {"text": BUTTON_NOTE, "callback_data": f"note:set:{user_id}"}],
            [{"text": BUTTON_PIN, "callback_data": "pin_card"}],
        ]
    }


def is_quote(text: Optional[str]) -> bool:
    return bool(text) and text.startswith(QUOTE_MARKERS)


def render_quote(text: str) -> str:
    """'> hello' -> '<blockquote>hello</blockquote>' (one marker stripped, rest escaped)."""
    return f"<blockquote>{escape(_QUOTE_PREFIX.sub('', text, count=1))}</blockquote>"
