"""
relaybot/schemas/telegram.py

Purpose: Telegram webhook payload schemas

- Validates incoming updates (messages, edits, callback queries)
- Keeps unknown fields so newer Bot API payloads still parse
- Classifies message content once, in a fixed priority order
"""

from enum import Enum
from typing import Optional, List, Any

from pydantic import BaseModel, ConfigDict, Field


class TelegramModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TgUser(TelegramModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None


class Chat(TelegramModel):
    id: int
    type: str
    title: Optional[str] = None
    username: Optional[str] = None


class MessageEntity(TelegramModel):
    type: str
    offset: int = 0
    length: int = 0
    url: Optional[str] = None


class MessageOrigin(TelegramModel):
    """Bot API 7.0+ replacement for the forward_from* fields."""

    type: str
    chat: Optional[Chat] = None


class FileRef(TelegramModel):
    file_id: str
    file_unique_id: Optional[str] = None


class Message(TelegramModel):
    message_id: int
    date: int = 0
    chat: Chat
    from_user: Optional[TgUser] = Field(default=None, alias="from")
    message_thread_id: Optional[int] = None
    is_topic_message: Optional[bool] = None
    text: Optional[str] = None
    caption: Optional[str] = None
    entities: List[MessageEntity] = Field(default_factory=list)
    caption_entities: List[MessageEntity] = Field(default_factory=list)
    reply_to_message: Optional["Message"] = None

    # Forwards
    forward_origin: Optional[MessageOrigin] = None
    forward_from: Optional[TgUser] = None
    forward_from_chat: Optional[Chat] = None

    # Content
    audio: Optional[FileRef] = None
    voice: Optional[FileRef] = None
    sticker: Optional[FileRef] = None
    animation: Optional[FileRef] = None
    photo: Optional[List[FileRef]] = None
    video: Optional[FileRef] = None
    document: Optional[FileRef] = None

    @property
    def is_private(self) -> bool:
        return self.chat.type == "private"

    @property
    def text_or_caption(self) -> Optional[str]:
        return self.text or self.caption


class CallbackQuery(TelegramModel):
    id: str
    from_user: TgUser = Field(alias="from")
    data: Optional[str] = None
    message: Optional[Message] = None


class Update(TelegramModel):
    update_id: int
    message: Optional[Message] = None
    edited_message: Optional[Message] = None
    callback_query: Optional[CallbackQuery] = None


Message.model_rebuild()


class ContentKind(str, Enum):
    FORWARD = "forward"
    CHANNEL_FORWARD = "channel_forward"
    AUDIO = "audio"
    STICKER = "sticker"
    MEDIA = "media"
    LINK = "link"
    TEXT = "text"
    OTHER = "other"


# Config switch guarding each kind, with the label shown to users when it is off
CONTENT_SWITCHES = {
    ContentKind.FORWARD: ("enable_forward_forwarding", "forwarded messages"),
    ContentKind.CHANNEL_FORWARD: ("enable_channel_forwarding", "channel forwards"),
    ContentKind.AUDIO: ("enable_audio_forwarding", "voice/audio"),
    ContentKind.STICKER: ("enable_sticker_forwarding", "stickers/GIFs"),
    ContentKind.MEDIA: ("enable_image_forwarding", "media files"),
    ContentKind.LINK: ("enable_link_forwarding", "links"),
    ContentKind.TEXT: ("enable_text_forwarding", "text"),
}

LINK_ENTITY_TYPES = {"url", "text_link"}


def _forward_chat_type(message: Message) -> Optional[str]:
    if message.forward_origin is not None:
        if message.forward_origin.type == "channel":
            return "channel"
        if message.forward_origin.chat is not None:
            return message.forward_origin.chat.type
        return message.forward_origin.type
    if message.forward_from_chat is not None:
        return message.forward_from_chat.type
    if message.forward_from is not None:
        return "user"
    return None


def classify_content(message: Message) -> ContentKind:
    """
    Classifies a message into exactly one ContentKind.

    Priority: forward > audio/voice > sticker/animation > media > link > text.
    A forwarded photo is a FORWARD; a captioned link photo is MEDIA.
    """
    forward_type = _forward_chat_type(message)
    if forward_type is not None:
        return ContentKind.CHANNEL_FORWARD if forward_type == "channel" else ContentKind.FORWARD
    if message.audio or message.voice:
        return ContentKind.AUDIO
    if message.sticker or message.animation:
        return ContentKind.STICKER
    if message.photo or message.video or message.document:
        return ContentKind.MEDIA
    if any(e.type in LINK_ENTITY_TYPES for e in message.entities):
        return ContentKind.LINK
    if message.text:
        return ContentKind.TEXT
    return ContentKind.OTHER


def largest_photo_id(photos: Optional[List[Any]]) -> Optional[str]:
    """file_id of the last (largest) size in a photo size list."""
    if not photos:
        return None
    last = photos[-1]
    return last.file_id if isinstance(last, FileRef) else last.get("file_id")
