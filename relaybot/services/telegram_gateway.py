"""
relaybot/services/telegram_gateway.py

Purpose: Telegram Bot API client

- Posts JSON requests to the Bot API over httpx
- Turns `ok: false` replies and transport failures into GatewayError
- Classifies error descriptions into ErrorKind at this boundary, so callers
  branch on kinds instead of matching free text
"""

import re

import httpx
from typing import Dict, Any, Optional, List, Awaitable, TypeVar

from relaybot.core.config import settings
from relaybot.core.exceptions import GatewayError, ErrorKind
from relaybot.core.logging import get_logger

logger = get_logger(__name__)

HTML = "HTML"

T = TypeVar("T")

# "message to forward not found", "message to copy not found", "replied message not found"
MISSING_MESSAGE = re.compile(r"message to [a-z ]+ not found|replied message not found")


def classify_error(description: str, error_code: Optional[int] = None) -> ErrorKind:
    """
    Maps a Bot API error description to an ErrorKind.

    Order matters: "Bad Request: message thread not found" is a thread
    failure, not a generic bad request. A missing source or reply target
    message is checked first so it never reads as a vanished thread.

    Args:
        description: Bot API `description` field
        error_code: Bot API `error_code` field, if any

    Returns:
        The matching ErrorKind; unmapped text is UNKNOWN
    """
    text = description or ""
    lowered = text.lower()

    if MISSING_MESSAGE.search(lowered):
        return ErrorKind.MESSAGE_NOT_FOUND
    if "thread" in lowered or "not found" in lowered:
        return ErrorKind.THREAD_NOT_FOUND
    if "parse" in lowered or "MEDIA" in text:
        return ErrorKind.CONTENT_REJECTED
    if error_code == 429 or "too many requests" in lowered:
        return ErrorKind.RATE_LIMITED
    if error_code == 403 or "forbidden" in lowered:
        return ErrorKind.FORBIDDEN
    if error_code == 400 or "bad request" in lowered:
        return ErrorKind.BAD_REQUEST
    return ErrorKind.UNKNOWN


class TelegramGateway:
    """Thin async wrapper over the Bot API methods the bot uses."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token if token is not None else settings.BOT_TOKEN
        self.base_url = (base_url or settings.TELEGRAM_API_BASE).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.TELEGRAM_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def call(self, method: str, **payload: Any) -> Any:
        """
        Calls a Bot API method.

        Args:
            method: Bot API method name (e.g. "sendMessage")
            **payload: Method parameters; None values are dropped

        Returns:
            The `result` field of the reply

        Raises:
            GatewayError: On `ok: false` or transport failure
        """
        body = {k: v for k, v in payload.items() if v is not None}
        url = f"{self.base_url}/bot{self.token}/{method}"

        try:
            response = await self._get_client().post(url, json=body)
            data = response.json()
        except httpx.TimeoutException:
            logger.error(f"Bot API timeout [{method}]")
            raise GatewayError(method, "timeout", ErrorKind.UNKNOWN)
        except httpx.HTTPError as e:
            logger.error(f"Bot API transport error [{method}]: {e}")
            raise GatewayError(method, str(e) or type(e).__name__, ErrorKind.UNKNOWN)
        except ValueError:
            logger.error(f"Bot API returned non-JSON body [{method}]: HTTP {response.status_code}")
            raise GatewayError(method, f"invalid response (HTTP {response.status_code})", ErrorKind.UNKNOWN, response.status_code)

        if not data.get("ok"):
            description = data.get("description") or f"HTTP {response.status_code}"
            error_code = data.get("error_code")
            kind = classify_error(description, error_code)
            logger.warning(f"Bot API error [{method}]: {description} ({kind.value})")
            raise GatewayError(method, description, kind, error_code)

        return data.get("result")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(
        self,
        chat_id: Any,
        text: str,
        message_thread_id: Optional[Any] = None,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[Dict[str, Any]] = None,
        reply_to_message_id: Optional[int] = None,
        disable_notification: Optional[bool] = None,
    ) -> Dict[str, Any]:
        return await self.call(
            "sendMessage",
            chat_id=chat_id,
            text=text,
            message_thread_id=message_thread_id,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
            reply_to_message_id=reply_to_message_id,
            disable_notification=disable_notification,
        )

    async def _send_media(self, method: str, field: str, chat_id: Any, file_id: str, caption: Optional[str], **extra: Any) -> Dict[str, Any]:
        return await self.call(method, chat_id=chat_id, caption=caption, **{field: file_id}, **extra)

    async def send_photo(self, chat_id: Any, photo: str, caption: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
        return await self._send_media("sendPhoto", "photo", chat_id, photo, caption, **extra)

    async def send_video(self, chat_id: Any, video: str, caption: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
        return await self._send_media("sendVideo", "video", chat_id, video, caption, **extra)

    async def send_animation(self, chat_id: Any, animation: str, caption: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
        return await self._send_media("sendAnimation", "animation", chat_id, animation, caption, **extra)

    async def forward_message(self, chat_id: Any, from_chat_id: Any, message_id: int, message_thread_id: Optional[Any] = None) -> Dict[str, Any]:
        return await self.call(
            "forwardMessage",
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            message_thread_id=message_thread_id,
        )

    async def copy_message(
        self,
        chat_id: Any,
        from_chat_id: Any,
        message_id: int,
        message_thread_id: Optional[Any] = None,
        reply_to_message_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await self.call(
            "copyMessage",
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            message_thread_id=message_thread_id,
            reply_to_message_id=reply_to_message_id,
        )

    # ------------------------------------------------------------------
    # Topics and editing
    # ------------------------------------------------------------------

    async def create_forum_topic(self, chat_id: Any, name: str) -> Dict[str, Any]:
        return await self.call("createForumTopic", chat_id=chat_id, name=name)

    async def edit_forum_topic(self, chat_id: Any, message_thread_id: Any, name: str) -> bool:
        return await self.call("editForumTopic", chat_id=chat_id, message_thread_id=message_thread_id, name=name)

    async def edit_message_text(self, chat_id: Any, message_id: int, text: str, parse_mode: Optional[str] = None, reply_markup: Optional[Dict[str, Any]] = None) -> Any:
        return await self.call("editMessageText", chat_id=chat_id, message_id=message_id, text=text, parse_mode=parse_mode, reply_markup=reply_markup)

    async def edit_message_caption(self, chat_id: Any, message_id: int, caption: str, parse_mode: Optional[str] = None, reply_markup: Optional[Dict[str, Any]] = None) -> Any:
        return await self.call("editMessageCaption", chat_id=chat_id, message_id=message_id, caption=caption, parse_mode=parse_mode, reply_markup=reply_markup)

    async def edit_message_reply_markup(self, chat_id: Any, message_id: int, reply_markup: Optional[Dict[str, Any]]) -> Any:
        return await self.call("editMessageReplyMarkup", chat_id=chat_id, message_id=message_id, reply_markup=reply_markup)

    async def delete_message(self, chat_id: Any, message_id: int) -> bool:
        return await self.call("deleteMessage", chat_id=chat_id, message_id=message_id)

    async def pin_chat_message(self, chat_id: Any, message_id: int, message_thread_id: Optional[Any] = None) -> bool:
        return await self.call(
            "pinChatMessage",
            chat_id=chat_id,
            message_id=message_id,
            message_thread_id=message_thread_id,
            disable_notification=True,
        )

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    async def get_user_profile_photos(self, user_id: Any, limit: int = 1) -> Dict[str, Any]:
        return await self.call("getUserProfilePhotos", user_id=user_id, limit=limit)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None, show_alert: Optional[bool] = None) -> bool:
        return await self.call("answerCallbackQuery", callback_query_id=callback_query_id, text=text, show_alert=show_alert)

    async def set_my_commands(self, commands: List[Dict[str, str]], scope: Optional[Dict[str, Any]] = None) -> bool:
        return await self.call("setMyCommands", commands=commands, scope=scope)

    async def delete_my_commands(self, scope: Optional[Dict[str, Any]] = None) -> bool:
        return await self.call("deleteMyCommands", scope=scope)

    async def set_webhook(self, url: str, secret_token: Optional[str] = None, allowed_updates: Optional[List[str]] = None) -> bool:
        return await self.call("setWebhook", url=url, secret_token=secret_token, allowed_updates=allowed_updates)


# Singleton instance
_gateway: Optional[TelegramGateway] = None


def get_gateway() -> TelegramGateway:
    """Get or create the Bot API gateway."""
    global _gateway
    if _gateway is None:
        _gateway = TelegramGateway()
    return _gateway


async def close_gateway():
    """Close the shared HTTP client (application shutdown)."""
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None


async def best_effort(call: Awaitable[T], what: str) -> Optional[T]:
    """
    Awaits a Bot API call whose failure must not affect the caller.

    Args:
        call: Pending gateway call
        what: Short label for the log line

    Returns:
        The call's result, or None if it raised GatewayError
    """
    try:
        return await call
    except GatewayError as e:
        logger.debug(f"Best-effort {what} failed: {e.description}")
        return None
