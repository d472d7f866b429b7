"""
relaybot/flow/cards.py

Purpose: Pinned profile card per user topic

- Sends the card once per topic (photo + caption when possible, else text)
- Degrades to text when the photo message is rejected
- Reports a vanished topic as TopicInvalidError
- Refreshes card text / buttons after admin changes
"""

from typing import Optional

from relaybot.core.config import settings
from relaybot.core.exceptions import ErrorKind, GatewayError, TopicInvalidError
from relaybot.core.logging import get_logger, LogContext
from relaybot.models.user import UserRecord
from relaybot.schemas.telegram import TgUser
from relaybot.services.telegram_gateway import TelegramGateway, HTML
from relaybot.utils.formatting import build_user_meta, card_keyboard, cached_tg_user
from relaybot.utils.constants import CAPTION_SAFE_LIMIT

logger = get_logger(__name__)


class ProfileCardManager:

    def __init__(self, gateway: TelegramGateway, admin_group_id: Optional[str] = None):
        self.gateway = gateway
        self.admin_group_id = admin_group_id or settings.ADMIN_GROUP_ID

    async def fetch_photo(self, user_id: str) -> Optional[str]:
        """
        Largest size of the user's newest profile photo.

        Privacy settings often hide photos from bots; that is a normal
        "no photo" answer, never an error for the caller.
        """
        try:
            result = await self.gateway.get_user_profile_photos(user_id, limit=1)
        except GatewayError as e:
            logger.debug(f"Profile photo unavailable: {e.description}", extra={"user_id": user_id})
            return None
        photos = (result or {}).get("photos") or []
        if not photos or not photos[0]:
            return None
        return photos[0][-1].get("file_id")

    async def ensure_card(
        self,
        user: UserRecord,
        sender: TgUser,
        topic_id: str,
        date: Optional[float] = None,
    ) -> Optional[int]:
        """
        Makes sure the topic carries a profile card.

        Args:
            user: Stored user record
            sender: Live sender info
            topic_id: Destination topic
            date: Unix time shown on the card

        Returns:
            The card message id (existing or new), or None when sending failed

        Raises:
            TopicInvalidError: The topic no longer exists
        """
        if user.info.card_message_id:
            return user.info.card_message_id
        return await self.send_card(user, sender, topic_id, date)

    async def send_card(
        self,
        user: UserRecord,
        sender: TgUser,
        topic_id: str,
        date: Optional[float] = None,
    ) -> Optional[int]:
        """Sends and pins a new card regardless of any existing one."""
        with LogContext(user_id=user.user_id, topic_id=topic_id):
            photo = await self.fetch_photo(user.user_id)
            meta = build_user_meta(sender, user, date)
            keyboard = card_keyboard(user.user_id, user.is_blocked)

            try:
                card = await self._send(topic_id, meta.card, photo, keyboard)
            except GatewayError as e:
                if e.kind is ErrorKind.THREAD_NOT_FOUND:
                    raise TopicInvalidError(topic_id, e) from e
                logger.error(f"Profile card not sent: {e.description}")
                return None

            card_id = card["message_id"]
            await self.pin(topic_id, card_id)
            logger.info(f"🪪 Profile card {card_id} sent")
            return card_id

    async def _send(self, topic_id: str, text: str, photo: Optional[str], keyboard: dict) -> dict:
        if photo and len(text) <= CAPTION_SAFE_LIMIT:
            try:
                return await self.gateway.send_photo(
                    self.admin_group_id,
                    photo,
                    caption=text,
                    message_thread_id=topic_id,
                    parse_mode=HTML,
                    reply_markup=keyboard,
                )
            except GatewayError as e:
                if e.kind is not ErrorKind.CONTENT_REJECTED:
                    raise
                logger.warning(f"Photo card rejected ({e.description}), sending text")

        return await self.gateway.send_message(
            self.admin_group_id,
            text,
            message_thread_id=topic_id,
            parse_mode=HTML,
            reply_markup=keyboard,
        )

    async def pin(self, topic_id: Optional[str], message_id: int) -> bool:
        try:
            await self.gateway.pin_chat_message(self.admin_group_id, message_id, message_thread_id=topic_id)
            return True
        except GatewayError as e:
            logger.debug(f"Pin failed: {e.description}")
            return False

    async def refresh_card(self, user: UserRecord) -> bool:
        """
        Re-renders an existing card from cached fields (after a note edit).

        Photo cards are edited through the caption, text cards through the text.
        """
        if not (user.topic_id and user.info.card_message_id):
            return False

        meta = build_user_meta(cached_tg_user(user), user, user.info.join_date)
        keyboard = card_keyboard(user.user_id, user.is_blocked)
        card_id = user.info.card_message_id
        try:
            await self.gateway.edit_message_caption(self.admin_group_id, card_id, meta.card, parse_mode=HTML, reply_markup=keyboard)
            return True
        except GatewayError:
            pass
        try:
            await self.gateway.edit_message_text(self.admin_group_id, card_id, meta.card, parse_mode=HTML, reply_markup=keyboard)
            return True
        except GatewayError as e:
            logger.warning(f"Card refresh failed: {e.description}", extra={"user_id": user.user_id})
            return False

    async def update_card_buttons(self, user: UserRecord, is_blocked: bool) -> bool:
        if not user.info.card_message_id:
            return False
        try:
            await self.gateway.edit_message_reply_markup(
                self.admin_group_id,
                user.info.card_message_id,
                card_keyboard(user.user_id, is_blocked),
            )
            return True
        except GatewayError as e:
            logger.debug(f"Card buttons not updated: {e.description}", extra={"user_id": user.user_id})
            return False
