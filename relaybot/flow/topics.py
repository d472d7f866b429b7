"""
relaybot/flow/topics.py

Purpose: User -> admin topic mapping

- Returns the stored topic when one exists (no network calls)
- Creates the topic lazily, at most once per user per process
- Sends the "loading" placeholder into a new topic
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

from relaybot.core.config import settings
from relaybot.core.exceptions import GatewayError, TopicBusyError, TopicCreationError
from relaybot.core.logging import get_logger, LogContext
from relaybot.models.user import UserRecord
from relaybot.services.telegram_gateway import TelegramGateway
from relaybot.services.user_service import UserService
from relaybot.utils.formatting import UserMeta
from relaybot.utils.constants import PLACEHOLDER_TEXT

logger = get_logger(__name__)


class UserLockTable:
    """
    Process-local advisory locks keyed by user id.

    Starts empty. A key is held only inside `hold()` and is always
    released on exit, including on exceptions and cancellation.
    Acquisition never waits: a held key is reported, not queued on.
    """

    def __init__(self):
        self._held: Set[str] = set()

    def is_held(self, key: str) -> bool:
        return key in self._held

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        # check-and-add has no await in between, so it is atomic on the event loop
        if key in self._held:
            yield False
            return
        self._held.add(key)
        try:
            yield True
        finally:
            self._held.discard(key)


class TopicResolver:

    def __init__(
        self,
        gateway: TelegramGateway,
        users: UserService,
        locks: Optional[UserLockTable] = None,
        admin_group_id: Optional[str] = None,
    ):
        self.gateway = gateway
        self.users = users
        self.locks = locks if locks is not None else UserLockTable()
        self.admin_group_id = admin_group_id or settings.ADMIN_GROUP_ID

    async def resolve(self, user: UserRecord, meta: UserMeta) -> str:
        """
        Returns the user's topic id, creating the topic if needed.

        Updates `user` in place with the topic id and placeholder reference.

        Raises:
            TopicBusyError: Another task is creating this user's topic
            TopicCreationError: The Bot API refused to create the topic
        """
        if user.topic_id:
            return user.topic_id

        async with self.locks.hold(user.user_id) as acquired:
            if not acquired:
                logger.info("Topic creation already in flight, abandoning", extra={"user_id": user.user_id})
                raise TopicBusyError(user.user_id)

            # a concurrent creator may have finished before we got the lock
            fresh = await self.users.get(user.user_id)
            if fresh is not None and fresh.topic_id:
                user.topic_id = fresh.topic_id
                user.info = fresh.info
                return user.topic_id

            return await self._create(user, meta)

    async def _create(self, user: UserRecord, meta: UserMeta) -> str:
        with LogContext(user_id=user.user_id):
            try:
                topic = await self.gateway.create_forum_topic(self.admin_group_id, meta.topic_name)
            except GatewayError as e:
                logger.error(f"Topic creation failed: {e.description}")
                raise TopicCreationError(user.user_id, e) from e

            topic_id = str(topic["message_thread_id"])
            logger.info(f"🧵 Created topic {topic_id} ({meta.topic_name})")

            # a new topic never has a card yet
            user.info.card_message_id = None
            user.info.dummy_message_id = None
            try:
                placeholder = await self.gateway.send_message(
                    self.admin_group_id,
                    PLACEHOLDER_TEXT,
                    message_thread_id=topic_id,
                    disable_notification=True,
                )
                user.info.dummy_message_id = placeholder["message_id"]
            except GatewayError as e:
                logger.warning(f"Placeholder not sent: {e.description}")

            user.topic_id = topic_id
            await self.users.set_topic(user.user_id, topic_id, user.info.dummy_message_id)
            return topic_id
