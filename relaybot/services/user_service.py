"""
relaybot/services/user_service.py

Purpose: User data management

- Atomic get-or-create of user records
- Partial updates (state, block flags, topic reference, info bag)
- Reverse lookup from an admin topic to its user
"""

from datetime import datetime, timezone
from typing import Optional, Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ReturnDocument

from relaybot.db.mongo import get_users_collection
from relaybot.flow.states import UserState
from relaybot.models.user import UserRecord, UserInfo, default_user_document
from relaybot.core.logging import get_logger, LogContext

logger = get_logger(__name__)


class UserService:
    """Service for reading and writing user records."""

    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None):
        self._collection = collection

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            self._collection = get_users_collection()
        return self._collection

    async def get_or_create(self, user_id: str) -> UserRecord:
        """
        Retrieves an existing user or creates a new one.

        The insert is a single upsert, so concurrent first messages from the
        same user (even across processes) end up on one document.

        Args:
            user_id: Telegram user id

        Returns:
            User record
        """
        with LogContext(user_id=user_id):
            doc = await self.collection.find_one_and_update(
                {"user_id": user_id},
                {"$setOnInsert": default_user_document(user_id)},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                logger.warning("Upsert returned no document, using defaults")
                return UserRecord(user_id=user_id)
            return UserRecord.from_document(doc)

    async def get(self, user_id: str) -> Optional[UserRecord]:
        doc = await self.collection.find_one({"user_id": user_id})
        return UserRecord.from_document(doc) if doc else None

    async def update(self, user_id: str, **fields: Any) -> bool:
        """
        Sets the given fields on a user record.

        Args:
            user_id: Telegram user id
            **fields: Field values; `info` may be a UserInfo or a dict

        Returns:
            True if a document was modified
        """
        if not fields:
            return False

        update = {}
        for key, value in fields.items():
            if isinstance(value, UserInfo):
                value = value.model_dump()
            elif isinstance(value, UserState):
                value = value.value
            update[key] = value
        update["updated_at"] = datetime.now(timezone.utc)

        result = await self.collection.update_one({"user_id": user_id}, {"$set": update})
        logger.debug(
            f"User updated: {sorted(fields)}",
            extra={"user_id": user_id}
        )
        return result.modified_count > 0

    async def set_state(self, user_id: str, state: UserState) -> bool:
        with LogContext(user_id=user_id, state=state.value):
            logger.info(f"User state -> {state.value}")
            return await self.update(user_id, state=state)

    async def update_info(self, user_id: str, **info_fields: Any) -> bool:
        """
        Sets individual `info` fields with dotted keys, leaving the rest of
        the bag as stored. Writers that own only some fields (the relay, note
        and blocklist handlers) use this so they never overwrite each other.
        """
        if not info_fields:
            return False
        update = {f"info.{key}": value for key, value in info_fields.items()}
        update["updated_at"] = datetime.now(timezone.utc)
        result = await self.collection.update_one({"user_id": user_id}, {"$set": update})
        logger.debug(f"User info updated: {sorted(info_fields)}", extra={"user_id": user_id})
        return result.modified_count > 0

    async def set_topic(self, user_id: str, topic_id: str, dummy_message_id: Optional[int] = None) -> bool:
        """Stores a freshly created topic; it has no card yet, only the placeholder."""
        update = {
            "topic_id": topic_id,
            "info.card_message_id": None,
            "info.dummy_message_id": dummy_message_id,
            "updated_at": datetime.now(timezone.utc),
        }
        result = await self.collection.update_one({"user_id": user_id}, {"$set": update})
        return result.modified_count > 0

    async def clear_topic(self, user_id: str) -> bool:
        """Drops the topic reference after the topic was found to be invalid."""
        with LogContext(user_id=user_id):
            logger.info("Clearing stale topic reference")
            return await self.update(user_id, topic_id=None)

    async def find_by_topic(self, topic_id: str) -> Optional[UserRecord]:
        doc = await self.collection.find_one({"topic_id": str(topic_id)})
        return UserRecord.from_document(doc) if doc else None


# Global service instance
_user_service: Optional[UserService] = None


def get_user_service() -> UserService:
    """Get or create user service instance."""
    global _user_service
    if _user_service is None:
        _user_service = UserService()
    return _user_service
