"""
relaybot/services/message_service.py

Purpose: Forward correlation storage

- Insert-or-replace a record per relayed message
- Lookup by admin-side message id (admin replies)
- Lookup / text update by user-side message id (user edits)
"""

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorCollection

from relaybot.db.mongo import get_messages_collection
from relaybot.models.message import MessageCorrelation
from relaybot.core.logging import get_logger

logger = get_logger(__name__)


class MessageService:

    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None):
        self._collection = collection

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            self._collection = get_messages_collection()
        return self._collection

    async def save(self, record: MessageCorrelation) -> None:
        await self.collection.replace_one(
            {"user_id": record.user_id, "message_id": record.message_id},
            record.model_dump(),
            upsert=True,
        )
        logger.debug(
            f"Correlation stored {record.message_id} -> {record.topic_message_id}",
            extra={"user_id": record.user_id}
        )

    async def find_by_topic_message(self, topic_message_id: int) -> Optional[MessageCorrelation]:
        doc = await self.collection.find_one({"topic_message_id": topic_message_id})
        return MessageCorrelation.from_document(doc) if doc else None

    async def get(self, user_id: str, message_id: int) -> Optional[MessageCorrelation]:
        doc = await self.collection.find_one({"user_id": user_id, "message_id": message_id})
        return MessageCorrelation.from_document(doc) if doc else None

    async def update_text(self, user_id: str, message_id: int, text: str) -> bool:
        result = await self.collection.update_one(
            {"user_id": user_id, "message_id": message_id},
            {"$set": {"text": text}},
        )
        return result.modified_count > 0


_message_service: Optional[MessageService] = None


def get_message_service() -> MessageService:
    """Get or create message service instance."""
    global _message_service
    if _message_service is None:
        _message_service = MessageService()
    return _message_service
