"""
relaybot/db/indexes.py

Purpose: Database index management

- Creates unique and lookup indexes
- Ensures one user document per Telegram id
- Fast reverse lookups from admin topics back to users and messages
"""

from pymongo import ASCENDING

from relaybot.db.mongo import (
    get_users_collection,
    get_messages_collection,
    get_config_collection
)
from relaybot.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes():
    """
    Creates all necessary database indexes.
    This function is idempotent - safe to run multiple times.
    """
    try:
        users = get_users_collection()
        messages = get_messages_collection()
        config = get_config_collection()

        logger.info("Creating database indexes...")

        # ==============================================
        # USERS COLLECTION INDEXES
        # ==============================================

        # Unique index on user_id; get_or_create relies on it for atomic upserts
        await users.create_index("user_id", unique=True, name="user_id_unique")
        logger.debug("Created unique index on users.user_id")

        # Admin replies resolve the thread back to its user
        await users.create_index("topic_id", sparse=True, name="topic_id_idx")
        logger.debug("Created index on users.topic_id")

        # ==============================================
        # MESSAGES COLLECTION INDEXES
        # ==============================================

        await messages.create_index(
            [("user_id", ASCENDING), ("message_id", ASCENDING)],
            unique=True,
            name="user_message_unique"
        )
        logger.debug("Created unique index on messages.user_id + message_id")

        await messages.create_index("topic_message_id", name="topic_message_idx")
        logger.debug("Created index on messages.topic_message_id")

        # ==============================================
        # CONFIG COLLECTION INDEXES
        # ==============================================

        await config.create_index("key", unique=True, name="config_key_unique")
        logger.debug("Created unique index on config.key")

        logger.info("✅ All database indexes created successfully")

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    """
    Run this script directly to create indexes manually.
    """
    import asyncio
    from relaybot.db.mongo import connect_to_mongo, close_mongo_connection

    async def main():
        await connect_to_mongo()
        await create_indexes()
        await close_mongo_connection()

    asyncio.run(main())
