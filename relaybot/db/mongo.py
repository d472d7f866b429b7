"""
relaybot/db/mongo.py

Purpose: MongoDB connection lifecycle

- One Motor client per process, opened in the app lifespan
- Startup ping with exponential backoff
- Accessors for the three collections the bot keeps:
  users, messages (forward correlation), config (runtime key/value)
"""

import asyncio
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from relaybot.core.config import settings
from relaybot.core.logging import get_logger

logger = get_logger(__name__)

USERS = "users"
MESSAGES = "messages"
CONFIG = "config"

CONNECT_ATTEMPTS = 3
FIRST_RETRY_DELAY = 2.0

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


def _new_client() -> AsyncIOMotorClient:
    # Webhook traffic is bursty but light; a small pool is plenty
    return AsyncIOMotorClient(
        settings.MONGODB_URL,
        maxPoolSize=20,
        minPoolSize=1,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
        retryWrites=True,
        retryReads=True,
    )


async def connect_to_mongo():
    """
    Opens the shared client and pings the server.

    Raises:
        ConnectionError: The server stayed unreachable after every attempt
    """
    global _client, _database

    if _client is not None:
        logger.warning("MongoDB client already initialized")
        return

    delay = FIRST_RETRY_DELAY
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        client = _new_client()
        try:
            await client.admin.command("ping")
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            client.close()
            logger.error(f"MongoDB ping failed ({attempt}/{CONNECT_ATTEMPTS}): {e}")
            if attempt == CONNECT_ATTEMPTS:
                logger.critical("MongoDB unreachable, giving up")
                raise ConnectionError("Could not establish MongoDB connection") from e
            logger.info(f"Retrying in {delay:.0f}s...")
            await asyncio.sleep(delay)
            delay *= 2
            continue

        _client = client
        _database = client[settings.MONGODB_DB_NAME]
        logger.info(f"✅ Connected to MongoDB: {settings.MONGODB_DB_NAME}")
        return


async def close_mongo_connection():
    global _client, _database

    if _client is None:
        return
    _client.close()
    _client = None
    _database = None
    logger.info("MongoDB connection closed")


async def check_database_health() -> bool:
    """True when the server answers a ping."""
    if _client is None:
        logger.error("MongoDB client not initialized")
        return False
    try:
        await _client.admin.command("ping")
        return True
    except PyMongoError as e:
        logger.error(f"Database health check failed: {e}")
        return False


def get_database() -> AsyncIOMotorDatabase:
    """
    Raises:
        RuntimeError: connect_to_mongo() has not run yet
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Call connect_to_mongo() during startup.")
    return _database


def get_users_collection() -> AsyncIOMotorCollection:
    """
    One document per Telegram user:
    user_id, state, is_blocked, block_count, topic_id, info, created_at
    """
    return get_database()[USERS]


def get_messages_collection() -> AsyncIOMotorCollection:
    """user message -> admin topic message links."""
    return get_database()[MESSAGES]


def get_config_collection() -> AsyncIOMotorCollection:
    return get_database()[CONFIG]
