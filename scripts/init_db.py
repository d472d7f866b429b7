"""
Database initialization script

Run once to create collections and indexes:
    python scripts/init_db.py
"""

import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables
load_dotenv()

from relaybot.core.config import settings
from relaybot.core.logging import setup_logging, get_logger
from relaybot.db.mongo import connect_to_mongo, close_mongo_connection, get_database
from relaybot.db.indexes import create_indexes

setup_logging()
logger = get_logger("scripts.init_db")


async def main():
    logger.info(f"🔌 Connecting to MongoDB: {settings.MONGODB_DB_NAME}")
    await connect_to_mongo()
    try:
        await create_indexes()

        db = get_database()
        for name in ("users", "messages", "config"):
            indexes = await db[name].index_information()
            logger.info(f"📋 {name}: {', '.join(sorted(indexes))}")
    finally:
        await close_mongo_connection()


if __name__ == "__main__":
    asyncio.run(main())
