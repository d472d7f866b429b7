"""
Registers this service's webhook with Telegram

    python scripts/set_webhook.py

Uses PUBLIC_URL, API_PREFIX, BOT_TOKEN and WEBHOOK_SECRET from .env.
"""

import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent.parent))

load_dotenv()

from relaybot.core.config import settings
from relaybot.core.exceptions import GatewayError
from relaybot.core.logging import setup_logging, get_logger
from relaybot.services.telegram_gateway import get_gateway, close_gateway

setup_logging()
logger = get_logger("scripts.set_webhook")

ALLOWED_UPDATES = ["message", "edited_message", "callback_query"]


async def main() -> int:
    if not settings.PUBLIC_URL or not settings.BOT_TOKEN:
        logger.error("❌ PUBLIC_URL and BOT_TOKEN must be set in .env file")
        return 1

    url = f"{settings.PUBLIC_URL}{settings.API_PREFIX}/webhook"
    try:
        await get_gateway().set_webhook(url, secret_token=settings.WEBHOOK_SECRET, allowed_updates=ALLOWED_UPDATES)
        logger.info(f"✅ Webhook set to {url}")
        return 0
    except GatewayError as e:
        logger.error(f"❌ setWebhook failed: {e.description}")
        return 1
    finally:
        await close_gateway()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
