"""
relaybot/services/backup_service.py

Purpose: Optional mirror of relayed messages

Copies every relayed user message to `backup_group_id` (when set),
preceded by a header naming the sender. Never fails the relay.
"""

from typing import Optional

from relaybot.core.exceptions import GatewayError
from relaybot.core.logging import get_logger
from relaybot.schemas.telegram import Message
from relaybot.services.config_service import ConfigService, get_config_service
from relaybot.services.telegram_gateway import TelegramGateway, HTML, get_gateway
from relaybot.utils.constants import BACKUP_HEADER
from relaybot.utils.formatting import UserMeta, escape

logger = get_logger(__name__)


class BackupService:

    def __init__(self, gateway: Optional[TelegramGateway] = None, config: Optional[ConfigService] = None):
        self.gateway = gateway or get_gateway()
        self.config = config or get_config_service()

    async def backup(self, message: Message, meta: UserMeta) -> bool:
        """
        Mirrors one message to the backup chat.

        Returns:
            True if the copy was sent, False if disabled or failed
        """
        target = await self.config.get("backup_group_id")
        if not target:
            return False

        header = BACKUP_HEADER.format(name=escape(meta.name), user_id=meta.user_id)
        try:
            if message.text:
                await self.gateway.send_message(target, f"{header}\n{escape(message.text)}", parse_mode=HTML)
            else:
                await self.gateway.send_message(target, header, parse_mode=HTML)
                await self.gateway.copy_message(target, message.chat.id, message.message_id)
            return True
        except GatewayError as e:
            logger.warning(f"Backup copy failed: {e.description}", extra={"user_id": meta.user_id})
            return False
