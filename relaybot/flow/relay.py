"""
relaybot/flow/relay.py

Purpose: Relays a verified user's message into their admin topic

Stages: RESOLVE_TOPIC -> FORWARD_CONTENT -> ENSURE_CARD -> PERSIST -> DONE

- A vanished topic (RETRY) clears the stored topic and reruns the
  attempt from RESOLVE_TOPIC, at most MAX_TOPIC_RECOVERIES times
- Any other failure ends in FAIL with a generic notice to the user
- Acknowledgement, placeholder cleanup, rename and backup are best-effort
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any

from pymongo.errors import PyMongoError

from relaybot.core.config import settings
from relaybot.core.exceptions import (
    ErrorKind,
    GatewayError,
    TopicBusyError,
    TopicCreationError,
    TopicInvalidError,
)
from relaybot.core.logging import get_logger, LogContext
from relaybot.flow.cards import ProfileCardManager
from relaybot.flow.states import RelayStage, is_valid_transition
from relaybot.flow.topics import TopicResolver, UserLockTable
from relaybot.models.message import MessageCorrelation
from relaybot.models.user import UserRecord
from relaybot.schemas.telegram import Message
from relaybot.services.backup_service import BackupService
from relaybot.services.config_service import get_config_service
from relaybot.services.message_service import MessageService, get_message_service
from relaybot.services.telegram_gateway import TelegramGateway, HTML, best_effort, get_gateway
from relaybot.services.user_service import UserService, get_user_service
from relaybot.utils.formatting import UserMeta, build_user_meta, is_quote, render_quote
from relaybot.utils.constants import (
    MAX_TOPIC_RECOVERIES,
    DELIVERED_ACK,
    ERROR_SYSTEM_BUSY,
    ERROR_DELIVERY_FAILED,
    MEDIA_PLACEHOLDER,
)

logger = get_logger(__name__)

# Forward/copy failures that mean the topic itself is gone
TOPIC_INVALIDATING_KINDS = {ErrorKind.THREAD_NOT_FOUND, ErrorKind.BAD_REQUEST}


class RelayStatus(str, Enum):
    DELIVERED = "delivered"
    ABANDONED = "abandoned"  # another task is creating the topic
    BUSY = "busy"  # topic creation failed, user told to retry later
    FAILED = "failed"  # user told delivery failed


@dataclass
class RelayOutcome:
    status: RelayStatus = RelayStatus.FAILED
    retries: int = 0
    topic_id: Optional[str] = None
    forwarded_message_id: Optional[int] = None
    stages: List[RelayStage] = field(default_factory=list)

    def enter(self, stage: RelayStage) -> None:
        if self.stages and not is_valid_transition(self.stages[-1], stage):
            raise RuntimeError(f"Invalid relay transition {self.stages[-1].value} -> {stage.value}")
        self.stages.append(stage)


class RelayEngine:
    """
    Single entry point for relaying user messages.

    Collaborators are injected so tests can swap in fakes; anything left
    out is built from the gateway and services.
    """

    def __init__(
        self,
        gateway: TelegramGateway,
        users: UserService,
        messages: MessageService,
        backup: Optional[BackupService] = None,
        resolver: Optional[TopicResolver] = None,
        cards: Optional[ProfileCardManager] = None,
        locks: Optional[UserLockTable] = None,
        admin_group_id: Optional[str] = None,
    ):
        self.gateway = gateway
        self.users = users
        self.messages = messages
        self.backup = backup
        self.admin_group_id = admin_group_id or settings.ADMIN_GROUP_ID
        self.resolver = resolver or TopicResolver(gateway, users, locks, self.admin_group_id)
        self.cards = cards or ProfileCardManager(gateway, self.admin_group_id)

    async def relay(self, message: Message, user: UserRecord) -> RelayOutcome:
        """
        Relays one message, recovering once from a vanished topic.

        Args:
            message: Inbound private message from a verified user
            user: The sender's record (updated in place)

        Returns:
            RelayOutcome describing what happened
        """
        outcome = RelayOutcome()
        meta = build_user_meta(message.from_user, user, message.date)

        with LogContext(user_id=user.user_id):
            try:
                await self._sync_profile(user, meta)
            except PyMongoError as e:
                logger.warning(f"Profile cache not updated: {e}")

            while True:
                try:
                    forwarded = await self._attempt(message, user, meta, outcome)
                    outcome.enter(RelayStage.PERSIST)
                    await self._persist(message, user, meta, forwarded)
                    break
                except TopicBusyError:
                    outcome.enter(RelayStage.FAIL)
                    outcome.status = RelayStatus.ABANDONED
                    return outcome
                except TopicCreationError:
                    outcome.enter(RelayStage.FAIL)
                    outcome.status = RelayStatus.BUSY
                    await best_effort(self.gateway.send_message(user.user_id, ERROR_SYSTEM_BUSY), "busy notice")
                    return outcome
                except TopicInvalidError as e:
                    logger.warning(f"Topic {e.topic_id} is gone, clearing it")
                    await self.users.clear_topic(user.user_id)
                    user.topic_id = None
                    outcome.topic_id = None
                    outcome.enter(RelayStage.RETRY)
                    if outcome.retries >= MAX_TOPIC_RECOVERIES:
                        return await self._fail(message, user, outcome)
                    outcome.retries += 1
                except GatewayError as e:
                    logger.error(f"Relay failed at {outcome.stages[-1].value}: {e.description}")
                    return await self._fail(message, user, outcome)
                except Exception as e:
                    # storage and other unexpected failures still reach the user as a failed delivery
                    logger.error(f"Relay failed at {outcome.stages[-1].value}: {e}", exc_info=True)
                    return await self._fail(message, user, outcome)

            outcome.enter(RelayStage.DONE)
            outcome.status = RelayStatus.DELIVERED
            return outcome

    async def _attempt(self, message: Message, user: UserRecord, meta: UserMeta, outcome: RelayOutcome) -> Dict[str, Any]:
        outcome.enter(RelayStage.RESOLVE_TOPIC)
        topic_id = await self.resolver.resolve(user, meta)
        outcome.topic_id = topic_id

        outcome.enter(RelayStage.FORWARD_CONTENT)
        forwarded = await self._forward(message, topic_id)
        outcome.forwarded_message_id = forwarded.get("message_id")

        outcome.enter(RelayStage.ENSURE_CARD)
        await self._ensure_card(message, user, topic_id)
        return forwarded

    async def _forward(self, message: Message, topic_id: str) -> Dict[str, Any]:
        """
        Quoted text is re-rendered as a blockquote; everything else is
        forwarded natively, falling back to a copy without attribution
        whenever the forward fails.
        """
        try:
            if is_quote(message.text):
                return await self.gateway.send_message(
                    self.admin_group_id,
                    render_quote(message.text),
                    message_thread_id=topic_id,
                    parse_mode=HTML,
                )
            try:
                return await self.gateway.forward_message(
                    self.admin_group_id, message.chat.id, message.message_id, message_thread_id=topic_id
                )
            except GatewayError as e:
                # only the copy's failure decides whether the topic is gone
                logger.info(f"Forward rejected ({e.description}), copying instead")
                return await self.gateway.copy_message(
                    self.admin_group_id, message.chat.id, message.message_id, message_thread_id=topic_id
                )
        except GatewayError as e:
            if e.kind in TOPIC_INVALIDATING_KINDS:
                raise TopicInvalidError(topic_id, e) from e
            raise

    async def _ensure_card(self, message: Message, user: UserRecord, topic_id: str) -> None:
        had_card = user.info.card_message_id is not None
        card_id = await self.cards.ensure_card(user, message.from_user, topic_id, message.date)
        if card_id is None:
            # placeholder stays until a later message manages to send the card
            return

        changes: Dict[str, Any] = {}
        if not had_card:
            user.info.card_message_id = card_id
            user.info.join_date = message.date or int(time.time())
            changes.update(card_message_id=card_id, join_date=user.info.join_date)
        if user.info.dummy_message_id:
            await best_effort(
                self.gateway.delete_message(self.admin_group_id, user.info.dummy_message_id),
                "placeholder delete",
            )
            user.info.dummy_message_id = None
            changes["dummy_message_id"] = None
        if changes:
            await self.users.update_info(user.user_id, **changes)

    async def _persist(self, message: Message, user: UserRecord, meta: UserMeta, forwarded: Dict[str, Any]) -> None:
        # the correlation is written before the ack so a failed write never follows a "delivered"
        if forwarded.get("message_id"):
            await self.messages.save(
                MessageCorrelation(
                    user_id=user.user_id,
                    message_id=message.message_id,
                    text=message.text or MEDIA_PLACEHOLDER,
                    date=message.date,
                    topic_message_id=forwarded["message_id"],
                )
            )

        await best_effort(
            self.gateway.send_message(
                user.user_id,
                DELIVERED_ACK,
                reply_to_message_id=message.message_id,
                disable_notification=True,
            ),
            "delivery ack",
        )

        if self.backup is not None:
            await self.backup.backup(message, meta)

    async def _sync_profile(self, user: UserRecord, meta: UserMeta) -> None:
        """Caches the sender's live name and handle, renaming the topic on change."""
        if user.info.name == meta.name and user.info.username == meta.username:
            return

        user.info.name = meta.name
        user.info.username = meta.username
        await self.users.update_info(user.user_id, name=meta.name, username=meta.username)
        if user.topic_id:
            await best_effort(
                self.gateway.edit_forum_topic(self.admin_group_id, user.topic_id, meta.topic_name),
                "topic rename",
            )

    async def _fail(self, message: Message, user: UserRecord, outcome: RelayOutcome) -> RelayOutcome:
        if outcome.stages[-1] is not RelayStage.FAIL:
            outcome.enter(RelayStage.FAIL)
        outcome.status = RelayStatus.FAILED
        await best_effort(self.gateway.send_message(user.user_id, ERROR_DELIVERY_FAILED), "failure notice")
        return outcome


_relay_engine: Optional[RelayEngine] = None


def get_relay_engine() -> RelayEngine:
    """Process-wide engine; its lock table lives as long as the process."""
    global _relay_engine
    if _relay_engine is None:
        _relay_engine = RelayEngine(
            gateway=get_gateway(),
            users=get_user_service(),
            messages=get_message_service(),
            backup=BackupService(get_gateway(), get_config_service()),
        )
    return _relay_engine
