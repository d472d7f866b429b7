"""
relaybot/models/user.py

Purpose: User document model

- Telegram user id and verification state
- Blocklist flag and keyword strike counter
- Reference to the admin-group discussion topic
- Typed per-user metadata (card / placeholder refs, note, cached name)
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field

from relaybot.flow.states import UserState


class UserInfo(BaseModel):
    """
    Per-user metadata. Every field is optional; None means "not set".
    """

    name: Optional[str] = None
    username: Optional[str] = None
    card_message_id: Optional[int] = None  # pinned profile card in the topic
    dummy_message_id: Optional[int] = None  # "loading" placeholder, removed once the card exists
    join_date: Optional[int] = None  # unix seconds of the message that produced the card
    note: Optional[str] = None
    last_busy_reply: Optional[float] = None  # unix seconds
    blacklist_message_id: Optional[int] = None


class UserRecord(BaseModel):
    user_id: str
    state: UserState = UserState.NEW
    is_blocked: bool = False
    block_count: int = 0
    topic_id: Optional[str] = None
    info: UserInfo = Field(default_factory=UserInfo)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserRecord":
        """Builds a record from a Mongo document, ignoring `_id`."""
        data = {k: v for k, v in doc.items() if k != "_id"}
        if data.get("topic_id") is not None:
            data["topic_id"] = str(data["topic_id"])
        data["info"] = data.get("info") or {}
        return cls.model_validate(data)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="python") | {"state": self.state.value}


def default_user_document(user_id: str) -> Dict[str, Any]:
    """Fields written when a user document is first inserted."""
    return UserRecord(user_id=user_id).to_document()
