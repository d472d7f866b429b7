"""
relaybot/models/message.py

Purpose: Forward correlation record

Links a message in the user's private chat to the message it produced
inside the user's admin topic, so admin replies can be threaded back.
"""

from typing import Optional, Dict, Any

from pydantic import BaseModel


class MessageCorrelation(BaseModel):
    user_id: str
    message_id: int
    text: str = ""
    date: Optional[int] = None
    topic_message_id: Optional[int] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MessageCorrelation":
        return cls.model_validate({k: v for k, v in doc.items() if k != "_id"})
