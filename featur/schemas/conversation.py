from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from featur.schemas.profile import CamelModel


class Conversation(CamelModel):
    id: str
    participant_ids: list[str]
    last_message: Optional[str] = None
    last_message_at: datetime
    unread_count: dict[str, int] = {}
    is_group_chat: bool = False
    group_name: Optional[str] = None
    created_at: datetime


class Message(CamelModel):
    id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: str
    media_url: Optional[str] = Field(default=None, alias="mediaURL")
    sent_at: datetime
    read_at: Optional[datetime] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


class MessageCreate(CamelModel):
    sender_id: str
    recipient_id: str = ""
    content: str = ""
    media_url: Optional[str] = Field(default=None, alias="mediaURL")


class MessageSnapshot(CamelModel):
    """Full, chronologically ordered view of a conversation's latest messages.

    Each snapshot replaces the previous one; ``sequence`` increases by one per
    snapshot delivered on a subscription.
    """

    conversation_id: str
    sequence: int
    messages: list[Message]


class ConversationCreate(CamelModel):
    user_id: str
    other_user_id: str


class GroupConversationCreate(CamelModel):
    creator_id: str
    participant_ids: list[str]
    group_name: str


class MarkReadRequest(CamelModel):
    user_id: str
