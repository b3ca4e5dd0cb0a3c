"""
Featur: Conversation, participant and message models.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from featur.database import Base
from featur.utils.timeutil import utcnow


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="dm_<pairkey> or random for groups"
    )
    is_group_chat: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    group_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    participants: Mapped[list["ConversationParticipant"]] = relationship(
        "ConversationParticipant",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ConversationParticipant.user_id",
    )

    def __repr__(self) -> str:
        return f"<Conversation {self.id} group={self.is_group_chat}>"


class ConversationParticipant(Base):
    """Membership row; also carries the member's unread counter."""

    __tablename__ = "conversation_participants"
    __table_args__ = (Index("ix_participants_user", "user_id"),)

    conversation_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ConversationParticipant {self.user_id} in {self.conversation_id} "
            f"unread={self.unread_count}>"
        )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_sent", "conversation_id", "sent_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    conversation_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)
    recipient_id: Mapped[str] = mapped_column(
        String(128), nullable=False, comment="Empty for group messages"
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    media_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Message {self.id} {self.sender_id} -> {self.recipient_id}>"
