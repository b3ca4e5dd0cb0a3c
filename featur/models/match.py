"""
Featur: Match and Swipe models.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from featur.database import Base
from featur.utils.timeutil import utcnow


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        # At most one active match per unordered pair.
        Index(
            "uq_active_match_pair",
            "pair_key",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_matches_user_1", "user_id_1"),
        Index("ix_matches_user_2", "user_id_2"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id_1: Mapped[str] = mapped_column(
        String(128), nullable=False, comment="Lexicographically smaller uid"
    )
    user_id_2: Mapped[str] = mapped_column(String(128), nullable=False)
    pair_key: Mapped[str] = mapped_column(String(64), nullable=False)
    matched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    has_messaged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    unmatched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Match {self.user_id_1} <-> {self.user_id_2} "
            f"active={self.is_active}>"
        )


class Swipe(Base):
    """Append-only swipe ledger row; repeated swipes are kept."""

    __tablename__ = "swipes"
    __table_args__ = (
        Index("ix_swipes_subject_target", "subject_id", "target_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    target_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="like / pass / superlike"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Swipe {self.subject_id} -> {self.target_id} action={self.action!r}>"
