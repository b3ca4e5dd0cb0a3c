from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import field_validator

from featur.schemas.profile import CamelModel


class SwipeKind(str, Enum):
    LIKE = "like"
    PASS = "pass"
    SUPERLIKE = "superlike"

    @property
    def is_positive(self) -> bool:
        return self in (SwipeKind.LIKE, SwipeKind.SUPERLIKE)


class SwipeAction(CamelModel):
    subject_id: str
    target_id: str
    action: SwipeKind
    timestamp: datetime


class SwipeCreate(CamelModel):
    subject_id: str
    target_id: str
    action: SwipeKind = SwipeKind.LIKE
    timestamp: Optional[datetime] = None

    @field_validator("action", mode="before")
    @classmethod
    def _normalise_action(cls, v):
        # Older clients send "superLike".
        return v.lower() if isinstance(v, str) else v


class Match(CamelModel):
    id: str
    user_id_1: str
    user_id_2: str
    matched_at: datetime
    has_messaged: bool = False
    last_message_at: Optional[datetime] = None
    is_active: bool = True
    unmatched_at: Optional[datetime] = None

    def other_user(self, user_id: str) -> str:
        return self.user_id_2 if user_id == self.user_id_1 else self.user_id_1


class MatchEvaluation(CamelModel):
    matched: bool
    created: bool = False
    skipped: bool = False
    reason: Optional[str] = None
    match: Optional[Match] = None
    conversation_id: Optional[str] = None


class SwipeOutcome(CamelModel):
    recorded: bool
    skipped: bool = False
    reason: Optional[str] = None
    swipe: Optional[SwipeAction] = None
    match: Optional[Match] = None
    match_created: bool = False
    match_pending: bool = False


class MatchEvaluateRequest(CamelModel):
    subject_id: str
    target_id: str


class UnmatchResponse(CamelModel):
    match_id: str
    is_active: bool
    unmatched_at: Optional[datetime] = None
