"""
Featur: Swipe Ledger

Append-only record of swipes.  ``record`` commits the swipe first and only
then asks the match engine to evaluate the pair, so a failed evaluation can
never lose the swipe; the outcome reports ``match_pending`` instead and the
evaluation can be replayed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from featur.errors import MatchEvaluationError
from featur.models.match import Swipe
from featur.schemas.match import SwipeAction, SwipeKind, SwipeOutcome
from featur.services.match_service import MatchEngine
from featur.services.telemetry import Telemetry
from featur.utils.pairs import PairKey
from featur.utils.timeutil import ensure_utc, utcnow

logger = structlog.get_logger("featur.swipe_service")


def _to_action(row: Swipe) -> SwipeAction:
    return SwipeAction(
        subject_id=row.subject_id,
        target_id=row.target_id,
        action=SwipeKind(row.action),
        timestamp=ensure_utc(row.created_at),
    )


class SwipeLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        telemetry: Optional[Telemetry] = None,
    ) -> None:
        self._session_factory = session_factory
        self._telemetry = telemetry or Telemetry()
        self._match_engine: Optional[MatchEngine] = None
        logger.info("swipe_ledger_initialised")

    def attach_match_engine(self, engine: MatchEngine) -> None:
        self._match_engine = engine

    # ── Public API ────────────────────────────────────────────────────────

    async def record(
        self,
        subject_id: str,
        target_id: str,
        action: Union[SwipeKind, str],
        timestamp: Optional[datetime] = None,
    ) -> SwipeOutcome:
        """Store a swipe and, for likes, evaluate the pair for a match.

        Parameters
        ----------
        subject_id:
            The swiping user.
        target_id:
            The user swiped on.
        action:
            ``like``, ``pass`` or ``superlike``.
        timestamp:
            Client time of the swipe; defaults to now.

        Returns
        -------
        SwipeOutcome
            ``skipped`` for invalid input (nothing stored), otherwise the
            stored swipe plus any match information.
        """
        log = logger.bind(subject_id=subject_id, target_id=target_id)

        if not subject_id or not target_id:
            log.warning("swipe_skipped", reason="empty_id")
            return SwipeOutcome(recorded=False, skipped=True, reason="empty_id")
        if subject_id == target_id:
            log.warning("swipe_skipped", reason="self_swipe")
            return SwipeOutcome(recorded=False, skipped=True, reason="self_swipe")
        try:
            kind = SwipeKind(action.lower() if isinstance(action, str) else action)
        except ValueError:
            log.warning("swipe_skipped", reason="unknown_action", action=str(action))
            return SwipeOutcome(recorded=False, skipped=True, reason="unknown_action")

        when = ensure_utc(timestamp) or utcnow()
        async with self._session_factory() as session, session.begin():
            row = Swipe(
                subject_id=subject_id,
                target_id=target_id,
                action=kind.value,
                created_at=when,
            )
            session.add(row)
            await session.flush()
            swipe = _to_action(row)

        log.info("swipe_recorded", action=kind.value)
        self._telemetry.track(
            "swipe",
            {"subject_id": subject_id, "target_id": target_id, "action": kind.value},
        )

        outcome = SwipeOutcome(recorded=True, swipe=swipe)
        if not kind.is_positive or self._match_engine is None:
            return outcome

        try:
            evaluation = await self._match_engine.evaluate(subject_id, target_id)
        except MatchEvaluationError as exc:
            log.error("swipe_match_pending", error=str(exc))
            outcome.match_pending = True
            return outcome

        if evaluation.matched:
            outcome.match = evaluation.match
            outcome.match_created = evaluation.created
        return outcome

    async def undo(self, subject_id: str, target_id: str) -> Optional[SwipeAction]:
        """Remove the most recent swipe from subject to target.

        If that leaves no like from subject to target, the pair's active
        match (if any) is deactivated in the same transaction.
        """
        if not subject_id or not target_id:
            logger.warning("swipe_undo_skipped", reason="empty_id")
            return None

        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                select(Swipe)
                .where(Swipe.subject_id == subject_id, Swipe.target_id == target_id)
                .order_by(Swipe.created_at.desc(), Swipe.id.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            removed = _to_action(row)
            await session.execute(delete(Swipe).where(Swipe.id == row.id))

            deactivated = False
            if removed.action.is_positive and subject_id != target_id:
                still_likes = await MatchEngine.has_positive_swipe(session, subject_id, target_id)
                if not still_likes:
                    deactivated = await MatchEngine.deactivate_in_session(
                        session, PairKey.of(subject_id, target_id)
                    )

        logger.info(
            "swipe_undone",
            subject_id=subject_id,
            target_id=target_id,
            action=removed.action.value,
            match_deactivated=deactivated,
        )
        return removed

    async def list_targets(self, subject_id: str) -> set[str]:
        """Every user the subject has swiped on, in any direction."""
        if not subject_id:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Swipe.target_id).where(Swipe.subject_id == subject_id).distinct()
            )
            return set(result.scalars())

    async def has_liked(self, subject_id: str, target_id: str) -> bool:
        if not subject_id or not target_id:
            return False
        async with self._session_factory() as session:
            return await MatchEngine.has_positive_swipe(session, subject_id, target_id)
