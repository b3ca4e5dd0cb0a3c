"""
Featur: Match Engine

Turns reciprocal likes into exactly one active match per pair:

  1. Validate the two ids (empty or identical ids are a logged no-op).
  2. Confirm the subject's like towards the target.
  3. Confirm the target's like back (a superlike counts as a like).
  4. Insert the match with ``ON CONFLICT DO NOTHING`` against the partial
     unique index on the active pair key, so concurrent evaluations of the
     same pair produce one row.  Only the call whose insert won reports
     ``created=True``.
  5. Create the pair's 1:1 conversation in the same transaction.

After a fresh match commits, a ``match_created`` event is published to both
users and telemetry is recorded.  Transient database failures are retried
with exponential backoff and then surfaced as ``MatchEvaluationError``.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from featur.database import insert_ignoring_conflicts
from featur.errors import InvalidIdentifierError, MatchEvaluationError, MatchNotFoundError
from featur.models.match import Match as MatchRow
from featur.models.match import Swipe
from featur.realtime import ChangeFeed, user_matches_channel
from featur.schemas.match import Match, MatchEvaluation, SwipeKind
from featur.services.conversation_service import ConversationService
from featur.services.telemetry import Telemetry
from featur.utils.pairs import PairKey
from featur.utils.timeutil import ensure_utc, utcnow

logger = structlog.get_logger("featur.match_service")

POSITIVE_ACTIONS: tuple[str, ...] = (SwipeKind.LIKE.value, SwipeKind.SUPERLIKE.value)


def _is_transient_db_error(exc: BaseException) -> bool:
    """Return True for connection drops, lock timeouts and serialisation
    failures; constraint and programming errors are not retried."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def to_match(row: MatchRow) -> Match:
    return Match(
        id=row.id,
        user_id_1=row.user_id_1,
        user_id_2=row.user_id_2,
        matched_at=ensure_utc(row.matched_at),
        has_messaged=row.has_messaged,
        last_message_at=ensure_utc(row.last_message_at),
        is_active=row.is_active,
        unmatched_at=ensure_utc(row.unmatched_at),
    )


class MatchEngine:
    """Reciprocal-like detection and match lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        conversations: ConversationService,
        feed: ChangeFeed,
        telemetry: Optional[Telemetry] = None,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
    ) -> None:
        """Initialise the engine with injected dependencies.

        Parameters
        ----------
        session_factory:
            Async session factory; each evaluation is one transaction.
        conversations:
            Used to create the pair's conversation alongside the match.
        feed:
            Change feed for ``match_created`` events.
        telemetry:
            Product event sink.
        max_attempts, backoff_base_seconds:
            Retry policy for transient database errors.
        """
        self._session_factory = session_factory
        self._conversations = conversations
        self._feed = feed
        self._telemetry = telemetry or Telemetry()
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds

        logger.info(
            "match_engine_initialised",
            max_attempts=max_attempts,
            backoff_base_seconds=backoff_base_seconds,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def evaluate(self, subject_id: str, target_id: str) -> MatchEvaluation:
        """Check for a reciprocal like and create the match if needed.

        Parameters
        ----------
        subject_id:
            The user whose like triggered the evaluation.
        target_id:
            The user who was liked.

        Returns
        -------
        MatchEvaluation
            ``matched`` when an active match exists after the call;
            ``created`` only for the call that inserted it.

        Raises
        ------
        MatchEvaluationError
            If the database stays unavailable through every retry.  The
            evaluation is idempotent and can simply be run again.
        """
        log = logger.bind(subject_id=subject_id, target_id=target_id)
        try:
            pair = PairKey.of(subject_id, target_id)
        except InvalidIdentifierError as exc:
            log.warning("match_evaluation_skipped", reason=str(exc))
            return MatchEvaluation(matched=False, skipped=True, reason=str(exc))

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_transient_db_error),
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(
                    multiplier=self._backoff_base,
                    min=0,
                    max=30,
                    exp_base=2,
                ),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        log.info(
                            "match_evaluation_retry",
                            attempt_number=attempt.retry_state.attempt_number,
                        )
                    evaluation = await self._evaluate_once(subject_id, target_id, pair)
        except SQLAlchemyError as exc:
            log.error(
                "match_evaluation_failed",
                error=str(exc),
                transient=_is_transient_db_error(exc),
            )
            raise MatchEvaluationError(
                f"Could not evaluate match for {subject_id} -> {target_id}"
            ) from exc

        if evaluation.created and evaluation.match is not None:
            log.info(
                "match_created",
                match_id=evaluation.match.id,
                conversation_id=evaluation.conversation_id,
            )
            await self._announce(evaluation)
        elif evaluation.matched:
            log.debug("match_already_exists", match_id=evaluation.match.id)
        return evaluation

    async def fetch_matches(self, user_id: str) -> list[Match]:
        """Active matches for a user, newest first."""
        if not user_id:
            raise InvalidIdentifierError("user_id must be non-empty")
        async with self._session_factory() as session:
            result = await session.execute(
                select(MatchRow)
                .where(
                    or_(MatchRow.user_id_1 == user_id, MatchRow.user_id_2 == user_id),
                    MatchRow.is_active.is_(True),
                )
                .order_by(MatchRow.matched_at.desc())
            )
            return [to_match(row) for row in result.scalars()]

    async def find_active_match(self, user_a: str, user_b: str) -> Optional[Match]:
        pair = PairKey.of(user_a, user_b)
        async with self._session_factory() as session:
            row = await self._active_row(session, pair)
            return to_match(row) if row else None

    async def unmatch(self, match_id: str) -> Match:
        """Soft-deactivate a match.  Repeating the call is harmless."""
        async with self._session_factory() as session, session.begin():
            row = await session.get(MatchRow, match_id, with_for_update=True)
            if row is None:
                raise MatchNotFoundError(f"Match {match_id} not found")
            if row.is_active:
                row.is_active = False
                row.unmatched_at = utcnow()
            match = to_match(row)

        logger.info("match_deactivated", match_id=match_id)
        return match

    async def deactivate_pair(self, user_a: str, user_b: str) -> bool:
        pair = PairKey.of(user_a, user_b)
        async with self._session_factory() as session, session.begin():
            changed = await self.deactivate_in_session(session, pair)
        if changed:
            logger.info("match_pair_deactivated", pair_key=pair.digest)
        return changed

    # ── Transaction helpers ───────────────────────────────────────────────

    @staticmethod
    async def deactivate_in_session(session: AsyncSession, pair: PairKey) -> bool:
        result = await session.execute(
            update(MatchRow)
            .where(MatchRow.pair_key == pair.digest, MatchRow.is_active.is_(True))
            .values(is_active=False, unmatched_at=utcnow())
        )
        return bool(result.rowcount)

    @staticmethod
    async def has_positive_swipe(session: AsyncSession, subject_id: str, target_id: str) -> bool:
        result = await session.execute(
            select(Swipe.id)
            .where(
                Swipe.subject_id == subject_id,
                Swipe.target_id == target_id,
                Swipe.action.in_(POSITIVE_ACTIONS),
            )
            .limit(1)
        )
        return result.first() is not None

    @staticmethod
    async def _active_row(session: AsyncSession, pair: PairKey) -> Optional[MatchRow]:
        result = await session.execute(
            select(MatchRow).where(
                MatchRow.pair_key == pair.digest,
                MatchRow.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def _evaluate_once(
        self,
        subject_id: str,
        target_id: str,
        pair: PairKey,
    ) -> MatchEvaluation:
        async with self._session_factory() as session, session.begin():
            if not await self.has_positive_swipe(session, subject_id, target_id):
                return MatchEvaluation(matched=False, reason="no_like_from_subject")
            if not await self.has_positive_swipe(session, target_id, subject_id):
                return MatchEvaluation(matched=False, reason="not_reciprocated")

            result = await session.execute(
                insert_ignoring_conflicts(session, MatchRow).values(
                    id=str(uuid.uuid4()),
                    user_id_1=pair.user_a,
                    user_id_2=pair.user_b,
                    pair_key=pair.digest,
                    matched_at=utcnow(),
                    has_messaged=False,
                    is_active=True,
                )
            )
            created = result.rowcount == 1

            row = await self._active_row(session, pair)
            if row is None:
                # The winning insert was deactivated before we could read it.
                return MatchEvaluation(matched=False, reason="deactivated_concurrently")
            conversation_id, _ = await self._conversations.ensure_direct(session, pair)
            match = to_match(row)

        return MatchEvaluation(
            matched=True,
            created=created,
            match=match,
            conversation_id=conversation_id,
        )

    async def _announce(self, evaluation: MatchEvaluation) -> None:
        match = evaluation.match
        for user_id in (match.user_id_1, match.user_id_2):
            event = {
                "type": "match_created",
                "matchId": match.id,
                "otherUserId": match.other_user(user_id),
                "conversationId": evaluation.conversation_id,
            }
            try:
                await self._feed.publish(user_matches_channel(user_id), event)
            except Exception as exc:
                logger.warning(
                    "match_event_publish_failed",
                    match_id=match.id,
                    user_id=user_id,
                    error=str(exc),
                )
        self._telemetry.track(
            "match",
            {
                "match_id": match.id,
                "user_id_1": match.user_id_1,
                "user_id_2": match.user_id_2,
            },
        )
