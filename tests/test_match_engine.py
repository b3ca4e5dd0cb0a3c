"""Unit tests for MatchEngine: reciprocity, idempotence and retry."""
import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from featur.errors import MatchEvaluationError, MatchNotFoundError
from featur.models.match import Match as MatchRow
from featur.realtime import user_matches_channel
from featur.utils.pairs import PairKey


async def _like_each_other(container, a, b):
    await container.swipes.record(a, b, "like")
    await container.swipes.record(b, a, "like")


async def _active_rows(container, a, b):
    async with container.session_factory() as session:
        result = await session.execute(
            select(MatchRow).where(
                MatchRow.pair_key == PairKey.of(a, b).digest,
                MatchRow.is_active.is_(True),
            )
        )
        return list(result.scalars())


class TestEvaluate:
    """Tests for reciprocal match evaluation."""

    @pytest.mark.asyncio
    async def test_no_like_from_subject(self, container, user_a, user_b):
        evaluation = await container.matches.evaluate(user_a, user_b)
        assert not evaluation.matched
        assert evaluation.reason == "no_like_from_subject"

    @pytest.mark.asyncio
    async def test_not_reciprocated(self, container, user_a, user_b):
        await container.swipes.record(user_a, user_b, "like")
        evaluation = await container.matches.evaluate(user_a, user_b)
        assert not evaluation.matched
        assert evaluation.reason == "not_reciprocated"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subject,target", [("", "bob"), ("alice", "alice")])
    async def test_invalid_ids_are_skipped(self, container, subject, target):
        evaluation = await container.matches.evaluate(subject, target)
        assert evaluation.skipped
        assert not evaluation.matched

    @pytest.mark.asyncio
    async def test_match_creates_conversation(self, container, user_a, user_b):
        await _like_each_other(container, user_a, user_b)
        pair = PairKey.of(user_a, user_b)

        conversation = await container.conversations.fetch_conversation(pair.conversation_id)
        assert conversation is not None
        assert sorted(conversation.participant_ids) == sorted([user_a, user_b])
        assert not conversation.is_group_chat

    @pytest.mark.asyncio
    async def test_repeat_evaluation_is_idempotent(self, container, user_a, user_b):
        await _like_each_other(container, user_a, user_b)
        again = await container.matches.evaluate(user_a, user_b)
        assert again.matched
        assert not again.created
        assert len(await _active_rows(container, user_a, user_b)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_evaluations_create_one_match(self, container, user_a, user_b):
        await container.swipes.record(user_a, user_b, "like")
        await container.swipes.record(user_b, user_a, "like")

        results = await asyncio.gather(
            *(container.matches.evaluate(user_a, user_b) for _ in range(3)),
            *(container.matches.evaluate(user_b, user_a) for _ in range(3)),
        )
        assert all(r.matched for r in results)
        assert not any(r.created for r in results)
        assert len({r.match.id for r in results}) == 1
        assert len(await _active_rows(container, user_a, user_b)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_mutual_likes(self, container, feed, user_a, user_b):
        stream = await feed.open(user_matches_channel(user_a))
        try:
            outcomes = await asyncio.gather(
                container.swipes.record(user_a, user_b, "like"),
                container.swipes.record(user_b, user_a, "like"),
            )
            assert sum(o.match_created for o in outcomes) == 1
            assert len(await _active_rows(container, user_a, user_b)) == 1

            event = await asyncio.wait_for(stream.__anext__(), timeout=2)
            assert event["type"] == "match_created"
            assert event["otherUserId"] == user_b
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(stream.__anext__(), timeout=0.2)
        finally:
            await stream.aclose()

    @pytest.mark.asyncio
    async def test_transient_errors_retried_then_surfaced(self, container, user_a, user_b, monkeypatch):
        failing = AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("database is locked"))
        )
        monkeypatch.setattr(container.matches, "_evaluate_once", failing)

        with pytest.raises(MatchEvaluationError):
            await container.matches.evaluate(user_a, user_b)
        assert failing.await_count == container.settings.MATCH_MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_permanent_errors_not_retried(self, container, user_a, user_b, monkeypatch):
        failing = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("constraint failed"))
        )
        monkeypatch.setattr(container.matches, "_evaluate_once", failing)

        with pytest.raises(MatchEvaluationError):
            await container.matches.evaluate(user_a, user_b)
        assert failing.await_count == 1

    @pytest.mark.asyncio
    async def test_feed_failure_does_not_fail_match(self, container, user_a, user_b, monkeypatch):
        monkeypatch.setattr(
            container.feed, "publish", AsyncMock(side_effect=ConnectionError("redis down"))
        )
        await container.swipes.record(user_a, user_b, "like")
        outcome = await container.swipes.record(user_b, user_a, "like")
        assert outcome.match_created


class TestLifecycle:
    """Tests for unmatching and rematching."""

    @pytest.mark.asyncio
    async def test_fetch_matches(self, container, user_a, user_b):
        await _like_each_other(container, user_a, user_b)
        await _like_each_other(container, user_a, "creator-carol")

        matches = await container.matches.fetch_matches(user_a)
        assert len(matches) == 2
        assert {m.other_user(user_a) for m in matches} == {user_b, "creator-carol"}
        assert len(await container.matches.fetch_matches(user_b)) == 1

    @pytest.mark.asyncio
    async def test_unmatch(self, container, user_a, user_b):
        await _like_each_other(container, user_a, user_b)
        match = await container.matches.find_active_match(user_a, user_b)

        result = await container.matches.unmatch(match.id)
        assert not result.is_active
        assert result.unmatched_at is not None
        assert await container.matches.fetch_matches(user_a) == []

        # Repeating is harmless and keeps the first timestamp.
        again = await container.matches.unmatch(match.id)
        assert again.unmatched_at == result.unmatched_at

    @pytest.mark.asyncio
    async def test_unmatch_unknown(self, container):
        with pytest.raises(MatchNotFoundError):
            await container.matches.unmatch("missing")

    @pytest.mark.asyncio
    async def test_rematch_after_unmatch(self, container, user_a, user_b):
        await _like_each_other(container, user_a, user_b)
        first = await container.matches.find_active_match(user_a, user_b)
        await container.matches.deactivate_pair(user_a, user_b)

        evaluation = await container.matches.evaluate(user_a, user_b)
        assert evaluation.created
        assert evaluation.match.id != first.id
        # Both matches share the pair's single conversation.
        assert evaluation.conversation_id == PairKey.of(user_a, user_b).conversation_id
