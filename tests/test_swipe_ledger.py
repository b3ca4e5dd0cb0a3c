"""Unit tests for SwipeLedger."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from featur.errors import MatchEvaluationError
from featur.schemas.match import SwipeKind


class TestRecord:
    """Tests for recording swipes."""

    @pytest.mark.asyncio
    async def test_like_without_reciprocation(self, container, user_a, user_b):
        outcome = await container.swipes.record(user_a, user_b, "like")
        assert outcome.recorded
        assert outcome.swipe.action is SwipeKind.LIKE
        assert outcome.match is None
        assert not outcome.match_created
        assert await container.swipes.has_liked(user_a, user_b)
        assert not await container.swipes.has_liked(user_b, user_a)

    @pytest.mark.asyncio
    async def test_reciprocal_like_creates_match(self, container, user_a, user_b):
        await container.swipes.record(user_a, user_b, SwipeKind.LIKE)
        outcome = await container.swipes.record(user_b, user_a, SwipeKind.LIKE)
        assert outcome.match_created
        assert {outcome.match.user_id_1, outcome.match.user_id_2} == {user_a, user_b}

    @pytest.mark.asyncio
    async def test_superlike_counts_as_like(self, container, user_a, user_b):
        await container.swipes.record(user_a, user_b, "superLike")
        outcome = await container.swipes.record(user_b, user_a, "like")
        assert outcome.match_created

    @pytest.mark.asyncio
    async def test_pass_never_matches(self, container, user_a, user_b):
        await container.swipes.record(user_a, user_b, "like")
        outcome = await container.swipes.record(user_b, user_a, "pass")
        assert outcome.recorded
        assert outcome.match is None
        assert await container.matches.find_active_match(user_a, user_b) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "subject,target,action,reason",
        [
            ("", "bob", "like", "empty_id"),
            ("alice", "", "like", "empty_id"),
            ("alice", "alice", "like", "self_swipe"),
            ("alice", "bob", "wink", "unknown_action"),
        ],
    )
    async def test_invalid_input_is_skipped(self, container, subject, target, action, reason):
        outcome = await container.swipes.record(subject, target, action)
        assert outcome.skipped
        assert not outcome.recorded
        assert outcome.reason == reason
        assert await container.swipes.list_targets("alice") == set()

    @pytest.mark.asyncio
    async def test_failed_evaluation_keeps_swipe(self, container, user_a, user_b, monkeypatch):
        monkeypatch.setattr(
            container.matches,
            "evaluate",
            AsyncMock(side_effect=MatchEvaluationError("database unavailable")),
        )
        outcome = await container.swipes.record(user_a, user_b, "like")
        assert outcome.recorded
        assert outcome.match_pending
        assert await container.swipes.has_liked(user_a, user_b)

    @pytest.mark.asyncio
    async def test_pass_skips_evaluation(self, container, user_a, user_b, monkeypatch):
        evaluate = AsyncMock()
        monkeypatch.setattr(container.matches, "evaluate", evaluate)
        await container.swipes.record(user_a, user_b, "pass")
        evaluate.assert_not_awaited()


class TestUndo:
    """Tests for undoing the latest swipe."""

    @pytest.mark.asyncio
    async def test_undo_removes_latest_swipe(self, container, user_a, user_b):
        t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await container.swipes.record(user_a, user_b, "pass", t0)
        await container.swipes.record(user_a, user_b, "like", t0 + timedelta(minutes=1))

        removed = await container.swipes.undo(user_a, user_b)
        assert removed.action is SwipeKind.LIKE
        assert not await container.swipes.has_liked(user_a, user_b)
        assert await container.swipes.list_targets(user_a) == {user_b}

    @pytest.mark.asyncio
    async def test_undo_nothing(self, container, user_a, user_b):
        assert await container.swipes.undo(user_a, user_b) is None

    @pytest.mark.asyncio
    async def test_undo_like_deactivates_match(self, container, user_a, user_b):
        await container.swipes.record(user_a, user_b, "like")
        await container.swipes.record(user_b, user_a, "like")
        assert await container.matches.find_active_match(user_a, user_b) is not None

        await container.swipes.undo(user_b, user_a)
        assert await container.matches.find_active_match(user_a, user_b) is None
        assert await container.matches.fetch_matches(user_a) == []


class TestQueries:
    """Tests for swipe history queries."""

    @pytest.mark.asyncio
    async def test_list_targets(self, container, user_a):
        for target in ("t1", "t2", "t2"):
            await container.swipes.record(user_a, target, "pass")
        assert await container.swipes.list_targets(user_a) == {"t1", "t2"}
        assert await container.swipes.list_targets("") == set()
