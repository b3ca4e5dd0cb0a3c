"""Unit tests for ConversationService: messaging, unread state and live snapshots."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from featur.errors import (
    ConversationNotFoundError,
    InvalidIdentifierError,
    InvalidMessageError,
    NotAParticipantError,
)
from featur.realtime import conversation_channel
from featur.schemas.conversation import MessageCreate
from featur.services.conversation_service import MEDIA_ONLY_PREVIEW
from featur.utils.pairs import PairKey


@pytest.fixture
def service(container):
    return container.conversations


async def _send(service, conversation_id, sender, content="hey", **kwargs):
    return await service.send_message(
        conversation_id, MessageCreate(sender_id=sender, content=content, **kwargs)
    )


class TestConversations:
    """Tests for one-to-one and group conversation creation."""

    @pytest.mark.asyncio
    async def test_get_or_create_is_stable(self, service, user_a, user_b):
        first = await service.get_or_create_conversation(user_a, user_b)
        second = await service.get_or_create_conversation(user_b, user_a)
        assert first.id == second.id == PairKey.of(user_a, user_b).conversation_id
        assert first.unread_count == {user_a: 0, user_b: 0}

    @pytest.mark.asyncio
    async def test_concurrent_get_or_create(self, service, user_a, user_b):
        results = await asyncio.gather(
            *(service.get_or_create_conversation(user_a, user_b) for _ in range(5)),
            *(service.get_or_create_conversation(user_b, user_a) for _ in range(5)),
        )
        assert len({c.id for c in results}) == 1
        assert await service.fetch_conversations(user_a) == [
            await service.fetch_conversation(results[0].id)
        ]

    @pytest.mark.asyncio
    async def test_self_conversation_rejected(self, service, user_a):
        with pytest.raises(InvalidIdentifierError):
            await service.get_or_create_conversation(user_a, user_a)

    @pytest.mark.asyncio
    async def test_group_conversation(self, service, user_a, user_b):
        group = await service.create_group_conversation(
            user_a, [user_b, "creator-carol", user_b], "  Collab squad "
        )
        assert group.is_group_chat
        assert group.group_name == "Collab squad"
        assert sorted(group.participant_ids) == sorted([user_a, user_b, "creator-carol"])

    @pytest.mark.asyncio
    async def test_group_needs_two_members(self, service, user_a):
        with pytest.raises(InvalidIdentifierError):
            await service.create_group_conversation(user_a, [user_a], "Solo")

    @pytest.mark.asyncio
    async def test_fetch_conversations_most_recent_first(self, service, user_a, user_b):
        older = await service.get_or_create_conversation(user_a, user_b)
        newer = await service.get_or_create_conversation(user_a, "creator-carol")
        await _send(service, older.id, user_a)

        listed = await service.fetch_conversations(user_a)
        assert [c.id for c in listed] == [older.id, newer.id]


class TestMessaging:
    """Tests for sending messages and unread counters."""

    @pytest.mark.asyncio
    async def test_send_updates_summary_and_unread(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        for i in range(3):
            message = await _send(service, conversation.id, user_a, f"msg {i}")
        assert message.recipient_id == user_b

        refreshed = await service.fetch_conversation(conversation.id)
        assert refreshed.last_message == "msg 2"
        assert refreshed.last_message_at == message.sent_at
        assert refreshed.unread_count == {user_a: 0, user_b: 3}

    @pytest.mark.asyncio
    async def test_concurrent_sends_count_every_message(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        await asyncio.gather(*(_send(service, conversation.id, user_a, f"m{i}") for i in range(8)))
        refreshed = await service.fetch_conversation(conversation.id)
        assert refreshed.unread_count[user_b] == 8

    @pytest.mark.asyncio
    async def test_media_only_message(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        message = await _send(
            service, conversation.id, user_a, "", media_url="https://cdn.example/clip.mp4"
        )
        assert message.media_url == "https://cdn.example/clip.mp4"
        refreshed = await service.fetch_conversation(conversation.id)
        assert refreshed.last_message == MEDIA_ONLY_PREVIEW

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        with pytest.raises(InvalidMessageError):
            await _send(service, conversation.id, user_a, "   ")

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        with pytest.raises(NotAParticipantError):
            await _send(service, conversation.id, "creator-mallory")
        with pytest.raises(NotAParticipantError):
            await _send(service, conversation.id, user_a, recipient_id="creator-mallory")

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, service, user_a):
        with pytest.raises(ConversationNotFoundError):
            await _send(service, "dm_missing", user_a)
        assert await service.fetch_messages("dm_missing") == []

    @pytest.mark.asyncio
    async def test_group_message_bumps_everyone_but_sender(self, service, user_a, user_b):
        group = await service.create_group_conversation(user_a, [user_b, "creator-carol"], "Crew")
        await _send(service, group.id, user_b, "hi all")
        refreshed = await service.fetch_conversation(group.id)
        assert refreshed.unread_count == {user_a: 1, user_b: 0, "creator-carol": 1}

    @pytest.mark.asyncio
    async def test_messages_oldest_first_within_page(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        for i in range(5):
            await _send(service, conversation.id, user_a if i % 2 == 0 else user_b, f"m{i}")

        page = await service.fetch_messages(conversation.id, limit=3)
        assert [m.content for m in page] == ["m2", "m3", "m4"]
        assert [m.content for m in await service.fetch_messages(conversation.id)] == [
            "m0", "m1", "m2", "m3", "m4",
        ]

    @pytest.mark.asyncio
    async def test_zero_limit_returns_nothing(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        await _send(service, conversation.id, user_a, "hello")
        assert await service.fetch_messages(conversation.id, limit=0) == []
        assert await service.fetch_messages(conversation.id, limit=-1) == []

    @pytest.mark.asyncio
    async def test_send_marks_match_as_messaged(self, container, service, user_a, user_b):
        await container.swipes.record(user_a, user_b, "like")
        outcome = await container.swipes.record(user_b, user_a, "like")
        conversation_id = PairKey.of(user_a, user_b).conversation_id
        assert not outcome.match.has_messaged

        await _send(service, conversation_id, user_a)
        match = await container.matches.find_active_match(user_a, user_b)
        assert match.has_messaged
        assert match.last_message_at is not None

    @pytest.mark.asyncio
    async def test_match_bookkeeping_failure_is_swallowed(self, service):
        # Identical ids make the pair invalid; the wrapper logs and returns None.
        assert await service.mark_match_as_messaged("alice", "alice") is None

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_message(self, container, service, user_a, user_b, monkeypatch):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        monkeypatch.setattr(
            container.feed, "publish", AsyncMock(side_effect=ConnectionError("redis down"))
        )
        await _send(service, conversation.id, user_a, "still stored")
        assert [m.content for m in await service.fetch_messages(conversation.id)] == ["still stored"]


class TestReadState:
    """Tests for marking messages read."""

    @pytest.mark.asyncio
    async def test_mark_as_read(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        await _send(service, conversation.id, user_a, "one")
        await _send(service, conversation.id, user_a, "two")
        await _send(service, conversation.id, user_b, "reply")

        assert await service.mark_as_read(conversation.id, user_b) == 2
        refreshed = await service.fetch_conversation(conversation.id)
        assert refreshed.unread_count[user_b] == 0
        assert refreshed.unread_count[user_a] == 1

        messages = await service.fetch_messages(conversation.id)
        assert [m.is_read for m in messages] == [True, True, False]

    @pytest.mark.asyncio
    async def test_mark_as_read_is_idempotent(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        await _send(service, conversation.id, user_a)
        assert await service.mark_as_read(conversation.id, user_b) == 1
        assert await service.mark_as_read(conversation.id, user_b) == 0

    @pytest.mark.asyncio
    async def test_mark_as_read_outsider(self, service, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        with pytest.raises(NotAParticipantError):
            await service.mark_as_read(conversation.id, "creator-mallory")
        with pytest.raises(ConversationNotFoundError):
            await service.mark_as_read("dm_missing", user_a)


class TestLiveSnapshots:
    """Tests for live message snapshots and cancellation."""

    @pytest.mark.asyncio
    async def test_subscribe_delivers_full_snapshots(self, service, feed, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        await _send(service, conversation.id, user_a, "before")

        async with await service.subscribe(conversation.id) as subscription:
            first = await subscription.__anext__()
            assert first.sequence == 1
            assert [m.content for m in first.messages] == ["before"]

            await _send(service, conversation.id, user_b, "after")
            second = await asyncio.wait_for(subscription.__anext__(), timeout=2)
            assert second.sequence == 2
            assert [m.content for m in second.messages] == ["before", "after"]

        assert feed.subscriber_count(conversation_channel(conversation.id)) == 0

    @pytest.mark.asyncio
    async def test_listen_and_cancel(self, service, feed, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)
        received = []

        subscription = await service.listen(conversation.id, received.append)
        await _send(service, conversation.id, user_a, "hello")
        for _ in range(100):
            if len(received) >= 2:
                break
            await asyncio.sleep(0.01)

        assert [s.sequence for s in received] == [1, 2]
        assert [m.content for m in received[-1].messages] == ["hello"]

        await subscription.cancel()
        assert not subscription.active
        assert feed.subscriber_count(conversation_channel(conversation.id)) == 0

        await _send(service, conversation.id, user_a, "unseen")
        await asyncio.sleep(0.05)
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_failing_listener_releases_stream(self, service, feed, user_a, user_b):
        conversation = await service.get_or_create_conversation(user_a, user_b)

        async def explode(snapshot):
            raise RuntimeError("client went away")

        subscription = await service.listen(conversation.id, explode)
        for _ in range(100):
            if not subscription.active:
                break
            await asyncio.sleep(0.01)

        assert not subscription.active
        assert feed.subscriber_count(conversation_channel(conversation.id)) == 0
        await subscription.cancel()
