"""
Featur: Conversation Service

Conversations, messages, unread counters and live message snapshots.

* 1:1 conversations have a deterministic id derived from the pair key, and
  are created with a conditional insert.  Any number of concurrent
  ``get_or_create_conversation(a, b)`` calls therefore end up with the same
  conversation.
* ``send_message`` stores the message, updates the conversation summary and
  bumps the recipients' unread counters in one transaction.  The counter is
  incremented in SQL, never read-modify-written in Python.
* Live updates: after every committed write a small event is published on
  ``conversation:<id>``.  Subscribers re-read the newest page of messages and
  receive it as a full ``MessageSnapshot``.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from featur.database import insert_ignoring_conflicts
from featur.errors import (
    ConversationNotFoundError,
    InvalidIdentifierError,
    InvalidMessageError,
    NotAParticipantError,
)
from featur.models.conversation import (
    Conversation as ConversationRow,
    ConversationParticipant,
    Message as MessageRow,
)
from featur.models.match import Match as MatchRow
from featur.realtime import ChangeFeed, FeedStream, conversation_channel
from featur.schemas.conversation import (
    Conversation,
    Message,
    MessageCreate,
    MessageSnapshot,
)
from featur.services.telemetry import Telemetry
from featur.utils.best_effort import best_effort
from featur.utils.pairs import PairKey
from featur.utils.timeutil import ensure_utc, utcnow

logger = structlog.get_logger("featur.conversation_service")

MEDIA_ONLY_PREVIEW = "Sent an attachment"

SnapshotHandler = Callable[[MessageSnapshot], Union[None, Awaitable[None]]]


# ──────────────────────────────────────────────────────────────────────────────
# Row → schema helpers
# ──────────────────────────────────────────────────────────────────────────────

def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id,
        participant_ids=[p.user_id for p in row.participants],
        last_message=row.last_message,
        last_message_at=ensure_utc(row.last_message_at),
        unread_count={p.user_id: p.unread_count for p in row.participants},
        is_group_chat=row.is_group_chat,
        group_name=row.group_name,
        created_at=ensure_utc(row.created_at),
    )


def _to_message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        sender_id=row.sender_id,
        recipient_id=row.recipient_id,
        content=row.content,
        media_url=row.media_url,
        sent_at=ensure_utc(row.sent_at),
        read_at=ensure_utc(row.read_at),
    )


# ──────────────────────────────────────────────────────────────────────────────
# Live subscription
# ──────────────────────────────────────────────────────────────────────────────

class MessageSubscription:
    """Async stream of full message snapshots for one conversation.

    The first snapshot is produced immediately; afterwards one snapshot is
    produced per change event.  Iterate it directly::

        async with service.subscribe(conversation_id) as sub:
            async for snapshot in sub:
                render(snapshot.messages)

    or hand a callback to ``ConversationService.listen``.  Either way the
    subscription must be cancelled (or its context exited) when the consumer
    goes away, which releases the underlying feed stream.
    """

    def __init__(
        self,
        conversation_id: str,
        stream: FeedStream,
        fetch: Callable[[], Awaitable[list[Message]]],
    ) -> None:
        self.conversation_id = conversation_id
        self._stream = stream
        self._fetch = fetch
        self._sequence = 0
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return not self._cancelled

    @property
    def sequence(self) -> int:
        return self._sequence

    def __aiter__(self) -> "MessageSubscription":
        return self

    async def __anext__(self) -> MessageSnapshot:
        if self._cancelled:
            raise StopAsyncIteration
        if self._sequence > 0:
            try:
                await self._stream.__anext__()
            except StopAsyncIteration:
                self._cancelled = True
                raise
        if self._cancelled:
            raise StopAsyncIteration

        messages = await self._fetch()
        self._sequence += 1
        return MessageSnapshot(
            conversation_id=self.conversation_id,
            sequence=self._sequence,
            messages=messages,
        )

    async def __aenter__(self) -> "MessageSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cancel()

    def _start(self, on_update: SnapshotHandler) -> None:
        self._task = asyncio.create_task(self._pump(on_update))

    async def _pump(self, on_update: SnapshotHandler) -> None:
        try:
            async for snapshot in self:
                result = on_update(snapshot)
                if inspect.isawaitable(result):
                    await result
        except Exception as exc:
            logger.error(
                "message_listener_failed",
                conversation_id=self.conversation_id,
                error=str(exc),
            )
            self._cancelled = True
            await self._stream.aclose()

    async def cancel(self) -> None:
        """Stop delivering snapshots and release the feed stream."""
        self._cancelled = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._stream.aclose()
        logger.debug("message_subscription_cancelled", conversation_id=self.conversation_id)


# ──────────────────────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────────────────────

class ConversationService:
    """Conversation lifecycle, messaging and read state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        telemetry: Optional[Telemetry] = None,
        page_size: int = 50,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed
        self._telemetry = telemetry or Telemetry()
        self._page_size = page_size
        logger.info("conversation_service_initialised", page_size=page_size)

    # ── Helpers ───────────────────────────────────────────────────────────

    @staticmethod
    async def ensure_direct(
        session: AsyncSession,
        pair: PairKey,
    ) -> tuple[str, bool]:
        """Create the pair's 1:1 conversation inside ``session`` if missing.

        Returns the conversation id and whether this call created it.
        """
        now = utcnow()
        conversation_id = pair.conversation_id
        result = await session.execute(
            insert_ignoring_conflicts(session, ConversationRow).values(
                id=conversation_id,
                is_group_chat=False,
                last_message_at=now,
                created_at=now,
            )
        )
        created = result.rowcount == 1
        for user_id in pair.participants():
            await session.execute(
                insert_ignoring_conflicts(session, ConversationParticipant).values(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    unread_count=0,
                )
            )
        return conversation_id, created

    @staticmethod
    async def _load(session: AsyncSession, conversation_id: str) -> ConversationRow:
        row = await session.get(ConversationRow, conversation_id, populate_existing=True)
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return row

    async def _publish(self, conversation_id: str, event: dict[str, Any]) -> None:
        event = {"conversationId": conversation_id, **event}
        try:
            await self._feed.publish(conversation_channel(conversation_id), event)
        except Exception as exc:
            # The write is committed; subscribers will catch up on the next event.
            logger.warning(
                "conversation_event_publish_failed",
                conversation_id=conversation_id,
                error=str(exc),
            )

    # ── Conversations ─────────────────────────────────────────────────────

    async def get_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        """Return the 1:1 conversation between two users, creating it once."""
        pair = PairKey.of(user_a, user_b)
        async with self._session_factory() as session, session.begin():
            conversation_id, created = await self.ensure_direct(session, pair)
            row = await self._load(session, conversation_id)
            conversation = _to_conversation(row)

        if created:
            logger.info(
                "conversation_created",
                conversation_id=conversation_id,
                participants=list(pair.participants()),
            )
        return conversation

    async def create_group_conversation(
        self,
        creator_id: str,
        participant_ids: list[str],
        group_name: str,
    ) -> Conversation:
        if not creator_id:
            raise InvalidIdentifierError("creator_id must be non-empty")
        members = list(dict.fromkeys([creator_id, *participant_ids]))
        if any(not m for m in members):
            raise InvalidIdentifierError("Participant ids must be non-empty")
        if len(members) < 2:
            raise InvalidIdentifierError("A group needs at least two distinct members")
        name = (group_name or "").strip()
        if not name:
            raise InvalidMessageError("Group name must be non-empty")

        now = utcnow()
        conversation_id = uuid.uuid4().hex
        async with self._session_factory() as session, session.begin():
            session.add(
                ConversationRow(
                    id=conversation_id,
                    is_group_chat=True,
                    group_name=name,
                    last_message_at=now,
                    created_at=now,
                    participants=[
                        ConversationParticipant(user_id=m, unread_count=0)
                        for m in members
                    ],
                )
            )
            await session.flush()
            row = await self._load(session, conversation_id)
            conversation = _to_conversation(row)

        logger.info(
            "group_conversation_created",
            conversation_id=conversation_id,
            member_count=len(members),
        )
        return conversation

    async def fetch_conversation(self, conversation_id: str) -> Optional[Conversation]:
        async with self._session_factory() as session:
            row = await session.get(ConversationRow, conversation_id)
            return _to_conversation(row) if row else None

    async def fetch_conversations(self, user_id: str) -> list[Conversation]:
        """Conversations the user participates in, most recent activity first."""
        if not user_id:
            raise InvalidIdentifierError("user_id must be non-empty")
        async with self._session_factory() as session:
            member_of = select(ConversationParticipant.conversation_id).where(
                ConversationParticipant.user_id == user_id
            )
            result = await session.execute(
                select(ConversationRow)
                .where(ConversationRow.id.in_(member_of))
                .order_by(ConversationRow.last_message_at.desc(), ConversationRow.id)
            )
            return [_to_conversation(row) for row in result.scalars()]

    # ── Messages ──────────────────────────────────────────────────────────

    async def send_message(self, conversation_id: str, message: MessageCreate) -> Message:
        """Store a message and update conversation state atomically.

        Parameters
        ----------
        conversation_id:
            Target conversation.
        message:
            Sender, optional recipient, content and optional media URL.  For
            1:1 conversations the recipient defaults to the other participant.

        Returns
        -------
        Message
            The stored message with its server-assigned id and ``sentAt``.
        """
        if not message.sender_id:
            raise InvalidIdentifierError("sender_id must be non-empty")
        content = message.content or ""
        if not content.strip() and not message.media_url:
            raise InvalidMessageError("Message needs content or media")

        log = logger.bind(conversation_id=conversation_id, sender_id=message.sender_id)
        now = utcnow()

        async with self._session_factory() as session, session.begin():
            row = await self._load(session, conversation_id)
            members = {p.user_id for p in row.participants}
            if message.sender_id not in members:
                raise NotAParticipantError(
                    f"{message.sender_id} is not in conversation {conversation_id}"
                )

            if row.is_group_chat:
                recipient_id = message.recipient_id or ""
                if recipient_id and recipient_id not in members:
                    raise NotAParticipantError(f"{recipient_id} is not in this group")
            else:
                others = members - {message.sender_id}
                expected = next(iter(others), "")
                recipient_id = message.recipient_id or expected
                if recipient_id != expected:
                    raise NotAParticipantError(
                        f"{recipient_id} is not the other participant"
                    )

            stored = MessageRow(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                sender_id=message.sender_id,
                recipient_id=recipient_id,
                content=content,
                media_url=message.media_url,
                sent_at=now,
            )
            session.add(stored)

            row.last_message = content if content.strip() else MEDIA_ONLY_PREVIEW
            row.last_message_at = now

            await session.execute(
                update(ConversationParticipant)
                .where(
                    ConversationParticipant.conversation_id == conversation_id,
                    ConversationParticipant.user_id != message.sender_id,
                )
                .values(unread_count=ConversationParticipant.unread_count + 1)
            )
            sent = _to_message(stored)

        log.info("message_sent", message_id=sent.id, group=row.is_group_chat)

        await self._publish(conversation_id, {"type": "message", "messageId": sent.id})
        if not row.is_group_chat:
            await self.mark_match_as_messaged(message.sender_id, recipient_id)
        self._telemetry.track(
            "message_sent",
            {
                "conversation_id": conversation_id,
                "sender_id": message.sender_id,
                "has_media": bool(message.media_url),
            },
        )
        return sent

    async def mark_as_read(self, conversation_id: str, user_id: str) -> int:
        """Reset the user's unread counter and stamp ``readAt`` on messages
        addressed to them.  Idempotent; returns how many messages were newly
        stamped."""
        if not user_id:
            raise InvalidIdentifierError("user_id must be non-empty")
        now = utcnow()

        async with self._session_factory() as session, session.begin():
            member = await session.get(ConversationParticipant, (conversation_id, user_id))
            if member is None:
                await self._load(session, conversation_id)
                raise NotAParticipantError(f"{user_id} is not in conversation {conversation_id}")
            member.unread_count = 0
            result = await session.execute(
                update(MessageRow)
                .where(
                    MessageRow.conversation_id == conversation_id,
                    MessageRow.recipient_id == user_id,
                    MessageRow.read_at.is_(None),
                )
                .values(read_at=now)
            )
            stamped = result.rowcount or 0

        logger.info(
            "conversation_marked_read",
            conversation_id=conversation_id,
            user_id=user_id,
            stamped=stamped,
        )
        if stamped:
            await self._publish(conversation_id, {"type": "read", "userId": user_id})
        return stamped

    async def fetch_messages(
        self,
        conversation_id: str,
        limit: Optional[int] = None,
    ) -> list[Message]:
        """Newest ``limit`` messages, returned oldest first."""
        limit = self._page_size if limit is None else limit
        if limit <= 0:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.sent_at.desc(), MessageRow.id.desc())
                .limit(limit)
            )
            newest_first = [_to_message(row) for row in result.scalars()]
        newest_first.reverse()
        return newest_first

    # ── Live snapshots ────────────────────────────────────────────────────

    async def subscribe(
        self,
        conversation_id: str,
        limit: Optional[int] = None,
    ) -> MessageSubscription:
        """Open a snapshot stream.  The feed stream is registered before the
        first snapshot is read, so no write can fall between the two."""
        stream = await self._feed.open(conversation_channel(conversation_id))

        async def _fetch() -> list[Message]:
            return await self.fetch_messages(conversation_id, limit)

        logger.debug("message_subscription_opened", conversation_id=conversation_id)
        return MessageSubscription(conversation_id, stream, _fetch)

    async def listen(
        self,
        conversation_id: str,
        on_update: SnapshotHandler,
        limit: Optional[int] = None,
    ) -> MessageSubscription:
        """Deliver snapshots to ``on_update`` (sync or async) until cancelled."""
        subscription = await self.subscribe(conversation_id, limit)
        subscription._start(on_update)
        return subscription

    # ── Match bookkeeping ─────────────────────────────────────────────────

    @best_effort("mark_match_as_messaged")
    async def mark_match_as_messaged(self, user_a: str, user_b: str) -> None:
        pair = PairKey.of(user_a, user_b)
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(MatchRow)
                .where(MatchRow.pair_key == pair.digest, MatchRow.is_active.is_(True))
                .values(has_messaged=True, last_message_at=utcnow())
            )
