"""
Featur: Live-update change feed

Services publish small JSON events on named channels after a write commits;
subscribers open a stream on a channel and receive every event published
after the stream was opened.  Two implementations:

* ``InMemoryChangeFeed`` – per-subscriber ``asyncio.Queue`` fan-out inside
  one process (local runs, tests).
* ``RedisChangeFeed`` – Redis pub/sub, so that API replicas see each other's
  writes.

Events carry no payload the subscriber must trust; consumers re-read the
source of truth when an event arrives.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

import structlog

logger = structlog.get_logger("featur.realtime")


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_matches_channel(user_id: str) -> str:
    return f"user:{user_id}:matches"


class FeedStream(ABC):
    """Async iterator of events for one channel.  Always ``aclose()`` it."""

    channel: str

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self

    @abstractmethod
    async def __anext__(self) -> dict[str, Any]: ...

    @abstractmethod
    async def aclose(self) -> None: ...


class ChangeFeed(ABC):
    @abstractmethod
    async def publish(self, channel: str, event: dict[str, Any]) -> None: ...

    @abstractmethod
    async def open(self, channel: str) -> FeedStream:
        """Register a subscriber and return its stream.

        Registration is complete when this coroutine returns, so events
        published afterwards are never missed.
        """

    async def close(self) -> None:
        return None


# ──────────────────────────────────────────────────────────────────────
# In-process implementation
# ──────────────────────────────────────────────────────────────────────

_CLOSED = object()


class _QueueStream(FeedStream):
    def __init__(self, feed: "InMemoryChangeFeed", channel: str) -> None:
        self.channel = channel
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def _deliver(self, event: Any) -> None:
        self._queue.put_nowait(event)

    async def __anext__(self) -> dict[str, Any]:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._unregister(self)
        self._queue.put_nowait(_CLOSED)


class InMemoryChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._subscribers: dict[str, set[_QueueStream]] = {}

    async def publish(self, channel: str, event: dict[str, Any]) -> None:
        subscribers = list(self._subscribers.get(channel, ()))
        for stream in subscribers:
            stream._deliver(event)
        logger.debug("feed_published", channel=channel, subscribers=len(subscribers))

    async def open(self, channel: str) -> FeedStream:
        stream = _QueueStream(self, channel)
        self._subscribers.setdefault(channel, set()).add(stream)
        return stream

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def _unregister(self, stream: _QueueStream) -> None:
        streams = self._subscribers.get(stream.channel)
        if streams is None:
            return
        streams.discard(stream)
        if not streams:
            del self._subscribers[stream.channel]

    async def close(self) -> None:
        for streams in list(self._subscribers.values()):
            for stream in list(streams):
                await stream.aclose()


# ──────────────────────────────────────────────────────────────────────
# Redis pub/sub implementation
# ──────────────────────────────────────────────────────────────────────

class _RedisStream(FeedStream):
    _POLL_SECONDS = 1.0

    def __init__(self, pubsub, channel: str) -> None:
        self.channel = channel
        self._pubsub = pubsub
        self._closed = False

    async def __anext__(self) -> dict[str, Any]:
        while not self._closed:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self._POLL_SECONDS
            )
            if message is None or message.get("type") != "message":
                continue
            data = message["data"]
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                return json.loads(data)
            except json.JSONDecodeError:
                logger.warning("feed_event_undecodable", channel=self.channel)
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pubsub.unsubscribe(self.channel)
        await self._pubsub.aclose()


class RedisChangeFeed(ChangeFeed):
    def __init__(self, redis_client, owns_client: bool = True) -> None:
        self._redis = redis_client
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, url: str) -> "RedisChangeFeed":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=False))

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def publish(self, channel: str, event: dict[str, Any]) -> None:
        receivers = await self._redis.publish(channel, json.dumps(event, default=str))
        logger.debug("feed_published", channel=channel, subscribers=receivers)

    async def open(self, channel: str) -> FeedStream:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return _RedisStream(pubsub, channel)

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()
            logger.info("redis_closed")


def build_change_feed(redis_url: Optional[str]) -> ChangeFeed:
    if redis_url:
        logger.info("change_feed_selected", backend="redis")
        return RedisChangeFeed.from_url(redis_url)
    logger.info("change_feed_selected", backend="memory")
    return InMemoryChangeFeed()
