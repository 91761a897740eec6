from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Protocol

import redis

from app.core.config import settings

_LOG = logging.getLogger("app.events")

BANNER_CHANNEL = "/site/banner"

EVENT_STATUS_UPDATED = "status_updated"
EVENT_ARCHIVED = "archived"
EVENT_MOVE_TO_INBOX = "move_to_inbox"
EVENT_PUBLISHED = "published"
EVENT_BUMP = "bump"
EVENT_REMINDER = "reminder"


def topic_channel(topic_id: int) -> str:
    return f"/topic/{int(topic_id)}"


@dataclass
class PublishedEvent:
    channel: str
    payload: Any
    user_ids: list[int] | None = None


class EventPublisher(Protocol):
    def publish(self, channel: str, payload: Any, *, user_ids: list[int] | None = None) -> None:
        ...


@dataclass
class InMemoryEventPublisher:
    events: list[PublishedEvent] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def publish(self, channel: str, payload: Any, *, user_ids: list[int] | None = None) -> None:
        with self._lock:
            self.events.append(
                PublishedEvent(channel=channel, payload=payload, user_ids=list(user_ids) if user_ids else None)
            )

    def on(self, channel: str) -> list[PublishedEvent]:
        return [event for event in self.events if event.channel == channel]


class RedisEventPublisher:
    def __init__(self, client: redis.Redis, *, prefix: str = ""):
        self.client = client
        self.prefix = prefix

    def publish(self, channel: str, payload: Any, *, user_ids: list[int] | None = None) -> None:
        message = {"data": payload, "user_ids": list(user_ids) if user_ids else None}
        self.client.publish(f"{self.prefix}{channel}", json.dumps(message, default=str))


def publish_safely(publisher: EventPublisher, channel: str, payload: Any, *, user_ids: list[int] | None = None) -> bool:
    # Publish failures never propagate to the status change.
    try:
        publisher.publish(channel, payload, user_ids=user_ids)
        return True
    except Exception:
        _LOG.warning("event_publish_failed channel=%s", channel, exc_info=True)
        return False


class EventBuffer:
    """Holds events until the transaction that produced them has committed."""

    def __init__(self):
        self.pending: list[PublishedEvent] = []

    def publish(self, channel: str, payload: Any, *, user_ids: list[int] | None = None) -> None:
        self.pending.append(PublishedEvent(channel=channel, payload=payload, user_ids=list(user_ids) if user_ids else None))

    def flush(self, publisher: EventPublisher | None = None) -> int:
        target = publisher or get_event_publisher()
        events, self.pending = self.pending, []
        for event in events:
            publish_safely(target, event.channel, event.payload, user_ids=event.user_ids)
        return len(events)

    def discard(self) -> None:
        if self.pending:
            _LOG.info("events_discarded count=%s", len(self.pending))
        self.pending = []


_cached_publisher: EventPublisher | None = None


def _build_publisher() -> EventPublisher:
    if str(settings.EVENT_PUBLISHER or "").strip().lower() != "redis":
        return InMemoryEventPublisher()
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=0.4,
            socket_connect_timeout=0.4,
        )
        client.ping()
        return RedisEventPublisher(client, prefix=settings.EVENT_CHANNEL_PREFIX)
    except Exception:
        _LOG.warning("Redis publisher unavailable; fallback to in-memory publisher")
        return InMemoryEventPublisher()


def get_event_publisher() -> EventPublisher:
    global _cached_publisher
    if _cached_publisher is None:
        _cached_publisher = _build_publisher()
    return _cached_publisher


def set_event_publisher_for_tests(publisher: EventPublisher | None) -> None:
    global _cached_publisher
    _cached_publisher = publisher
