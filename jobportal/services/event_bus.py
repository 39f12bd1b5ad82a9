from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
import json
import logging
from typing import Any, Iterable, Optional

import redis.asyncio as redis

from jobportal.core.config import settings

logger = logging.getLogger("jp.notifications")

SUBSCRIBER_BACKLOG = 200


@dataclass(frozen=True)
class ApplicationNotification:
    """What the admin console sees when an application changes."""

    event_id: int
    applicant_id: int
    action_type: str
    application_id: Optional[int] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    occurred_at: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> ApplicationNotification:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Notification payload must be an object")
        known = {name: data.get(name) for name in cls.__dataclass_fields__}
        return cls(**known)

    @classmethod
    def from_event(cls, event: Any) -> ApplicationNotification:
        created = getattr(event, "created_at", None) or datetime.utcnow()
        return cls(
            event_id=event.event_id,
            applicant_id=event.applicant_id,
            action_type=event.action_type,
            application_id=event.application_id,
            from_status=event.from_status,
            to_status=event.to_status,
            occurred_at=created.isoformat(),
        )


class _Subscription:
    def __init__(self, actions: Iterable[str] | None) -> None:
        self.queue: asyncio.Queue[ApplicationNotification] = asyncio.Queue(maxsize=SUBSCRIBER_BACKLOG)
        self.actions = frozenset(a.strip().lower() for a in actions) if actions else None

    def wants(self, notification: ApplicationNotification) -> bool:
        return self.actions is None or notification.action_type.lower() in self.actions

    def offer(self, notification: ApplicationNotification) -> None:
        if self.queue.full():
            # Slow consumer: its oldest notification goes.
            self.queue.get_nowait()
        self.queue.put_nowait(notification)


class NotificationBus:
    """
    Delivers application notifications to admin console streams.
    With a Redis URL every worker process publishes to one channel and each relays it to
    its own subscribers; without one delivery stays in-process.
    """

    def __init__(self, redis_url: str | None = None, channel: str | None = None) -> None:
        self._redis_url = (redis_url if redis_url is not None else settings.redis_url).strip()
        self._channel = channel or settings.notification_channel
        self._subscriptions: dict[asyncio.Queue, _Subscription] = {}
        self._lock = asyncio.Lock()
        self._redis: redis.Redis | None = None
        self._relay_task: asyncio.Task | None = None

    @property
    def uses_redis(self) -> bool:
        return bool(self._redis_url)

    async def _deliver(self, notification: ApplicationNotification) -> None:
        async with self._lock:
            for subscription in self._subscriptions.values():
                if subscription.wants(notification):
                    subscription.offer(notification)

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self._redis_url, decode_responses=True)
        if self._relay_task is None or self._relay_task.done():
            self._relay_task = asyncio.create_task(self._relay())
        return self._redis

    async def _relay(self) -> None:
        pubsub = self._client().pubsub()
        await pubsub.subscribe(self._channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    notification = ApplicationNotification.from_json(message["data"])
                except (TypeError, ValueError) as exc:
                    logger.warning("notification_malformed", extra={"channel": self._channel, "error": str(exc)})
                    continue
                await self._deliver(notification)
        finally:
            await pubsub.close()

    async def subscribe(self, actions: Iterable[str] | None = None) -> asyncio.Queue[ApplicationNotification]:
        subscription = _Subscription(actions)
        async with self._lock:
            self._subscriptions[subscription.queue] = subscription
        if self.uses_redis:
            self._client()
        return subscription.queue

    async def unsubscribe(self, queue: asyncio.Queue[ApplicationNotification]) -> None:
        async with self._lock:
            self._subscriptions.pop(queue, None)

    async def publish(self, notification: ApplicationNotification) -> None:
        if self.uses_redis:
            try:
                await self._client().publish(self._channel, notification.to_json())
                return
            except redis.RedisError as exc:
                logger.warning(
                    "notification_publish_failed",
                    extra={"channel": self._channel, "action_type": notification.action_type, "error": str(exc)},
                )
        await self._deliver(notification)


notification_bus = NotificationBus()
