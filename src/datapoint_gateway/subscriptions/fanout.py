"""Subscription fan-out: best-effort delivery of events to connected listeners.

There is no persistence and no replay: a listener sees only events
published while it is subscribed.  Each listener owns a bounded queue; when
it is full the event is dropped for that listener only.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

from datapoint_gateway._internal.logging import get_logger

logger = get_logger("subscriptions")

_CLOSED = object()


class Subscription:
    """A listener on one channel.  Iterate it to receive payloads.

    Parameters:
        hub:       Owning hub.
        channel:   Channel name, e.g. ``"onCreateDataPoint"``.
        filters:   Optional ``{field: value}`` equality filters on the payload.
        max_queue: Maximum undelivered events held for this listener.
    """

    def __init__(
        self,
        hub: SubscriptionHub,
        channel: str,
        *,
        filters: dict[str, Any] | None = None,
        max_queue: int = 100,
    ) -> None:
        self.subscription_id = uuid.uuid4().hex
        self.channel = channel
        self.filters = dict(filters or {})
        self.dropped = 0
        self.delivered = 0
        self._hub = hub
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_queue)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, payload: dict[str, Any]) -> bool:
        return all(payload.get(k) == v for k, v in self.filters.items())

    def offer(self, payload: dict[str, Any]) -> bool:
        """Enqueue *payload* without blocking.  Returns ``False`` if dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        self.delivered += 1
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self, timeout: float | None = None) -> dict[str, Any]:
        """Wait for the next payload.

        Raises:
            StopAsyncIteration: If the subscription is closed and drained.
            TimeoutError: If *timeout* elapses first.
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self.get()

    def close(self) -> None:
        """Stop receiving events.  Payloads already queued can still be read."""
        if self._closed:
            return
        self._closed = True
        self._hub.unsubscribe(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # a full queue means no reader is blocked waiting
            pass


class SubscriptionHub:
    """Tracks listeners per channel and fans published events out to them."""

    def __init__(self, *, max_queue: int = 100) -> None:
        self._max_queue = max_queue
        self._channels: dict[str, dict[str, Subscription]] = {}

    def subscribe(
        self,
        channel: str,
        *,
        filters: dict[str, Any] | None = None,
        max_queue: int | None = None,
    ) -> Subscription:
        subscription = Subscription(
            self,
            channel,
            filters=filters,
            max_queue=max_queue or self._max_queue,
        )
        self._channels.setdefault(channel, {})[subscription.subscription_id] = subscription
        logger.info(
            "Subscription created",
            subscription_id=subscription.subscription_id,
            channel=channel,
            filters=subscription.filters,
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        listeners = self._channels.get(subscription.channel)
        if not listeners or subscription.subscription_id not in listeners:
            return False
        del listeners[subscription.subscription_id]
        if not listeners:
            del self._channels[subscription.channel]
        logger.info(
            "Subscription removed",
            subscription_id=subscription.subscription_id,
            channel=subscription.channel,
        )
        if not subscription.closed:
            subscription.close()
        return True

    def publish(self, channel: str, payload: dict[str, Any]) -> int:
        """Deliver *payload* to current listeners of *channel*.  Returns how many got it."""
        delivered = 0
        for subscription in list(self._channels.get(channel, {}).values()):
            if not subscription.matches(payload):
                continue
            if subscription.offer(payload):
                delivered += 1
            else:
                logger.warning(
                    "Dropped event for slow listener",
                    subscription_id=subscription.subscription_id,
                    channel=channel,
                )
        return delivered

    def listener_count(self, channel: str) -> int:
        return len(self._channels.get(channel, {}))

    def channels(self) -> list[str]:
        return sorted(self._channels)
