"""Per-user realtime channel that tells the service when bookings changed.

The backend publishes on the topic exchange with routing keys of the form
``user-<id>.<event>``. Payloads are not relied upon: any booking event simply
triggers a re-fetch.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import aio_pika

from schedule_portal.config import EXCHANGE_NAME, RABBIT_URL

logger = logging.getLogger("bookings")

NEW_BOOKING = "new_booking"
BOOKING_UPDATED = "booking_updated"
BOOKING_EVENTS = (NEW_BOOKING, BOOKING_UPDATED)

EventHandler = Callable[[str], Awaitable[None]]


def channel_name(user_id: str) -> str:
    return f"user-{user_id}"


class RealtimeNotifier:
    def __init__(self, user_id: str, on_event: EventHandler,
                 url: Optional[str] = None, exchange_name: str = EXCHANGE_NAME):
        self.user_id = user_id
        self.on_event = on_event
        self.url = url or RABBIT_URL
        self.exchange_name = exchange_name
        self._connection = None
        self._queue = None
        self._consumer_tag = None

    @property
    def channel(self) -> str:
        return channel_name(self.user_id)

    @property
    def active(self) -> bool:
        return self._connection is not None

    async def subscribe(self) -> None:
        if self.active:
            return
        conn = await aio_pika.connect_robust(self.url)
        try:
            ch = await conn.channel()
            ex = await ch.declare_exchange(self.exchange_name, aio_pika.ExchangeType.TOPIC)
            queue = await ch.declare_queue(exclusive=True, auto_delete=True)
            for event in BOOKING_EVENTS:
                await queue.bind(ex, routing_key=f"{self.channel}.{event}")
            self._consumer_tag = await queue.consume(self._on_message)
        except Exception:
            await conn.close()
            raise

        self._connection = conn
        self._queue = queue
        logger.info("Subscribed to %s events=%s", self.channel, ",".join(BOOKING_EVENTS))

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        conn, self._connection = self._connection, None
        queue, self._queue = self._queue, None
        tag, self._consumer_tag = self._consumer_tag, None
        try:
            if queue is not None and tag is not None:
                await queue.cancel(tag)
        finally:
            await conn.close()
        logger.info("Unsubscribed from %s", self.channel)

    async def _on_message(self, message) -> None:
        async with message.process():
            event = (message.routing_key or "").rsplit(".", 1)[-1]
            await self.handle_event(event)

    async def handle_event(self, event: str) -> None:
        if event not in BOOKING_EVENTS:
            logger.debug("Ignoring event %s on %s", event, self.channel)
            return
        logger.info("Received %s on %s", event, self.channel)
        await self.on_event(event)


def feed_refresher(feed) -> EventHandler:
    """Event handler that invalidates ``feed`` and re-fetches it off the event loop."""

    async def _refresh(event: str) -> None:
        feed.invalidate()
        try:
            await asyncio.to_thread(feed.refresh)
        except Exception as e:
            # the next request re-fetches; keep consuming events
            logger.warning("Refetch after %s failed user=%s error=%s",
                           event, feed.user_id, type(e).__name__)

    return _refresh


class SubscriptionRegistry:
    def __init__(self):
        self._notifiers: dict[str, RealtimeNotifier] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, user_id: str) -> Optional[RealtimeNotifier]:
        return self._notifiers.get(user_id)

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    async def subscribe(self, notifier: RealtimeNotifier) -> RealtimeNotifier:
        # one connection per user even when subscribe requests overlap
        async with self._lock_for(notifier.user_id):
            existing = self._notifiers.get(notifier.user_id)
            if existing is not None and existing.active:
                return existing
            await notifier.subscribe()
            self._notifiers[notifier.user_id] = notifier
            return notifier

    async def unsubscribe(self, user_id: str) -> bool:
        async with self._lock_for(user_id):
            notifier = self._notifiers.pop(user_id, None)
            if notifier is None:
                return False
            await notifier.unsubscribe()
            return True

    async def close_all(self) -> None:
        for user_id in list(self._notifiers):
            await self.unsubscribe(user_id)
