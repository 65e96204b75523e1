"""
Best-effort push channel to connected presentation clients.

Notifications are dropped when nobody is subscribed; a client that reconnects
pulls the full state instead. Each subscriber has a bounded queue and loses
its oldest pending notification on overflow.
"""

from __future__ import annotations

import asyncio

from tabq.config import SUBSCRIBER_QUEUE_MAX
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter
from tabq.state.events import Notification

logger = get_logger(__name__)


class Subscription:
    def __init__(self, maxsize: int) -> None:
        self.queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, notification: Notification) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            counter("sync.subscriber_overflow")
        self.queue.put_nowait(notification)

    async def next(self) -> Notification:
        return await self.queue.get()


class NotificationHub:
    def __init__(self, queue_max: int = SUBSCRIBER_QUEUE_MAX) -> None:
        self.queue_max = queue_max
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self.queue_max)
        self._subscribers.add(subscription)
        logger.info("Presentation client subscribed (%d connected)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)
        logger.info("Presentation client unsubscribed (%d connected)", len(self._subscribers))

    def publish(self, notification: Notification) -> int:
        """
        Fan a notification out to every subscriber.

        Returns:
            Number of subscribers it was queued for

        Side Effects:
            - Increments sync.notification_dropped when nobody is connected
        """
        if not self._subscribers:
            counter("sync.notification_dropped")
            return 0
        for subscription in self._subscribers:
            subscription.offer(notification)
        counter(f"sync.notification.{notification.type}")
        return len(self._subscribers)
