"""
Opportunity event stream.

The scanner publishes each opportunity as it is found; any number of
consumers (store writer, live monitor, metrics) read from their own queue.
Publishing never blocks: when a subscriber falls behind, its oldest
undelivered event is dropped.
"""

import asyncio
from typing import AsyncIterator, List, Optional

from .types import Opportunity
from .utils import get_logger

logger = get_logger(__name__)


class OpportunitySubscription:
    """A subscriber's view of the bus."""

    def __init__(self, bus: "OpportunityBus", maxsize: int):
        self._bus = bus
        self.queue: "asyncio.Queue[Optional[Opportunity]]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, item: Optional[Opportunity]) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(item)

    async def get(self) -> Optional[Opportunity]:
        """Next opportunity, or None once the bus is closed."""
        return await self.queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[Opportunity]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Opportunity]:
        while True:
            item = await self.queue.get()
            if item is None:
                return
            yield item


class OpportunityBus:
    """Fan-out channel for ``onOpportunity`` events."""

    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._subscribers: List[OpportunitySubscription] = []
        self.published = 0

    def subscribe(self) -> OpportunitySubscription:
        subscription = OpportunitySubscription(self, self.maxsize)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: OpportunitySubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, opportunity: Opportunity) -> None:
        self.published += 1
        for subscription in self._subscribers:
            before = subscription.dropped
            subscription._offer(opportunity)
            if subscription.dropped > before:
                logger.warning("Opportunity subscriber is behind, dropped oldest event")

    def close(self) -> None:
        """Signal end of stream to every subscriber."""
        for subscription in list(self._subscribers):
            subscription._offer(None)
        self._subscribers.clear()
