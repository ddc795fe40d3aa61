"""Publish/subscribe channel for daily aggregate changes."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date

from wellness_tracker.domain.records import DailyAggregate

_logger = logging.getLogger(__name__)

ChannelKey = tuple[str, date]

_QUEUE_SIZE = 16
_LATEST_LIMIT = 64


@dataclass(eq=False)
class AggregateSubscription:
    """Async iterator over aggregate updates for one owner and day."""

    key: ChannelKey
    channel: "AggregateChannel"
    queue: asyncio.Queue = field(
        default_factory=lambda: asyncio.Queue(maxsize=_QUEUE_SIZE)
    )
    closed: bool = False

    def __aiter__(self) -> "AggregateSubscription":
        return self

    async def __anext__(self) -> DailyAggregate:
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def deliver(self, aggregate: DailyAggregate | None) -> None:
        """Queue an update, dropping the oldest one when the queue is full."""
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(aggregate)

    def close(self) -> None:
        """Detach from the channel and end iteration."""
        if self.closed:
            return
        self.closed = True
        self.channel.detach(self)
        self.deliver(None)


@dataclass
class AggregateChannel:
    """Keeps the latest aggregate per (owner, day) and fans out updates.

    Only the most recently published days are remembered; days with live
    subscribers are never forgotten.
    """

    _latest: dict[ChannelKey, DailyAggregate] = field(default_factory=dict)
    _subscribers: dict[ChannelKey, list[AggregateSubscription]] = field(
        default_factory=dict
    )

    def subscribe(self, owner_id: str, day: date) -> AggregateSubscription:
        """Subscribe to a day; the latest known value is delivered first."""
        key = (owner_id, day)
        subscription = AggregateSubscription(key=key, channel=self)
        self._subscribers.setdefault(key, []).append(subscription)
        latest = self._latest.get(key)
        if latest is not None:
            subscription.deliver(latest)
        return subscription

    def publish(self, aggregate: DailyAggregate) -> None:
        """Record the aggregate and notify its subscribers without blocking."""
        key = (aggregate.owner_id, aggregate.day)
        self._latest.pop(key, None)
        self._latest[key] = aggregate
        self._trim_latest()
        subscribers = list(self._subscribers.get(key, []))
        for subscription in subscribers:
            subscription.deliver(aggregate)
        _logger.debug(
            "Published aggregate: owner=%s day=%s subscribers=%s",
            aggregate.owner_id,
            aggregate.day,
            len(subscribers),
        )

    def latest(self, owner_id: str, day: date) -> DailyAggregate | None:
        """Return the last published aggregate for a day, if any."""
        return self._latest.get((owner_id, day))

    def detach(self, subscription: AggregateSubscription) -> None:
        """Remove a subscription from the channel."""
        subscribers = self._subscribers.get(subscription.key, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            self._subscribers.pop(subscription.key, None)

    def _trim_latest(self) -> None:
        while len(self._latest) > _LATEST_LIMIT:
            stale = next(
                (key for key in self._latest if key not in self._subscribers), None
            )
            if stale is None:
                return
            del self._latest[stale]

    def publish_zeroed(self, owner_id: str) -> None:
        """Publish zero-valued aggregates for every day the owner has watched."""
        keys = (*self._latest, *self._subscribers)
        days = {key[1] for key in keys if key[0] == owner_id}
        for day in sorted(days):
            self.publish(DailyAggregate.zeroed(owner_id, day))

    def forget_owner(self, owner_id: str) -> None:
        """Drop cached values and end every subscription of an owner."""
        for key in [key for key in self._latest if key[0] == owner_id]:
            del self._latest[key]
        for key in [key for key in self._subscribers if key[0] == owner_id]:
            for subscription in list(self._subscribers.get(key, [])):
                subscription.close()
