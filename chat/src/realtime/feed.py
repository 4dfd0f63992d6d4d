"""In-process change feed.

Services publish right after their writes commit, so each subscription sees
a conversation's events in commit order. Delivery is at-least-once from the
consumer's point of view: a reconnecting consumer re-fetches history and may
see the same message both in the fetch and on the stream.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable

from config import settings
from core.identity import Actor, require_actor
from realtime.events import ChangeEvent, EventKind

logger = logging.getLogger(__name__)

EventFilter = Callable[[ChangeEvent], bool]


class Subscription:
    """Handle for one open view. Iterate it for events; close it on teardown."""

    def __init__(self, feed: ChangeFeed, sub_id: int, accepts: EventFilter, maxsize: int):
        self._feed = feed
        self.id = sub_id
        self._accepts = accepts
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.overflowed = False

    def _offer(self, event: ChangeEvent) -> bool:
        if self.closed or not self._accepts(event):
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Subscription %s overflowed; consumer must re-fetch", self.id)
            self.overflowed = True
            self.close()
            return False
        return True

    @property
    def pending(self) -> int:
        return 0 if self.closed else self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        # Wake a pending get(); whatever was buffered is no longer trustworthy
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)
        logger.debug("Subscription %s closed", self.id)

    async def get(self) -> ChangeEvent | None:
        """Next event, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ChangeFeed:
    def __init__(self, queue_size: int | None = None) -> None:
        self._queue_size = queue_size or settings.SUBSCRIPTION_QUEUE_SIZE
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe_conversation(
        self, actor: Actor | None, conversation_id: str, *, include_own: bool = False
    ) -> Subscription:
        """Detail view: new messages of one conversation.

        The caller has already checked that the actor takes part in it.
        """
        viewer = require_actor(actor).id
        conversation_id = str(conversation_id)

        def accepts(event: ChangeEvent) -> bool:
            if event.kind is not EventKind.MESSAGE_CREATED:
                return False
            if event.conversation_id != conversation_id:
                return False
            return include_own or event.sender_id != viewer

        return self._register(accepts)

    def subscribe_participant(self, actor: Actor | None) -> Subscription:
        """List view: every event touching a conversation the actor is part of."""
        viewer = require_actor(actor).id
        return self._register(lambda event: event.concerns(viewer))

    def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription._offer(event):
                delivered += 1
        return delivered

    def backlog(self) -> int:
        """Events buffered across all open subscriptions and not yet consumed."""
        return sum(s.pending for s in self._subscriptions.values())

    def close_all(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.close()

    def _register(self, accepts: EventFilter) -> Subscription:
        subscription = Subscription(self, next(self._ids), accepts, self._queue_size)
        self._subscriptions[subscription.id] = subscription
        logger.debug("Subscription %s opened", subscription.id)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)


change_feed = ChangeFeed()
