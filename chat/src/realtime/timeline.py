from __future__ import annotations

import bisect
import logging
from typing import Any

from core.identity import Actor
from realtime.events import ChangeEvent, EventKind
from realtime.feed import ChangeFeed, Subscription

logger = logging.getLogger(__name__)


def _order_key(message: dict[str, Any]) -> tuple[str, str]:
    return message["created_at"], message["id"]


class ConversationTimeline:
    """Local, de-duplicated view of one conversation's messages.

    Messages are kept in (created_at, id) order. Applying a message that is
    already present is a no-op, so replays and self-echoes are harmless.
    """

    def __init__(self, conversation_id: str, messages: list[dict[str, Any]] | None = None):
        self.conversation_id = str(conversation_id)
        self._messages: list[dict[str, Any]] = []
        self._keys: list[tuple[str, str]] = []
        self._ids: set[str] = set()
        if messages:
            self.reset(messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    @property
    def messages(self) -> list[dict[str, Any]]:
        return list(self._messages)

    @property
    def last_id(self) -> str | None:
        return self._messages[-1]["id"] if self._messages else None

    def apply(self, message: dict[str, Any]) -> bool:
        if message.get("conversation_id") != self.conversation_id:
            return False
        if message["id"] in self._ids:
            return False
        key = _order_key(message)
        index = bisect.bisect_right(self._keys, key)
        self._keys.insert(index, key)
        self._messages.insert(index, message)
        self._ids.add(message["id"])
        return True

    def apply_event(self, event: ChangeEvent) -> bool:
        if event.kind is not EventKind.MESSAGE_CREATED:
            return False
        return self.apply(event.data)

    def reset(self, messages: list[dict[str, Any]]) -> None:
        """Replace local state with an authoritative fetch."""
        self._messages = []
        self._keys = []
        self._ids = set()
        for message in messages:
            self.apply(message)


async def open_timeline(
    conversations,
    messages,
    feed: ChangeFeed,
    actor: Actor | None,
    conversation_id: str,
    *,
    limit: int | None = None,
) -> tuple[ConversationTimeline, Subscription]:
    """Open (or re-open after a disconnect) a conversation view.

    The subscription is taken out before history is fetched, so nothing
    committed in between is missed; anything seen twice is absorbed by the
    timeline.
    """
    conversation = await conversations.get_conversation(actor, conversation_id)
    subscription = feed.subscribe_conversation(actor, str(conversation.id))
    try:
        history, _ = await messages.get_history(actor, conversation.id, limit=limit)
    except Exception:
        subscription.close()
        raise
    timeline = ConversationTimeline(str(conversation.id), [m.to_dict() for m in history])
    logger.debug(
        "Timeline for %s opened with %s messages", conversation.id, len(timeline)
    )
    return timeline, subscription
