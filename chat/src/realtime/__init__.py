from realtime.events import ChangeEvent, EventKind
from realtime.feed import ChangeFeed, Subscription, change_feed
from realtime.timeline import ConversationTimeline, open_timeline

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "ConversationTimeline",
    "EventKind",
    "Subscription",
    "change_feed",
    "open_timeline",
]
