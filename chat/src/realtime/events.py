from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    MESSAGE_CREATED = "message.created"
    CONVERSATION_CREATED = "conversation.created"
    CONVERSATION_UPDATED = "conversation.updated"


@dataclass(frozen=True)
class ChangeEvent:
    kind: EventKind
    conversation_id: str
    customer_id: str
    vendor_id: str
    data: dict[str, Any] = field(default_factory=dict)
    sender_id: str | None = None  # only set for message events

    def concerns(self, participant_id: str) -> bool:
        return participant_id in (self.customer_id, self.vendor_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "conversation_id": self.conversation_id,
            "data": self.data,
        }

    @classmethod
    def message_created(cls, conversation, message) -> ChangeEvent:
        return cls(
            kind=EventKind.MESSAGE_CREATED,
            conversation_id=str(conversation.id),
            customer_id=conversation.customer_id,
            vendor_id=conversation.vendor_id,
            data=message.to_dict(),
            sender_id=message.sender_id,
        )

    @classmethod
    def conversation_changed(cls, conversation, *, created: bool = False) -> ChangeEvent:
        kind = EventKind.CONVERSATION_CREATED if created else EventKind.CONVERSATION_UPDATED
        return cls(
            kind=kind,
            conversation_id=str(conversation.id),
            customer_id=conversation.customer_id,
            vendor_id=conversation.vendor_id,
            data=conversation.to_dict(),
        )
