import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from config import settings
from core.database import store_errors
from core.errors import (
    ConversationNotFound,
    InvalidParticipants,
    NotAParticipant,
    StoreUnavailable,
)
from core.identity import Actor, require_actor
from models.base import isoformat, utcnow
from models.conversation import Conversation
from models.message import Message
from realtime.events import ChangeEvent
from realtime.feed import ChangeFeed, change_feed
from services.preview import render_preview

logger = logging.getLogger(__name__)


def as_uuid(value: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def page_size(limit: int | None, default: int) -> int:
    if limit is None:
        return default
    return max(1, min(limit, settings.MAX_PAGE_SIZE))


def participant_of(participant_id: str):
    return or_(
        Conversation.customer_id == participant_id,
        Conversation.vendor_id == participant_id,
    )


@dataclass
class ConversationSummary:
    conversation: Conversation
    last_message_preview: str | None
    last_message_at: datetime
    unread_count: int

    def to_dict(self) -> dict:
        return {
            **self.conversation.to_dict(),
            "last_message_preview": self.last_message_preview,
            "last_message_at": isoformat(self.last_message_at),
            "unread_count": self.unread_count,
        }


class ConversationService:
    def __init__(self, db: AsyncSession, feed: ChangeFeed | None = None):
        self.db = db
        self.feed = feed if feed is not None else change_feed

    async def resolve_conversation(
        self,
        actor: Actor | None,
        customer_id: str | None,
        vendor_id: str | None,
        product_id: str | None = None,
    ) -> tuple[Conversation, bool]:
        """Return the conversation for (customer, vendor, product), creating it if absent.

        The second element tells whether this call created it. Concurrent
        callers race on the unique triple index; the loser re-reads the
        winner's row.
        """
        actor = require_actor(actor)
        customer_id = (customer_id or "").strip()
        vendor_id = (vendor_id or "").strip()
        product_id = (product_id or "").strip() or None

        if not customer_id or not vendor_id or customer_id == vendor_id:
            raise InvalidParticipants(customer_id or None, vendor_id or None)
        if actor.id not in (customer_id, vendor_id):
            raise NotAParticipant(actor.id)

        with store_errors("resolve_conversation"):
            existing = await self._find(customer_id, vendor_id, product_id)
            if existing:
                return existing, False

            now = utcnow()
            conversation = Conversation(
                customer_id=customer_id,
                vendor_id=vendor_id,
                product_id=product_id,
                created_at=now,
                updated_at=now,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(conversation)
            except IntegrityError as e:
                logger.info(
                    "Conversation %s/%s/%s created concurrently, re-reading",
                    customer_id, vendor_id, product_id,
                )
                existing = await self._find(customer_id, vendor_id, product_id)
                if existing is None:
                    raise StoreUnavailable("resolve_conversation") from e
                return existing, False
            await self.db.commit()

        logger.info(
            "Conversation %s created: customer=%s vendor=%s product=%s",
            conversation.id, customer_id, vendor_id, product_id,
        )
        self.feed.publish(ChangeEvent.conversation_changed(conversation, created=True))
        return conversation, True

    async def get_conversation(
        self, actor: Actor | None, conversation_id: str | uuid.UUID
    ) -> Conversation:
        actor = require_actor(actor)
        conversation_uuid = as_uuid(conversation_id)
        if conversation_uuid is None:
            raise ConversationNotFound(str(conversation_id))
        with store_errors("get_conversation"):
            conversation = await self.db.get(Conversation, conversation_uuid)
        if conversation is None:
            raise ConversationNotFound(str(conversation_id))
        if not conversation.has_participant(actor.id):
            raise NotAParticipant(actor.id, str(conversation.id))
        return conversation

    async def list_conversations(
        self,
        actor: Actor | None,
        limit: int | None = None,
        before: str | None = None,
    ) -> tuple[list[ConversationSummary], str | None]:
        """Conversations the actor takes part in, most recently active first."""
        actor = require_actor(actor)
        limit = page_size(limit, settings.CONVERSATION_PAGE_SIZE)

        stmt = (
            select(Conversation)
            .where(participant_of(actor.id))
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            .limit(limit)
        )
        if before:
            anchor_id = as_uuid(before)
            if anchor_id is None:
                raise ConversationNotFound(before)
            anchor = aliased(Conversation)
            anchor_updated = (
                select(anchor.updated_at).where(anchor.id == anchor_id).scalar_subquery()
            )
            stmt = stmt.where(
                or_(
                    Conversation.updated_at < anchor_updated,
                    and_(
                        Conversation.updated_at == anchor_updated,
                        Conversation.id < anchor_id,
                    ),
                )
            )

        with store_errors("list_conversations"):
            conversations = list((await self.db.scalars(stmt)).all())
            ids = [c.id for c in conversations]
            latest = await self._latest_messages(ids)
            unread = await self._unread_counts(actor.id, ids)

        summaries = []
        for conversation in conversations:
            last = latest.get(conversation.id)
            summaries.append(
                ConversationSummary(
                    conversation=conversation,
                    last_message_preview=(
                        render_preview(last.content_type, last.payload) if last else None
                    ),
                    last_message_at=last.created_at if last else conversation.updated_at,
                    unread_count=unread.get(conversation.id, 0),
                )
            )
        next_cursor = str(conversations[-1].id) if len(conversations) == limit else None
        return summaries, next_cursor

    async def unread_count(self, actor: Actor | None, conversation_id: str | uuid.UUID) -> int:
        conversation = await self.get_conversation(actor, conversation_id)
        with store_errors("unread_count"):
            counts = await self._unread_counts(actor.id, [conversation.id])
        return counts.get(conversation.id, 0)

    async def total_unread(self, actor: Actor | None) -> int:
        actor = require_actor(actor)
        stmt = (
            select(func.count(Message.id))
            .join(Conversation, Message.conversation_id == Conversation.id)
            .where(
                participant_of(actor.id),
                Message.sender_id != actor.id,
                Message.is_read.is_(False),
            )
        )
        with store_errors("total_unread"):
            return await self.db.scalar(stmt) or 0

    async def _find(
        self, customer_id: str, vendor_id: str, product_id: str | None
    ) -> Conversation | None:
        product_clause = (
            Conversation.product_id.is_(None)
            if product_id is None
            else Conversation.product_id == product_id
        )
        return await self.db.scalar(
            select(Conversation).where(
                Conversation.customer_id == customer_id,
                Conversation.vendor_id == vendor_id,
                product_clause,
            )
        )

    async def _latest_messages(self, ids: list[uuid.UUID]) -> dict[uuid.UUID, Message]:
        if not ids:
            return {}
        ranked = (
            select(
                Message,
                func.row_number()
                .over(
                    partition_by=Message.conversation_id,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                )
                .label("recency"),
            )
            .where(Message.conversation_id.in_(ids))
            .subquery()
        )
        latest = aliased(Message, ranked)
        rows = await self.db.scalars(select(latest).where(ranked.c.recency == 1))
        return {m.conversation_id: m for m in rows.all()}

    async def _unread_counts(
        self, viewer_id: str, ids: list[uuid.UUID]
    ) -> dict[uuid.UUID, int]:
        """Recomputed from message rows on every call; no stored counter to drift."""
        if not ids:
            return {}
        result = await self.db.execute(
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(ids),
                Message.sender_id != viewer_id,
                Message.is_read.is_(False),
            )
            .group_by(Message.conversation_id)
        )
        return {row[0]: row[1] for row in result.all()}
