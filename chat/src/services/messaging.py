import logging
import uuid

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from config import settings
from core.database import store_errors
from core.errors import MessageNotFound
from core.identity import Actor, require_actor
from models.base import utcnow
from models.conversation import Conversation
from models.message import ContentType, Message
from realtime.events import ChangeEvent
from realtime.feed import ChangeFeed, change_feed
from services.conversation import ConversationService, as_uuid, page_size
from services.preview import normalize_payload, parse_content_type

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(
        self,
        db: AsyncSession,
        conversations: ConversationService | None = None,
        feed: ChangeFeed | None = None,
    ):
        self.db = db
        self.feed = feed if feed is not None else change_feed
        self.conversations = conversations or ConversationService(db, self.feed)

    async def send(
        self,
        actor: Actor | None,
        conversation_id: str | uuid.UUID,
        content_type: str | ContentType,
        payload: str | None,
    ) -> Message:
        """Append a message from the actor and bump the conversation.

        The insert is committed on its own before the conversation is touched:
        once this returns, the message is durable even if the touch failed.
        Never retried here; a retry could insert the message twice.
        """
        actor = require_actor(actor)
        content_type = parse_content_type(content_type)
        payload = normalize_payload(content_type, payload)
        conversation = await self.conversations.get_conversation(actor, conversation_id)

        message = Message(
            conversation_id=conversation.id,
            sender_id=actor.id,
            content_type=content_type.value,
            payload=payload,
            is_read=False,
            created_at=utcnow(),
        )
        with store_errors("send"):
            self.db.add(message)
            await self.db.commit()
        logger.debug(
            "Message %s sent to %s by %s (%s)",
            message.id, conversation.id, actor.id, content_type.value,
        )
        self.feed.publish(ChangeEvent.message_created(conversation, message))

        await self._touch(conversation, message)
        return message

    async def mark_read(self, actor: Actor | None, conversation_id: str | uuid.UUID) -> int:
        """Flag every message the actor received in the conversation as read.

        Only unread messages from the other participant are matched, so a
        repeated call changes nothing and returns 0.
        """
        conversation = await self.conversations.get_conversation(actor, conversation_id)
        stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.sender_id != actor.id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
        )
        with store_errors("mark_read"):
            result = await self.db.execute(stmt)
            await self.db.commit()
        return result.rowcount or 0

    async def mark_message_read(self, actor: Actor | None, message_id: str | uuid.UUID) -> bool:
        """Flag a single received message as read, e.g. as it arrives in an open chat."""
        actor = require_actor(actor)
        message = await self._get_message(message_id)
        conversation = await self.conversations.get_conversation(actor, message.conversation_id)
        if message.sender_id == actor.id or message.is_read:
            return False
        stmt = (
            update(Message)
            .where(Message.id == message.id, Message.is_read.is_(False))
            .values(is_read=True)
        )
        with store_errors("mark_message_read"):
            result = await self.db.execute(stmt)
            await self.db.commit()
        logger.debug("Message %s read in %s by %s", message.id, conversation.id, actor.id)
        return bool(result.rowcount)

    async def get_history(
        self,
        actor: Actor | None,
        conversation_id: str | uuid.UUID,
        limit: int | None = None,
        before: str | uuid.UUID | None = None,
    ) -> tuple[list[Message], str | None]:
        """A page of messages, oldest first.

        ``before`` is a message id; the page ends just before it. The returned
        cursor points at the oldest message of a full page.
        """
        conversation = await self.conversations.get_conversation(actor, conversation_id)
        limit = page_size(limit, settings.MESSAGE_PAGE_SIZE)

        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        if before:
            stmt = stmt.where(self._older_than(before))

        with store_errors("get_history"):
            rows = list((await self.db.scalars(stmt)).all())
        rows.reverse()
        next_cursor = str(rows[0].id) if len(rows) == limit else None
        return rows, next_cursor

    async def _touch(self, conversation: Conversation, message: Message) -> None:
        # Sends may commit out of timestamp order; updated_at only moves forward
        try:
            result = await self.db.execute(
                update(Conversation)
                .where(
                    Conversation.id == conversation.id,
                    Conversation.updated_at < message.created_at,
                )
                .values(updated_at=message.created_at)
                .execution_options(synchronize_session="fetch")
            )
            await self.db.commit()
        except DBAPIError as e:
            # The message is already committed; recency ordering catches up on the next send
            logger.warning(
                "Could not touch conversation %s after message %s: %s",
                conversation.id, message.id, e.__class__.__name__,
            )
            # Rollback expires everything in the session; the caller still needs the message
            self.db.expunge(message)
            await self.db.rollback()
            return
        if result.rowcount:
            self.feed.publish(ChangeEvent.conversation_changed(conversation))

    async def _get_message(self, message_id: str | uuid.UUID) -> Message:
        message_uuid = as_uuid(message_id)
        if message_uuid is None:
            raise MessageNotFound(str(message_id))
        with store_errors("get_message"):
            message = await self.db.get(Message, message_uuid)
        if message is None:
            raise MessageNotFound(str(message_id))
        return message

    def _older_than(self, message_id: str | uuid.UUID):
        anchor_uuid = as_uuid(message_id)
        if anchor_uuid is None:
            raise MessageNotFound(str(message_id))
        anchor = aliased(Message)
        anchor_created = (
            select(anchor.created_at).where(anchor.id == anchor_uuid).scalar_subquery()
        )
        return or_(
            Message.created_at < anchor_created,
            and_(Message.created_at == anchor_created, Message.id < anchor_uuid),
        )
