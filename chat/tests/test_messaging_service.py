import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from core.errors import (
    ConversationNotFound,
    EmptyContent,
    InvalidPayload,
    MessageNotFound,
    NotAParticipant,
    StoreUnavailable,
    Unauthenticated,
)
from models import Conversation
from models.base import isoformat, utcnow
from realtime.events import EventKind


async def send_many(messages, actor, conversation_id, count):
    sent = []
    for i in range(count):
        sent.append(await messages.send(actor, conversation_id, "text", f"message {i + 1}"))
    return sent


# --- send ---


async def test_send_text_appends_and_bumps(conversations, messages, alice, bob, sneakers_chat):
    message = await messages.send(alice, sneakers_chat.id, "text", "  Is this still available?  ")

    assert message.sender_id == "alice"
    assert message.payload == "Is this still available?"
    assert message.is_read is False

    history, _ = await messages.get_history(bob, sneakers_chat.id)
    assert [m.id for m in history] == [message.id]

    assert sneakers_chat.updated_at == message.created_at

    assert await conversations.unread_count(bob, sneakers_chat.id) == 1
    assert await conversations.unread_count(alice, sneakers_chat.id) == 0


async def test_send_attachment_url(messages, bob, sneakers_chat):
    message = await messages.send(bob, sneakers_chat.id, "image", "https://cdn.example.com/p/1.jpg")
    assert message.content_type == "image"
    assert message.to_dict()["payload"] == "https://cdn.example.com/p/1.jpg"


@pytest.mark.parametrize("payload", ["", "   ", None])
async def test_send_empty_text_is_rejected(messages, alice, sneakers_chat, payload):
    with pytest.raises(EmptyContent):
        await messages.send(alice, sneakers_chat.id, "text", payload)
    history, _ = await messages.get_history(alice, sneakers_chat.id)
    assert history == []


async def test_send_unknown_content_type(messages, alice, sneakers_chat):
    with pytest.raises(InvalidPayload):
        await messages.send(alice, sneakers_chat.id, "sticker", "🙂")


async def test_send_inline_attachment_is_rejected(messages, alice, sneakers_chat):
    with pytest.raises(InvalidPayload):
        await messages.send(alice, sneakers_chat.id, "voice", "data:audio/webm;base64,GkXfo59ChoEB")


async def test_send_by_outsider(messages, mallory, sneakers_chat):
    with pytest.raises(NotAParticipant) as exc:
        await messages.send(mallory, sneakers_chat.id, "text", "hi")
    assert exc.value.message.startswith("Unable to send")


async def test_send_to_unknown_conversation(messages, alice):
    with pytest.raises(ConversationNotFound):
        await messages.send(alice, "3f0c8a9e-0000-4000-8000-000000000001", "text", "hi")


async def test_send_requires_actor(messages, sneakers_chat):
    with pytest.raises(Unauthenticated):
        await messages.send(None, sneakers_chat.id, "text", "hi")


async def test_send_store_failure(messages, db, feed, alice, bob, sneakers_chat):
    listener = feed.subscribe_conversation(bob, str(sneakers_chat.id))
    failure = OperationalError("INSERT", {}, Exception("connection reset"))
    with patch.object(db, "commit", AsyncMock(side_effect=failure)):
        with pytest.raises(StoreUnavailable):
            await messages.send(alice, sneakers_chat.id, "text", "hello")
    assert listener.pending == 0


async def test_failed_touch_keeps_the_message(messages, db, feed, alice, bob, sneakers_chat):
    conversation_id = sneakers_chat.id
    vendor_list = feed.subscribe_participant(bob)
    failure = OperationalError("UPDATE", {}, Exception("lock timeout"))
    with patch.object(db, "execute", AsyncMock(side_effect=failure)):
        message = await messages.send(alice, conversation_id, "text", "Is this still available?")

    assert message.payload == "Is this still available?"
    history, _ = await messages.get_history(bob, conversation_id)
    assert [m.id for m in history] == [message.id]

    # message.created went out; conversation.updated did not
    event = await vendor_list.get()
    assert event.kind is EventKind.MESSAGE_CREATED
    assert vendor_list.pending == 0


async def test_send_publishes_in_commit_order(messages, feed, alice, bob, sneakers_chat):
    subscription = feed.subscribe_conversation(bob, str(sneakers_chat.id))
    sent = await send_many(messages, alice, sneakers_chat.id, 3)

    received = [await asyncio.wait_for(subscription.get(), 1) for _ in sent]
    assert [e.data["id"] for e in received] == [str(m.id) for m in sent]


async def test_sender_is_not_notified_of_own_message(messages, feed, alice, bob, sneakers_chat):
    mine = feed.subscribe_conversation(alice, str(sneakers_chat.id))
    await messages.send(alice, sneakers_chat.id, "text", "hello")
    assert mine.pending == 0

    await messages.send(bob, sneakers_chat.id, "text", "hi there")
    event = await asyncio.wait_for(mine.get(), 1)
    assert event.sender_id == "bob-shop"


async def test_out_of_order_commit_does_not_rewind_recency(
    messages, db, feed, alice, bob, sneakers_chat
):
    later = utcnow() + timedelta(minutes=5)
    earlier = later - timedelta(seconds=5)
    vendor_list = feed.subscribe_participant(bob)

    # bob's message is stamped after alice's but commits first
    with patch("services.messaging.utcnow", side_effect=[later, earlier]):
        await messages.send(bob, sneakers_chat.id, "text", "Sizes 40 to 44 left")
        await messages.send(alice, sneakers_chat.id, "text", "Is this still available?")

    stored = await db.scalar(
        select(Conversation.updated_at).where(Conversation.id == sneakers_chat.id)
    )
    assert isoformat(stored) == isoformat(later)
    assert sneakers_chat.updated_at == later

    kinds = [(await vendor_list.get()).kind for _ in range(3)]
    assert kinds == [
        EventKind.MESSAGE_CREATED,
        EventKind.CONVERSATION_UPDATED,
        EventKind.MESSAGE_CREATED,
    ]
    assert vendor_list.pending == 0


# --- history ---


async def test_history_is_chronological(messages, alice, bob, sneakers_chat):
    first = await messages.send(alice, sneakers_chat.id, "text", "Is this still available?")
    second = await messages.send(bob, sneakers_chat.id, "text", "Yes, size 42 left")
    third = await messages.send(alice, sneakers_chat.id, "text", "Great")

    history, cursor = await messages.get_history(bob, sneakers_chat.id)
    assert [m.id for m in history] == [first.id, second.id, third.id]
    assert cursor is None


async def test_history_pages_backwards(messages, alice, sneakers_chat):
    sent = await send_many(messages, alice, sneakers_chat.id, 5)

    page, cursor = await messages.get_history(alice, sneakers_chat.id, limit=2)
    assert [m.id for m in page] == [sent[3].id, sent[4].id]
    assert cursor == str(sent[3].id)

    page, cursor = await messages.get_history(alice, sneakers_chat.id, limit=2, before=cursor)
    assert [m.id for m in page] == [sent[1].id, sent[2].id]

    page, cursor = await messages.get_history(alice, sneakers_chat.id, limit=2, before=cursor)
    assert [m.id for m in page] == [sent[0].id]
    assert cursor is None


async def test_history_bad_cursor(messages, alice, sneakers_chat):
    with pytest.raises(MessageNotFound):
        await messages.get_history(alice, sneakers_chat.id, before="nope")


async def test_history_for_outsider(messages, mallory, sneakers_chat):
    with pytest.raises(NotAParticipant):
        await messages.get_history(mallory, sneakers_chat.id)


# --- read state ---


async def test_mark_read_only_touches_received(conversations, messages, alice, bob, sneakers_chat):
    await messages.send(bob, sneakers_chat.id, "text", "New stock arrived")
    await messages.send(bob, sneakers_chat.id, "image", "https://cdn.example.com/p/2.jpg")
    own = await messages.send(alice, sneakers_chat.id, "text", "Nice")

    assert await messages.mark_read(alice, sneakers_chat.id) == 2
    assert await conversations.unread_count(alice, sneakers_chat.id) == 0
    # alice's own message stays unread for bob
    assert await conversations.unread_count(bob, sneakers_chat.id) == 1

    history, _ = await messages.get_history(bob, sneakers_chat.id)
    assert next(m for m in history if m.id == own.id).is_read is False


async def test_mark_read_is_idempotent(conversations, messages, alice, bob, sneakers_chat):
    await messages.send(bob, sneakers_chat.id, "text", "New stock arrived")
    assert await messages.mark_read(alice, sneakers_chat.id) == 1
    assert await messages.mark_read(alice, sneakers_chat.id) == 0
    assert await conversations.unread_count(alice, sneakers_chat.id) == 0


async def test_mark_read_by_outsider(messages, mallory, sneakers_chat):
    with pytest.raises(NotAParticipant):
        await messages.mark_read(mallory, sneakers_chat.id)


async def test_mark_single_message_read(conversations, messages, alice, bob, sneakers_chat):
    first = await messages.send(bob, sneakers_chat.id, "text", "New stock arrived")
    await messages.send(bob, sneakers_chat.id, "text", "Still there?")

    assert await messages.mark_message_read(alice, first.id) is True
    assert await messages.mark_message_read(alice, first.id) is False
    assert await conversations.unread_count(alice, sneakers_chat.id) == 1


async def test_own_message_cannot_be_marked_read(messages, bob, sneakers_chat):
    message = await messages.send(bob, sneakers_chat.id, "text", "New stock arrived")
    assert await messages.mark_message_read(bob, message.id) is False


async def test_mark_unknown_message(messages, alice):
    with pytest.raises(MessageNotFound):
        await messages.mark_message_read(alice, "3f0c8a9e-0000-4000-8000-000000000002")
