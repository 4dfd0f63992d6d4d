import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from config import settings
from core.database import get_db
from core.errors import ConversationNotFound, MessagingError, NotAParticipant, Unauthenticated
from core.identity import Actor, parse_actor
from realtime.feed import Subscription, change_feed
from realtime.timeline import ConversationTimeline, open_timeline
from services.conversation import ConversationService
from services.messaging import MessageService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

CLOSE_UNAUTHENTICATED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404
CLOSE_TRY_AGAIN = 1013


def authenticate(websocket: WebSocket) -> Actor:
    """Gateway values come as headers, or as query params for browser clients."""
    headers, query = websocket.headers, websocket.query_params
    secret = headers.get("x-gateway-secret") or query.get("secret")
    if secret != settings.GATEWAY_SECRET:
        raise Unauthenticated("Invalid gateway secret")
    return parse_actor(
        headers.get("x-actor-id") or query.get("actor_id"),
        headers.get("x-actor-role") or query.get("role"),
    )


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_stream(websocket: WebSocket, conversation_id: str):
    """Detail view: a snapshot of recent history, then new messages as they commit.

    After any disconnect the client reconnects and gets a fresh snapshot;
    messages are de-duplicated by id on both sides.
    """
    try:
        actor = authenticate(websocket)
    except Unauthenticated:
        await websocket.close(code=CLOSE_UNAUTHENTICATED)
        return

    try:
        async with get_db() as db:
            conversations = ConversationService(db)
            messages = MessageService(db, conversations)
            timeline, subscription = await open_timeline(
                conversations, messages, change_feed, actor, conversation_id
            )
    except ConversationNotFound:
        await websocket.close(code=CLOSE_NOT_FOUND)
        return
    except NotAParticipant:
        await websocket.close(code=CLOSE_FORBIDDEN)
        return
    except MessagingError as e:
        logger.warning("Conversation stream refused: %s", e.code)
        await websocket.close(code=CLOSE_TRY_AGAIN)
        return

    await websocket.accept()
    async with subscription:
        await websocket.send_json(
            {
                "type": "snapshot",
                "conversation_id": timeline.conversation_id,
                "data": timeline.messages,
            }
        )
        await _serve(
            websocket,
            subscription,
            forward=lambda event: timeline.apply_event(event),
            on_frame=lambda frame: _handle_frame(actor, timeline, frame),
        )


@router.websocket("/ws/conversations")
async def conversation_list_stream(websocket: WebSocket):
    """List view: every change touching the actor's conversations."""
    try:
        actor = authenticate(websocket)
    except Unauthenticated:
        await websocket.close(code=CLOSE_UNAUTHENTICATED)
        return

    subscription = change_feed.subscribe_participant(actor)
    try:
        async with get_db() as db:
            summaries, next_cursor = await ConversationService(db).list_conversations(actor)
    except MessagingError as e:
        subscription.close()
        logger.warning("Conversation list stream refused: %s", e.code)
        await websocket.close(code=CLOSE_TRY_AGAIN)
        return

    await websocket.accept()
    async with subscription:
        await websocket.send_json(
            {
                "type": "snapshot",
                "data": [s.to_dict() for s in summaries],
                "next_cursor": next_cursor,
            }
        )
        await _serve(websocket, subscription, forward=lambda event: True)


async def _serve(websocket: WebSocket, subscription: Subscription, forward, on_frame=None):
    """Push feed events out while reading client frames, until either side ends."""
    pump = asyncio.create_task(_pump(websocket, subscription, forward))
    try:
        await _listen(websocket, on_frame)
    except WebSocketDisconnect:
        logger.debug("Client left subscription %s", subscription.id)
    finally:
        pump.cancel()
        subscription.close()
        await asyncio.gather(pump, return_exceptions=True)


async def _pump(websocket: WebSocket, subscription: Subscription, forward) -> None:
    async for event in subscription:
        if forward(event):
            await websocket.send_json(event.to_dict())
    if subscription.overflowed:
        await websocket.close(code=CLOSE_TRY_AGAIN)


async def _listen(websocket: WebSocket, on_frame) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        text = message.get("text")
        # Binary frames carry nothing the server understands
        if text is None or on_frame is None:
            continue
        try:
            frame = json.loads(text)
        except ValueError:
            frame = None
        reply = await on_frame(frame)
        if reply is not None:
            await websocket.send_json(reply)


async def _handle_frame(actor: Actor, timeline: ConversationTimeline, frame: dict) -> dict | None:
    """Client frames on the detail stream. Only read receipts are accepted."""
    if not isinstance(frame, dict) or frame.get("type") != "mark_read":
        return {"type": "error", "error": "UNSUPPORTED_FRAME"}
    try:
        async with get_db() as db:
            updated = await MessageService(db).mark_read(actor, timeline.conversation_id)
    except MessagingError as e:
        logger.warning("mark_read over websocket failed: %s", e.code)
        return {"type": "error", "error": e.code}
    return {"type": "read", "conversation_id": timeline.conversation_id, "updated": updated}
