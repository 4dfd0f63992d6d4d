from fastapi import APIRouter, Depends, Query, Response, status

from api.dependencies import (
    get_conversation_service,
    get_current_actor,
    get_message_service,
    verify_gateway_secret,
)
from api.schemas import (
    ConversationDetailOut,
    ConversationOut,
    ConversationPage,
    MessageOut,
    MessagePage,
    ResolveConversationRequest,
    SendMessageRequest,
    UnreadTotal,
    UpdatedCount,
)
from config import settings
from core.identity import Actor
from services.conversation import ConversationService
from services.messaging import MessageService

router = APIRouter(dependencies=[Depends(verify_gateway_secret)], tags=["chat"])


@router.post("/conversations", response_model=ConversationOut)
async def resolve_conversation(
    body: ResolveConversationRequest,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation, created = await service.resolve_conversation(
        actor, body.customer_id, body.vendor_id, body.product_id
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return conversation.to_dict()


@router.get("/conversations", response_model=ConversationPage)
async def list_conversations(
    limit: int | None = Query(None, ge=1, le=settings.MAX_PAGE_SIZE),
    before: str | None = None,
    actor: Actor = Depends(get_current_actor),
    service: ConversationService = Depends(get_conversation_service),
):
    summaries, next_cursor = await service.list_conversations(actor, limit=limit, before=before)
    return {"items": [s.to_dict() for s in summaries], "next_cursor": next_cursor}


@router.get("/conversations/unread", response_model=UnreadTotal)
async def total_unread(
    actor: Actor = Depends(get_current_actor),
    service: ConversationService = Depends(get_conversation_service),
):
    return {"unread": await service.total_unread(actor)}


@router.get("/conversations/{conversation_id}", response_model=ConversationDetailOut)
async def get_conversation(
    conversation_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.get_conversation(actor, conversation_id)
    unread = await service.unread_count(actor, conversation.id)
    return {**conversation.to_dict(), "unread_count": unread}


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
    conversation_id: str,
    limit: int | None = Query(None, ge=1, le=settings.MAX_PAGE_SIZE),
    before: str | None = None,
    actor: Actor = Depends(get_current_actor),
    service: MessageService = Depends(get_message_service),
):
    messages, next_cursor = await service.get_history(
        actor, conversation_id, limit=limit, before=before
    )
    return {"items": [m.to_dict() for m in messages], "next_cursor": next_cursor}


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    actor: Actor = Depends(get_current_actor),
    service: MessageService = Depends(get_message_service),
):
    message = await service.send(actor, conversation_id, body.content_type, body.payload)
    return message.to_dict()


@router.post("/conversations/{conversation_id}/read", response_model=UpdatedCount)
async def mark_read(
    conversation_id: str,
    actor: Actor = Depends(get_current_actor),
    service: MessageService = Depends(get_message_service),
):
    return {"updated": await service.mark_read(actor, conversation_id)}


@router.post("/messages/{message_id}/read", response_model=UpdatedCount)
async def mark_message_read(
    message_id: str,
    actor: Actor = Depends(get_current_actor),
    service: MessageService = Depends(get_message_service),
):
    updated = await service.mark_message_read(actor, message_id)
    return {"updated": int(updated)}
