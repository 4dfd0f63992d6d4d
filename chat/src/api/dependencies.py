from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.database import db_dependency
from core.identity import Actor, parse_actor
from services.conversation import ConversationService
from services.messaging import MessageService


async def verify_gateway_secret(
    x_gateway_secret: str | None = Header(None),
) -> None:
    if not x_gateway_secret or x_gateway_secret != settings.GATEWAY_SECRET:
        raise HTTPException(status_code=401, detail="Invalid gateway secret")


async def get_current_actor(
    x_actor_id: str | None = Header(None),
    x_actor_role: str | None = Header(None),
) -> Actor:
    return parse_actor(x_actor_id, x_actor_role)


def get_conversation_service(db: AsyncSession = Depends(db_dependency)) -> ConversationService:
    return ConversationService(db)


def get_message_service(db: AsyncSession = Depends(db_dependency)) -> MessageService:
    return MessageService(db)
