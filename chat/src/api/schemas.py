from pydantic import BaseModel, Field

from models.message import ContentType


class ResolveConversationRequest(BaseModel):
    customer_id: str = Field(max_length=100)
    vendor_id: str = Field(max_length=100)
    product_id: str | None = Field(default=None, max_length=100)


class SendMessageRequest(BaseModel):
    content_type: ContentType = ContentType.TEXT
    payload: str


class ConversationOut(BaseModel):
    id: str
    customer_id: str
    vendor_id: str
    product_id: str | None
    created_at: str
    updated_at: str


class ConversationDetailOut(ConversationOut):
    unread_count: int


class ConversationSummaryOut(ConversationOut):
    last_message_preview: str | None
    last_message_at: str
    unread_count: int


class ConversationPage(BaseModel):
    items: list[ConversationSummaryOut]
    next_cursor: str | None


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content_type: ContentType
    payload: str
    created_at: str
    read: bool


class MessagePage(BaseModel):
    items: list[MessageOut]
    next_cursor: str | None


class UpdatedCount(BaseModel):
    updated: int


class UnreadTotal(BaseModel):
    unread: int
