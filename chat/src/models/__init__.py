from models.base import Base
from models.conversation import Conversation
from models.message import ContentType, Message

__all__ = ["Base", "ContentType", "Conversation", "Message"]
