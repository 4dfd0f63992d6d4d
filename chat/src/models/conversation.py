from datetime import datetime

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, isoformat, utcnow


class Conversation(Base):
    __tablename__ = "conversations"

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    messages: Mapped[list["Message"]] = relationship(  # noqa: F821
        back_populates="conversation", order_by="[Message.created_at, Message.id]"
    )

    __table_args__ = (
        Index("ix_conversations_customer_updated", "customer_id", "updated_at"),
        Index("ix_conversations_vendor_updated", "vendor_id", "updated_at"),
    )

    def has_participant(self, participant_id: str) -> bool:
        return participant_id in (self.customer_id, self.vendor_id)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "customer_id": self.customer_id,
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


# NULL product ids compare distinct in plain unique constraints, so the
# "no product" conversation is folded to '' for uniqueness.
Index(
    "uq_conversations_triple",
    Conversation.customer_id,
    Conversation.vendor_id,
    func.coalesce(Conversation.product_id, ""),
    unique=True,
)
