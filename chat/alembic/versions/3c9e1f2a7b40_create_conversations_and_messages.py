"""create conversations and messages

Revision ID: 3c9e1f2a7b40
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c9e1f2a7b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("customer_id", sa.String(100), nullable=False),
        sa.Column("vendor_id", sa.String(100), nullable=False),
        sa.Column("product_id", sa.String(100), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_conversations_customer_updated", "conversations", ["customer_id", "updated_at"]
    )
    op.create_index(
        "ix_conversations_vendor_updated", "conversations", ["vendor_id", "updated_at"]
    )
    op.create_index(
        "uq_conversations_triple",
        "conversations",
        ["customer_id", "vendor_id", sa.text("coalesce(product_id, '')")],
        unique=True,
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("conversation_id", sa.Uuid(), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("sender_id", sa.String(100), nullable=False),
        sa.Column("content_type", sa.String(10), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_messages_conversation_created", "messages", ["conversation_id", "created_at"]
    )
    op.create_index(
        "ix_messages_conversation_read", "messages", ["conversation_id", "is_read"]
    )


def downgrade() -> None:
    op.drop_index("ix_messages_conversation_read", table_name="messages")
    op.drop_index("ix_messages_conversation_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("uq_conversations_triple", table_name="conversations")
    op.drop_index("ix_conversations_vendor_updated", table_name="conversations")
    op.drop_index("ix_conversations_customer_updated", table_name="conversations")
    op.drop_table("conversations")
