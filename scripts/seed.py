"""Seed script: a demo conversation between a customer and a vendor."""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "chat" / "src"))

from core.database import engine, get_db  # noqa: E402
from core.identity import Actor, Role  # noqa: E402
from models import Base  # noqa: E402
from services.conversation import ConversationService  # noqa: E402
from services.messaging import MessageService  # noqa: E402


async def seed():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    alice = Actor(id="alice", role=Role.CUSTOMER)
    bob = Actor(id="bob-shop", role=Role.VENDOR)

    async with get_db() as db:
        conversations = ConversationService(db)
        messages = MessageService(db, conversations)

        about_sneakers, _ = await conversations.resolve_conversation(
            alice, "alice", "bob-shop", "sneakers-42"
        )
        general, _ = await conversations.resolve_conversation(alice, "alice", "bob-shop")

        await messages.send(alice, about_sneakers.id, "text", "Is this still available?")
        await messages.send(bob, about_sneakers.id, "text", "Yes! Sizes 40 to 44.")
        await messages.send(
            bob, about_sneakers.id, "voice", "https://cdn.example.com/voice/hello.webm"
        )
        await messages.send(alice, general.id, "text", "Do you ship abroad?")

        print("Database seeded with sample data!")
        print(f"  conversation {about_sneakers.id} (sneakers-42)")
        print(f"  conversation {general.id} (no product)")
        print(f"  unread for alice: {await conversations.total_unread(alice)}")
        print(f"  unread for bob-shop: {await conversations.total_unread(bob)}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
