import os

# Set env vars BEFORE any imports from the project happen
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("GATEWAY_SECRET", "test-secret")
os.environ.setdefault("SUBSCRIPTION_QUEUE_SIZE", "16")

import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.identity import Actor, Role  # noqa: E402
from models import Base  # noqa: E402
from realtime.feed import ChangeFeed  # noqa: E402
from services.conversation import ConversationService  # noqa: E402
from services.messaging import MessageService  # noqa: E402


@pytest.fixture
async def db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def feed():
    return ChangeFeed(queue_size=16)


@pytest.fixture
def conversations(db, feed):
    return ConversationService(db, feed)


@pytest.fixture
def messages(db, conversations, feed):
    return MessageService(db, conversations, feed)


@pytest.fixture
def alice():
    return Actor(id="alice", role=Role.CUSTOMER)


@pytest.fixture
def bob():
    return Actor(id="bob-shop", role=Role.VENDOR)


@pytest.fixture
def mallory():
    return Actor(id="mallory", role=Role.CUSTOMER)


@pytest.fixture
async def sneakers_chat(conversations, alice):
    conversation, _ = await conversations.resolve_conversation(
        alice, "alice", "bob-shop", "sneakers-42"
    )
    return conversation
