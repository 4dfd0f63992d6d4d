import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from api.conversations import router as conversations_router
from api.errors import messaging_error_handler
from api.health import router as health_router
from api.realtime import router as realtime_router
from config import settings
from core.database import engine
from core.errors import MessagingError
from core.logging import setup_logging
from models import Base
from realtime.feed import change_feed

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s ready", settings.APP_NAME)

    yield

    # Open streams end; clients reconnect and re-fetch
    change_feed.close_all()
    await engine.dispose()
    logger.info("%s stopped", settings.APP_NAME)


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["X-Gateway-Secret", "X-Actor-Id", "X-Actor-Role", "Content-Type"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        return response


app.add_middleware(SecurityHeadersMiddleware)

app.add_exception_handler(MessagingError, messaging_error_handler)

app.include_router(health_router)
app.include_router(conversations_router)
app.include_router(realtime_router)
