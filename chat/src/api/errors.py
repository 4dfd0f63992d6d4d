import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from core.errors import MessagingError, StoreUnavailable

logger = logging.getLogger(__name__)


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    if isinstance(exc, StoreUnavailable):
        logger.error("%s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message, "detail": exc.details},
    )
