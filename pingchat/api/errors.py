"""
Map the pipeline error taxonomy onto HTTP responses.
"""
import math

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pingchat.core.errors import PingchatError, RateLimitExceeded
from pingchat.core.logging import get_logger

logger = get_logger(__name__)


async def pingchat_error_handler(request: Request, exc: PingchatError) -> JSONResponse:
    content = {"detail": exc.detail}
    headers = {}
    if isinstance(exc, RateLimitExceeded):
        content["retry_after_ms"] = exc.retry_after_ms
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after_ms / 1000)))

    logger.info(
        f"{type(exc).__name__} on {request.method} {request.url.path}",
        extra={"extra_data": {"status_code": exc.status_code, "detail": exc.detail}}
    )
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PingchatError, pingchat_error_handler)
