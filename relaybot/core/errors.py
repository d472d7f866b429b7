"""
relaybot/core/errors.py

Purpose: Map exceptions raised on the HTTP surface to ErrorResponse bodies

- RelayBotError subclasses carry their own status and code
- Bot API failures are logged with the method and failure kind
- Anything unhandled becomes a 500 (message hidden in production)
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from relaybot.core.exceptions import GatewayError, RelayBotError
from relaybot.schemas.response import ErrorResponse
from relaybot.core.config import settings
from relaybot.core.logging import get_logger

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "An internal error occurred. Please try again later."


def error_response(status_code: int, error: str, code: str, details: Optional[Any] = None) -> JSONResponse:
    body = ErrorResponse(error=error, code=code, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def jsonable_errors(exc: RequestValidationError) -> list:
    """Pydantic error list with the non-serialisable context stripped."""
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


def add_exception_handlers(app: FastAPI):
    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        logger.error(
            f"📡 Bot API {exc.method} failed ({exc.kind.value}): {exc.description}",
            extra={"url": str(request.url), "error_code": exc.error_code},
        )
        return error_response(exc.status_code, exc.message, exc.code, exc.details)

    @app.exception_handler(RelayBotError)
    async def relaybot_error_handler(request: Request, exc: RelayBotError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}", extra={"url": str(request.url)})
        elif exc.status_code == 401:
            logger.warning(f"🔒 Rejected request to {request.url.path}")
        return error_response(exc.status_code, exc.message, exc.code, exc.details)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), "HTTP_ERROR")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error_response(422, "Input validation failed", "VALIDATION_ERROR", jsonable_errors(exc))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        """
        Last resort. The webhook acknowledges before processing, so this
        only fires for failures inside the request itself.
        """
        logger.error(
            f"💥 Unhandled exception: {exc}",
            extra={
                "method": request.method,
                "url": str(request.url),
                "client": request.client.host if request.client else "unknown",
            },
            exc_info=True,
        )
        message = INTERNAL_ERROR_MESSAGE if settings.is_production else str(exc)
        return error_response(500, message, "INTERNAL_ERROR")
