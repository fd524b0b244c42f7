"""
Structured Error Responses

Renders classified errors with a stable body so callers can tell
validation failures, rate limiting and upstream outages apart.

Error Response Format:
{
    "error": "Invalid reconciliation request",
    "code": "VALIDATION_ERROR" | "RATE_LIMIT_EXCEEDED" | "INTEGRATION_ERROR" | "CIRCUIT_OPEN",
    "fields": {"account_id": "account_id is required"},   # validation only
    "retryAfter": 42                                      # rate limiting only
}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from middleware.rate_limit import rate_limit_headers
from utils.errors import RateLimitError, ResilienceError, ValidationError

logger = logging.getLogger(__name__)


def request_validation_to_error(exc: RequestValidationError) -> ValidationError:
    """Convert FastAPI's request validation failure into a ValidationError."""
    fields = {}
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        fields[location or "body"] = error.get("msg", "invalid")
    return ValidationError("Invalid request", fields=fields)


def error_response(exc: ResilienceError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError):
        headers = rate_limit_headers(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def resilience_error_handler(request: Request, exc: ResilienceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(request_validation_to_error(exc))


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(ResilienceError, resilience_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
