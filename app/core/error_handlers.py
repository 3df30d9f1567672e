import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.core.exceptions import APIError, AuthError
from app.utils.response import error_response

logger = structlog.get_logger()


async def auth_error_handler(request: Request, exc: AuthError):
    """Render an authentication failure with its machine-readable kind.

    Throttling kinds carry ``Retry-After`` in whole seconds, and every 401
    advertises the bearer scheme.
    """
    headers = {}
    error = {"code": exc.kind.value}
    if exc.retry_after_seconds is not None:
        headers["Retry-After"] = str(exc.retry_after_seconds)
        error["retry_after"] = exc.retry_after_seconds
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return error_response(
        status_code=exc.status_code,
        message=exc.message,
        errors=[error],
        headers=headers or None,
    )


async def api_error_handler(request: Request, exc: APIError):
    return error_response(
        status_code=exc.status_code,
        message=exc.message,
        errors=exc.errors,
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("route_rate_limited", path=request.url.path, limit=str(exc.detail))
    return error_response(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        message="Too many requests. Please try again later.",
        errors=[{"code": "rate_limited", "limit": str(exc.detail)}],
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail

    if isinstance(detail, str):
        message, errors = detail, []
    elif isinstance(detail, dict):
        message = detail.get("message", "Request failed")
        errors = detail.get("errors", [])
    elif isinstance(detail, list):
        message, errors = "Request failed", detail
    else:
        message, errors = "Request failed", []

    return error_response(
        status_code=exc.status_code,
        message=message,
        errors=errors,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Never echo submitted passwords or tokens back to the client.
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation failed",
        errors=errors,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", error_type=type(exc).__name__, path=request.url.path)

    if settings.DEBUG and settings.ENVIRONMENT != "production":
        return error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message=f"Internal server error: {exc}",
            errors=[{"type": type(exc).__name__}],
        )

    return error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Internal server error",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
