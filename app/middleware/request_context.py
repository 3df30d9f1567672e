import time
import uuid

import structlog
from fastapi import FastAPI, Request, status

from app.api.deps import get_client_ip
from app.core.config import settings

logger = structlog.get_logger()

# Token pairs and account state travel in these responses.
NO_STORE_PREFIXES = (
    f"{settings.API_V1_STR}/auth",
    f"{settings.API_V1_STR}/users",
    f"{settings.API_V1_STR}/admin",
)

REJECTION_STATUSES = frozenset(
    {
        status.HTTP_401_UNAUTHORIZED,
        status.HTTP_403_FORBIDDEN,
        status.HTTP_423_LOCKED,
        status.HTTP_429_TOO_MANY_REQUESTS,
    }
)


def register_middleware(app: FastAPI) -> None:
    """Attach header hardening and per-request log context to ``app``."""

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Referrer-Policy"] = "no-referrer"
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
            response.headers["Pragma"] = "no-cache"
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request_id = str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        request.state.request_id = request_id

        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            request_id=request_id,
            client_ip=get_client_ip(request),
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            user_id = getattr(request.state, "user_id", None)

            # Auth rejections are the signal security reviews look for.
            log = logger.warning if response.status_code in REJECTION_STATUSES else logger.info
            log(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(elapsed * 1000, 2),
                user_id=user_id,
            )
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id", "request_id", "client_ip")

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response
