import os

import sentry_sdk
import structlog
from fastapi import Depends, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.v1 import admin, auth, users
from app.core.clock import utcnow
from app.core.config import settings
from app.core.error_handlers import register_exception_handlers
from app.core.logging_config import configure_logging
from app.core.rate_limiter import limiter
from app.db.session import SessionLocal, get_db
from app.middleware.request_context import register_middleware
from app.models.user import User, UserRole
from app.repositories.accounts import AccountRepository
from app.repositories.revocations import RevocationRepository
from app.services.brute_force import BruteForceCounter

API_VERSION = "1.0.0"

# --------------------------------------------------
# CONFIGURE LOGGING (FIRST)
# --------------------------------------------------
configure_logging()
logger = structlog.get_logger()

# --------------------------------------------------
# SENTRY (PRODUCTION ONLY)
# --------------------------------------------------
if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=API_VERSION,
            traces_sample_rate=0.1,
            # Request bodies here carry passwords and tokens.
            send_default_pii=False,
            max_request_body_size="never",
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
        logger.info("sentry_initialized")
    except Exception as exc:
        logger.warning("sentry_init_failed", error=str(exc))

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=API_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
)

# One sliding window per process, shared by every login request.
app.state.brute_force_counter = BruteForceCounter()


@app.on_event("startup")
def require_admin_account_in_production():
    """Refuse to serve production traffic until someone can unlock accounts."""
    if settings.ENVIRONMENT != "production":
        return

    db = SessionLocal()
    try:
        admins = AccountRepository(db).count_where(
            User.role == UserRole.ADMIN,
            User.is_active.is_(True),
        )
    finally:
        db.close()

    if not admins:
        raise RuntimeError(
            "No active admin user found in production. "
            "Run `python -m app.db.init_db` with DEFAULT_ADMIN_PASSWORD set."
        )
    logger.info("admin_bootstrap_verified", admins=admins)

# --------------------------------------------------
# RATE LIMITING, CORS, REQUEST CONTEXT
# --------------------------------------------------
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

cors_origins = list(settings.BACKEND_CORS_ORIGINS)
if settings.FRONTEND_URL and settings.FRONTEND_URL not in cors_origins:
    cors_origins.append(settings.FRONTEND_URL)

# Bearer tokens only; no cookies cross origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["Retry-After", "X-Request-ID", "X-Correlation-ID", "X-Process-Time"],
    max_age=3600,
)

register_middleware(app)
register_exception_handlers(app)

# --------------------------------------------------
# ROUTERS
# --------------------------------------------------
app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/auth", tags=["Authentication"])
app.include_router(users.router, prefix=f"{settings.API_V1_STR}/users", tags=["Users"])
app.include_router(admin.router, prefix=f"{settings.API_V1_STR}/admin", tags=["Admin"])

# --------------------------------------------------
# HEALTH
# --------------------------------------------------
@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": API_VERSION,
    }


@app.get("/health/database")
def database_health_check(db: Session = Depends(get_db)):
    """Connectivity plus the size of the revocation list the gate consults."""
    try:
        revocations = RevocationRepository(db).counts(utcnow())
    except SQLAlchemyError as exc:
        logger.exception("database_health_check_failed", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "reason": "Database connectivity check failed"},
        )

    return {
        "status": "healthy",
        "dialect": db.get_bind().dialect.name,
        "pool": db.get_bind().pool.status(),
        "revocations": {"active": revocations["active"], "awaiting_cleanup": revocations["total"] - revocations["active"]},
    }


@app.get("/")
def root():
    return {
        "message": f"{settings.PROJECT_NAME}",
        "docs": f"{settings.API_V1_STR}/docs",
        "version": API_VERSION,
    }


@app.get(f"{settings.API_V1_STR}/version")
def get_version():
    return {
        "version": API_VERSION,
        "commit": os.getenv("GIT_COMMIT", "unknown"),
    }
