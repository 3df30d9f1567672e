from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from typing import Optional

from app.api.deps import get_auth_service, require_admin, require_roles
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User, UserRole
from app.schemas.auth import UnlockAccountRequest
from app.schemas.user import UserResponse
from app.services.auth_service import AuthService
from app.services.token_blacklist import RevocationStore
from app.utils.response import success

router = APIRouter()


def _user_body(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump()


# ============= ACCOUNT MANAGEMENT =============

@router.post("/users/{user_id}/unlock")
def unlock_user(
    user_id: int,
    payload: Optional[UnlockAccountRequest] = None,
    current_admin: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Admin: Clear a lockout before it lapses on its own."""
    user = service.unlock_account(user_id, reason=payload.reason if payload else None)
    return success(data=_user_body(user), message="Account unlocked")


@router.post("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: int,
    current_admin: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Admin: Deactivate an account and sign it out everywhere."""
    user = service.deactivate_account(user_id)
    return success(data=_user_body(user), message="Account deactivated")


@router.post("/users/{user_id}/activate")
def activate_user(
    user_id: int,
    current_admin: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    user = service.activate_account(user_id)
    return success(data=_user_body(user), message="Account activated")


@router.post("/users/{user_id}/logout-all")
def logout_user_everywhere(
    user_id: int,
    current_admin: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    token_version = service.logout_all_devices(user_id, reason="admin_forced_logout")
    return success(
        data={"user_id": user_id, "token_version": token_version},
        message="All sessions invalidated",
    )


# ============= SECURITY REPORTING =============

@router.get("/auth/stats")
def auth_stats(
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.SECURITY)),
    service: AuthService = Depends(get_auth_service),
):
    return success(data=service.auth_stats(), message="Authentication statistics retrieved")


@router.post("/maintenance/cleanup-revoked-tokens")
@limiter.limit("10/minute")
def cleanup_revoked_tokens(
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    deleted = RevocationStore(db).sweep_expired()
    return success(
        data={"deleted": deleted},
        message="Expired revocation entries removed",
    )
