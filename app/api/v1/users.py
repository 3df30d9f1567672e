from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_auth_service, get_current_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.user import AccountSecurityResponse, UserResponse, UserUpdate
from app.services.auth_service import AuthService
from app.utils.response import success

router = APIRouter()


@router.get("/me", response_model=dict)
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    """Get current user profile"""
    return success(data=UserResponse.model_validate(current_user).model_dump(), message="User profile retrieved")


@router.put("/me", response_model=dict)
def update_user_profile(
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update user profile"""
    update_data = user_update.model_dump(exclude_unset=True)
    if update_data.get("name"):
        current_user.name = update_data["name"]
    if "phone" in update_data:
        current_user.phone = update_data["phone"]

    db.commit()
    db.refresh(current_user)

    return success(data=UserResponse.model_validate(current_user).model_dump(), message="User profile updated")


@router.get("/me/security", response_model=dict)
def get_account_security(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Lockout, verification and last-login status for the signed-in account."""
    status_report = AccountSecurityResponse(**service.lockout.account_status(current_user))
    return success(data=status_report.model_dump(), message="Account security status retrieved")
