from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import (
    get_auth_service,
    get_bearer_token,
    get_client_ip,
    get_current_context,
    get_current_user,
)
from app.core.config import settings
from app.core.exceptions import APIError, EmailAlreadyExists
from app.core.rate_limiter import limiter
from app.core.security import hash_password
from app.core.tokens import TokenPair, TokenType
from app.db.session import get_db
from app.models.user import User
from app.repositories.accounts import AccountRepository, normalize_email
from app.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    ResetPasswordRequest,
    TokenResponse,
    VerifyEmailRequest,
)
from app.schemas.user import UserCreate, UserResponse
from app.services.auth_service import AuthService
from app.utils.response import success

router = APIRouter()


def _token_body(service: AuthService, pair: TokenPair) -> dict:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=int(service.codec.ttl(TokenType.ACCESS).total_seconds()),
    ).model_dump()


def _user_body(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump()


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    description="""
Creates a parent or teacher account, queues a verification email and
returns a session token pair.

Validation:
1. Email must be unique (case-insensitive)
2. Password needs upper and lower case letters, a digit and a special character
3. Admin and security accounts cannot self-register
""",
    responses={
        201: {"description": "Registration successful"},
        409: {"description": "Email already registered"},
        422: {"description": "Validation error"},
    },
)
@limiter.limit(settings.REGISTER_RATE_LIMIT)
def register(
    request: Request,
    user_in: UserCreate,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    email = normalize_email(user_in.email)
    if AccountRepository(db).get_by_email(email):
        raise EmailAlreadyExists()

    user = User(
        email=email,
        password_hash=hash_password(user_in.password),
        name=user_in.name,
        phone=user_in.phone,
        role=user_in.role,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise EmailAlreadyExists()
    db.refresh(user)

    service.send_email_verification(user)
    pair = service.issue_session_pair(user)

    return success(
        data={"user": _user_body(user), "tokens": _token_body(service, pair)},
        message="Registration successful",
    )


@router.post(
    "/login",
    response_model=dict,
    summary="Login user",
    description="""
Authenticates a user and returns an access/refresh token pair.

Behavior:
1. Rejects the request when the client address is over the brute-force limit
2. Rejects locked accounts before any password comparison
3. Records the outcome against the account lockout counter
4. Ensures the account is active
""",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
        403: {"description": "Account inactive"},
        423: {"description": "Account locked"},
        429: {"description": "Too many attempts from this address"},
    },
)
def login(
    credentials: LoginRequest,
    client_ip: str = Depends(get_client_ip),
    service: AuthService = Depends(get_auth_service),
):
    user, pair = service.login(credentials.email, credentials.password, client_ip)
    return success(
        data={"user": _user_body(user), "tokens": _token_body(service, pair)},
        message="Login successful",
    )


@router.post("/refresh", response_model=dict)
def refresh_token(
    payload: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
):
    access_token = service.refresh(payload.refresh_token)
    return success(
        data={
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": int(service.codec.ttl(TokenType.ACCESS).total_seconds()),
        },
        message="Token refreshed",
    )


@router.post("/logout", response_model=dict, dependencies=[Depends(get_current_context)])
def logout(
    payload: Optional[LogoutRequest] = None,
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
):
    service.logout(token, payload.refresh_token if payload else None)
    return success(message="Logout successful")


@router.post("/logout-all", response_model=dict)
def logout_all(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    token_version = service.logout_all_devices(current_user.id)
    return success(
        data={"token_version": token_version},
        message="Logged out from all devices",
    )


@router.post("/forgot-password", response_model=dict)
@limiter.limit(settings.FORGOT_PASSWORD_RATE_LIMIT)
def forgot_password(
    request: Request,
    payload: ForgotPasswordRequest,
    client_ip: str = Depends(get_client_ip),
    service: AuthService = Depends(get_auth_service),
):
    service.request_password_reset(payload.email, client_ip)
    return success(
        message="If an account exists, password reset instructions have been sent.",
    )


@router.post("/reset-password", response_model=dict)
def reset_password(
    payload: ResetPasswordRequest,
    client_ip: str = Depends(get_client_ip),
    service: AuthService = Depends(get_auth_service),
):
    service.reset_password(payload.token, payload.new_password, client_ip)
    return success(message="Password has been reset. Please login again.")


@router.put("/change-password", response_model=dict)
def change_password(
    payload: ChangePasswordRequest,
    client_ip: str = Depends(get_client_ip),
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    service.change_password(current_user, payload.current_password, payload.new_password, client_ip)
    return success(message="Password changed. Please login again.")


@router.post("/verify-email", response_model=dict)
def verify_email(
    payload: VerifyEmailRequest,
    service: AuthService = Depends(get_auth_service),
):
    user = service.verify_email(payload.token)
    return success(data={"user": _user_body(user)}, message="Email verified")


@router.post("/resend-verification", response_model=dict)
@limiter.limit(settings.RESEND_VERIFICATION_RATE_LIMIT)
def resend_verification(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    if current_user.is_email_verified:
        raise APIError(status_code=status.HTTP_400_BAD_REQUEST, message="Email is already verified")

    service.send_email_verification(current_user)
    return success(message="Verification email sent")
