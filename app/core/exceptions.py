import enum
import math
from datetime import timedelta
from typing import Any, List, Optional

from fastapi import status


class AuthErrorKind(str, enum.Enum):
    MALFORMED_TOKEN = "malformed_token"
    EXPIRED_TOKEN = "expired_token"
    WRONG_TOKEN_TYPE = "wrong_token_type"
    REVOKED_TOKEN = "revoked_token"
    STALE_TOKEN_VERSION = "stale_token_version"
    ACCOUNT_INACTIVE = "account_inactive"
    ACCOUNT_LOCKED = "account_locked"
    INVALID_CREDENTIALS = "invalid_credentials"
    BRUTE_FORCE_SUSPECTED = "brute_force_suspected"
    SIDE_TOKEN_NOT_FOUND_OR_EXPIRED = "side_token_not_found_or_expired"


class AuthError(Exception):
    """Base for every recoverable authentication failure.

    Subclasses pin ``kind``, the HTTP status used at the boundary, and a
    default client-facing message. ``retry_after`` is set only by the
    throttling conditions.
    """

    kind: AuthErrorKind
    status_code: int = status.HTTP_401_UNAUTHORIZED
    default_message: str = "Authentication failed"

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[timedelta] = None):
        self.message = message or self.default_message
        self.retry_after = retry_after
        super().__init__(self.message)

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after.total_seconds()))


class MalformedToken(AuthError):
    kind = AuthErrorKind.MALFORMED_TOKEN
    default_message = "Could not validate credentials"


class ExpiredToken(AuthError):
    kind = AuthErrorKind.EXPIRED_TOKEN
    default_message = "Token has expired"


class WrongTokenType(AuthError):
    kind = AuthErrorKind.WRONG_TOKEN_TYPE
    default_message = "Invalid token type"


class RevokedToken(AuthError):
    kind = AuthErrorKind.REVOKED_TOKEN
    default_message = "Token has been revoked"


class StaleTokenVersion(AuthError):
    kind = AuthErrorKind.STALE_TOKEN_VERSION
    default_message = "Session has been invalidated. Please login again."


class AccountInactive(AuthError):
    kind = AuthErrorKind.ACCOUNT_INACTIVE
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Account is inactive"


class AccountLocked(AuthError):
    kind = AuthErrorKind.ACCOUNT_LOCKED
    status_code = status.HTTP_423_LOCKED
    default_message = "Account is temporarily locked. Please try again later."


class InvalidCredentials(AuthError):
    kind = AuthErrorKind.INVALID_CREDENTIALS
    default_message = "Incorrect email or password"


class BruteForceSuspected(AuthError):
    kind = AuthErrorKind.BRUTE_FORCE_SUSPECTED
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many login attempts. Please try again later."


class SideTokenNotFoundOrExpired(AuthError):
    kind = AuthErrorKind.SIDE_TOKEN_NOT_FOUND_OR_EXPIRED
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid or expired token"


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class AccountNotFound(APIError):
    def __init__(self):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, message="User not found")


class EmailAlreadyExists(APIError):
    def __init__(self):
        super().__init__(status_code=status.HTTP_409_CONFLICT, message="Email already registered")
