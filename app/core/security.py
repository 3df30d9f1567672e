import hashlib
import secrets

from passlib.context import CryptContext

from app.core.config import settings
from app.core.exceptions import APIError

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

MAX_PASSWORD_BYTES = 72
SIDE_TOKEN_BYTES = 32

# Compared against when no real hash is available, so the unknown-email and
# locked-account paths spend the same bcrypt time as a wrong password.
_DUMMY_PASSWORD_HASH = pwd_context.hash(secrets.token_hex(16))


def hash_password(password: str) -> str:
    """Hash password using bcrypt (safe wrapper)"""
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise APIError(status_code=422, message="Password is too long")

    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify plain password against hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def burn_password_check(plain_password: str) -> None:
    verify_password(plain_password, _DUMMY_PASSWORD_HASH)


def generate_secure_token(byte_length: int = SIDE_TOKEN_BYTES) -> str:
    """Random hex token for single-use flows (email verification, password reset)."""
    return secrets.token_hex(byte_length)


def hash_token(token: str) -> str:
    """Digest stored in place of a side token so the raw value never hits the database."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
