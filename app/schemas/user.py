from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from typing import Optional
from datetime import datetime
import re

from app.models.user import UserRole

# Roles an account may pick for itself; admin and security accounts are provisioned.
SELF_REGISTER_ROLES = (UserRole.PARENT, UserRole.TEACHER)

_PHONE_PATTERN = re.compile(r"^01[016789]-?\d{3,4}-?\d{4}$")
_SPECIAL_CHARS = r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]"


def validate_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters')
    if len(v.encode("utf-8")) > 72:
        raise ValueError('Password must be at most 72 bytes')
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r'\d', v):
        raise ValueError('Password must contain at least one digit')
    if not re.search(_SPECIAL_CHARS, v):
        raise ValueError('Password must contain at least one special character')
    return v


def _validate_name(v: str) -> str:
    v = v.strip()
    if not 2 <= len(v) <= 50:
        raise ValueError('Name must be between 2 and 50 characters')
    return v


def _validate_phone(v: Optional[str]) -> Optional[str]:
    if v and not _PHONE_PATTERN.match(v):
        raise ValueError('Phone must be a valid mobile number')
    return v or None


class UserBase(BaseModel):
    email: EmailStr
    name: str
    phone: Optional[str] = None


class UserCreate(UserBase):
    password: str
    role: UserRole = UserRole.PARENT

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        return validate_password_strength(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        return _validate_name(v)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return _validate_phone(v)

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v not in SELF_REGISTER_ROLES:
            raise ValueError('Role must be parent or teacher')
        return v


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    phone: Optional[str] = None
    role: UserRole
    is_active: bool
    is_email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class UserUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if v is None:
            return v
        return _validate_name(v)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return _validate_phone(v)


class AccountSecurityResponse(BaseModel):
    status: str
    is_active: bool
    is_locked: bool
    is_email_verified: bool
    login_attempts: int
    remaining_attempts: int
    locked_until: Optional[datetime] = None
    email_verified_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
