from sqlalchemy import Boolean, Column, Integer, String, DateTime, Enum
import enum

from app.core.clock import utcnow
from app.db.base_class import Base


class UserRole(str, enum.Enum):
    PARENT = "parent"
    TEACHER = "teacher"
    ADMIN = "admin"
    SECURITY = "security"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(50), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.PARENT, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Bulk session invalidation: every token embeds the value current at issue time.
    token_version = Column(Integer, default=0, server_default="0", nullable=False)

    # Lockout state
    login_attempts = Column(Integer, default=0, server_default="0", nullable=False)
    locked_until = Column(DateTime, nullable=True, index=True)
    last_login_at = Column(DateTime, nullable=True)

    # Side tokens are stored as SHA-256 digests
    email_verified_at = Column(DateTime, nullable=True)
    email_verification_token = Column(String(64), nullable=True, index=True)
    password_reset_token = Column(String(64), nullable=True, index=True)
    password_reset_expires = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_email_verified(self) -> bool:
        return self.email_verified_at is not None
