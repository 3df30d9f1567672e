"""Persistence interface for user accounts.

Every mutation here is a single UPDATE statement so concurrent requests for
the same account cannot lose updates. Nothing in this module commits; the
calling service owns the transaction.
"""
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.user import User


class AccountRepository:
    INCREMENTABLE_FIELDS = frozenset({"token_version", "login_attempts"})

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == normalize_email(email)).first()

    def get_by_side_token(self, column, digest: str) -> Optional[User]:
        return self.db.query(User).filter(column == digest).first()

    def update_fields(self, user_id: int, patch: Dict[Any, Any]) -> bool:
        return self.conditional_update(user_id, (), patch)

    def conditional_update(self, user_id: int, conditions: Iterable, patch: Dict[Any, Any]) -> bool:
        """Apply ``patch`` only if every condition still holds; True when a row changed."""
        updated = (
            self.db.query(User)
            .filter(User.id == user_id, *conditions)
            .update(patch, synchronize_session=False)
        )
        return updated == 1

    def atomic_increment(self, user_id: int, field: str) -> Optional[int]:
        if field not in self.INCREMENTABLE_FIELDS:
            raise ValueError(f"{field} is not an incrementable account field")
        column = getattr(User, field)
        if not self.update_fields(user_id, {column: column + 1}):
            return None
        return self.scalar(user_id, column)

    def scalar(self, user_id: int, column):
        """Read one column straight from the database, bypassing the identity map."""
        return self.db.query(column).filter(User.id == user_id).scalar()

    def count_where(self, *conditions) -> int:
        return self.db.query(func.count(User.id)).filter(*conditions).scalar() or 0


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()
