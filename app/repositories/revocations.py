from datetime import datetime
from typing import Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.token_blacklist import TokenBlacklist


class RevocationRepository:
    def __init__(self, db: Session):
        self.db = db

    def insert_entry(self, *, jti: str, user_id: int, expires_at: datetime, reason: str) -> None:
        self.db.add(
            TokenBlacklist(
                jti=jti,
                user_id=user_id,
                expires_at=expires_at,
                reason=reason,
            )
        )

    def exists(self, jti: str) -> bool:
        return self.db.query(TokenBlacklist.id).filter(TokenBlacklist.jti == jti).first() is not None

    def is_present(self, jti: str, now: datetime) -> bool:
        return (
            self.db.query(TokenBlacklist.id)
            .filter(
                TokenBlacklist.jti == jti,
                TokenBlacklist.expires_at > now,
            )
            .first()
            is not None
        )

    def delete_expired(self, now: datetime) -> int:
        return (
            self.db.query(TokenBlacklist)
            .filter(TokenBlacklist.expires_at <= now)
            .delete(synchronize_session=False)
        )

    def counts(self, now: datetime) -> Dict[str, int]:
        total = self.db.query(func.count(TokenBlacklist.id)).scalar() or 0
        active = (
            self.db.query(func.count(TokenBlacklist.id))
            .filter(TokenBlacklist.expires_at > now)
            .scalar()
            or 0
        )
        by_reason = dict(
            self.db.query(TokenBlacklist.reason, func.count(TokenBlacklist.id))
            .group_by(TokenBlacklist.reason)
            .all()
        )
        return {
            "total": total,
            "active": active,
            "logout": by_reason.get("logout", 0),
            "security": by_reason.get("security", 0),
        }
