"""Per-account login lockout.

States are ``Unlocked(attempts < max)`` and ``Locked(until)``. A lock lapses
on its own once ``until`` passes, but the stored attempt counter is only
cleared by a successful login or an explicit unlock, so it stays available
for auditing after the lock expires. Attempts freeze at the threshold, which
means the first failure after a lapsed lock re-locks the account.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import case
from sqlalchemy.orm import Session

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.exceptions import AccountLocked
from app.models.user import User
from app.repositories.accounts import AccountRepository

logger = structlog.get_logger()


@dataclass(frozen=True)
class LockState:
    attempts: int
    locked_until: Optional[datetime]
    is_locked: bool
    retry_after: Optional[timedelta]
    remaining_attempts: int
    newly_locked: bool = False


class LoginLockout:
    def __init__(
        self,
        db: Session,
        *,
        max_attempts: Optional[int] = None,
        lock_duration: Optional[timedelta] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.repo = AccountRepository(db)
        if max_attempts is None:
            max_attempts = settings.MAX_LOGIN_ATTEMPTS
        if lock_duration is None:
            lock_duration = timedelta(minutes=settings.ACCOUNT_LOCK_DURATION_MINUTES)
        self.max_attempts = max_attempts
        self.lock_duration = lock_duration
        self._clock = clock

    def _build_state(self, attempts: int, locked_until: Optional[datetime], now: datetime, newly_locked: bool = False) -> LockState:
        attempts = attempts or 0
        is_locked = locked_until is not None and locked_until > now
        return LockState(
            attempts=attempts,
            locked_until=locked_until,
            is_locked=is_locked,
            retry_after=(locked_until - now) if is_locked else None,
            remaining_attempts=max(0, self.max_attempts - attempts),
            newly_locked=newly_locked,
        )

    def state(self, user: User) -> LockState:
        return self._build_state(user.login_attempts, user.locked_until, self._clock())

    def ensure_unlocked(self, user: User) -> None:
        """Raise ``AccountLocked`` while the lock window is open. Call before any password check."""
        state = self.state(user)
        if state.is_locked:
            raise AccountLocked(retry_after=state.retry_after)

    def record_failure(self, user_id: int, *, address: Optional[str] = None) -> Optional[LockState]:
        now = self._clock()
        lock_until = now + self.lock_duration
        next_attempts = User.login_attempts + 1
        reaches_threshold = next_attempts >= self.max_attempts

        updated = self.repo.update_fields(
            user_id,
            {
                User.login_attempts: case((reaches_threshold, self.max_attempts), else_=next_attempts),
                User.locked_until: case((reaches_threshold, lock_until), else_=User.locked_until),
            },
        )
        if not updated:
            return None

        attempts, locked_until = (
            self.db.query(User.login_attempts, User.locked_until).filter(User.id == user_id).one()
        )
        self.db.commit()

        state = self._build_state(attempts, locked_until, now, newly_locked=locked_until == lock_until)
        if state.newly_locked:
            logger.warning(
                "account_locked",
                user_id=user_id,
                attempts=state.attempts,
                locked_until=lock_until.isoformat(),
                client_ip=address,
            )
        else:
            logger.warning(
                "login_failed",
                user_id=user_id,
                attempts=state.attempts,
                remaining_attempts=state.remaining_attempts,
                client_ip=address,
            )
        return state

    def record_success(self, user_id: int, *, address: Optional[str] = None) -> None:
        self.repo.update_fields(
            user_id,
            {
                User.login_attempts: 0,
                User.locked_until: None,
                User.last_login_at: self._clock(),
            },
        )
        self.db.commit()
        logger.info("login_succeeded", user_id=user_id, client_ip=address)

    def unlock(self, user_id: int) -> bool:
        unlocked = self.repo.update_fields(
            user_id,
            {
                User.login_attempts: 0,
                User.locked_until: None,
            },
        )
        self.db.commit()
        if unlocked:
            logger.info("account_unlocked", user_id=user_id)
        return unlocked

    def account_status(self, user: User) -> Dict[str, Any]:
        state = self.state(user)
        if state.is_locked:
            status = "locked"
        elif not user.is_active:
            status = "inactive"
        elif not user.is_email_verified:
            status = "unverified"
        else:
            status = "active"

        return {
            "status": status,
            "is_active": user.is_active,
            "is_locked": state.is_locked,
            "is_email_verified": user.is_email_verified,
            "login_attempts": state.attempts,
            "remaining_attempts": state.remaining_attempts,
            "locked_until": state.locked_until,
            "email_verified_at": user.email_verified_at,
            "last_login_at": user.last_login_at,
            "created_at": user.created_at,
        }
