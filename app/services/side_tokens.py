"""Single-use email verification and password reset tokens.

Only a SHA-256 digest of each token is stored. Redemption is a conditional
UPDATE that clears the digest, so of two concurrent redemptions exactly one
wins. Callers only ever see ``SideTokenNotFoundOrExpired``; the precise cause
goes to the log.
"""
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.exceptions import AccountNotFound, SideTokenNotFoundOrExpired
from app.core.security import generate_secure_token, hash_password, hash_token
from app.models.user import User
from app.repositories.accounts import AccountRepository
from app.services.token_version import bump_token_version

logger = structlog.get_logger()


class SideTokenService:
    def __init__(self, db: Session, *, clock: Clock = utcnow, reset_ttl_minutes: Optional[int] = None):
        self.db = db
        self.repo = AccountRepository(db)
        self._clock = clock
        if reset_ttl_minutes is None:
            reset_ttl_minutes = settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES
        self.reset_ttl_minutes = reset_ttl_minutes

    def _reject(self, flow: str, cause: str, user_id: Optional[int] = None) -> SideTokenNotFoundOrExpired:
        logger.warning("side_token_rejected", flow=flow, cause=cause, user_id=user_id)
        return SideTokenNotFoundOrExpired()

    # ============= EMAIL VERIFICATION =============

    def issue_email_verification(self, user_id: int) -> str:
        """Store a fresh verification token; any earlier one stops working."""
        token = generate_secure_token()
        if not self.repo.update_fields(user_id, {User.email_verification_token: hash_token(token)}):
            raise AccountNotFound()
        self.db.commit()

        logger.info("email_verification_token_issued", user_id=user_id)
        return token

    def redeem_email_verification(self, token: str) -> User:
        if not token:
            raise self._reject("email_verification", "empty")

        digest = hash_token(token)
        user = self.repo.get_by_side_token(User.email_verification_token, digest)
        if user is None:
            raise self._reject("email_verification", "not_found")
        if not user.is_active:
            raise self._reject("email_verification", "inactive", user.id)

        claimed = self.repo.conditional_update(
            user.id,
            [User.email_verification_token == digest],
            {
                User.email_verification_token: None,
                User.email_verified_at: self._clock(),
            },
        )
        if not claimed:
            raise self._reject("email_verification", "already_redeemed", user.id)

        self.db.commit()
        self.db.refresh(user)
        logger.info("email_verified", user_id=user.id)
        return user

    # ============= PASSWORD RESET =============

    def issue_password_reset(self, user_id: int, ttl_minutes: Optional[int] = None) -> str:
        token = generate_secure_token()
        if ttl_minutes is None:
            ttl_minutes = self.reset_ttl_minutes
        expires_at = self._clock() + timedelta(minutes=ttl_minutes)

        updated = self.repo.update_fields(
            user_id,
            {
                User.password_reset_token: hash_token(token),
                User.password_reset_expires: expires_at,
            },
        )
        if not updated:
            raise AccountNotFound()
        self.db.commit()

        logger.info("password_reset_token_issued", user_id=user_id, expires_at=expires_at.isoformat())
        return token

    def _claim_password_reset(self, token: str) -> User:
        if not token:
            raise self._reject("password_reset", "empty")

        digest = hash_token(token)
        user = self.repo.get_by_side_token(User.password_reset_token, digest)
        if user is None:
            raise self._reject("password_reset", "not_found")
        if not user.is_active:
            raise self._reject("password_reset", "inactive", user.id)

        now = self._clock()
        if user.password_reset_expires is None or user.password_reset_expires <= now:
            raise self._reject("password_reset", "expired", user.id)

        claimed = self.repo.conditional_update(
            user.id,
            [
                User.password_reset_token == digest,
                User.password_reset_expires > now,
            ],
            {
                User.password_reset_token: None,
                User.password_reset_expires: None,
            },
        )
        if not claimed:
            raise self._reject("password_reset", "already_redeemed", user.id)
        return user

    def redeem_password_reset(self, token: str) -> User:
        """Consume a reset token; a second redemption of the same token fails."""
        user = self._claim_password_reset(token)
        self.db.commit()
        self.db.refresh(user)
        return user

    def reset_password(self, token: str, new_password: str) -> User:
        """Consume the token, set the new password, clear lockout and kill every existing session."""
        # Hash first so a rejected password does not burn the token.
        new_hash = hash_password(new_password)
        user = self._claim_password_reset(token)

        self.repo.update_fields(
            user.id,
            {
                User.password_hash: new_hash,
                User.login_attempts: 0,
                User.locked_until: None,
            },
        )
        bump_token_version(self.db, user.id, reason="password_reset", commit=False)
        self.db.commit()
        self.db.refresh(user)

        logger.info("password_reset_completed", user_id=user.id)
        return user
