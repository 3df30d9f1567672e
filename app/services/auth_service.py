"""Authentication gate and login orchestration.

Request-time order is fixed: verify signature/expiry/type, then the
revocation list, then the token version, then account state. On login the
brute-force counter and the account lock are both consulted before any
password comparison runs.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

import structlog
from fastapi import status
from sqlalchemy.orm import Session

from app.core.clock import Clock, utcnow
from app.core.exceptions import (
    AccountInactive,
    AccountLocked,
    AccountNotFound,
    APIError,
    AuthError,
    AuthErrorKind,
    BruteForceSuspected,
    InvalidCredentials,
    MalformedToken,
    RevokedToken,
    StaleTokenVersion,
)
from app.core.security import burn_password_check, hash_password, verify_password
from app.core.tokens import TokenCodec, TokenPair, TokenPayload, TokenType
from app.models.user import User, UserRole
from app.repositories.accounts import AccountRepository
from app.repositories.revocations import RevocationRepository
from app.services.brute_force import BruteForceCounter
from app.services.lockout import LockState, LoginLockout
from app.services.side_tokens import SideTokenService
from app.services.token_blacklist import RevocationStore
from app.services.token_version import bump_token_version

logger = structlog.get_logger()


@dataclass(frozen=True)
class AccountContext:
    user: User
    token: TokenPayload

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def role(self) -> str:
        return self.user.role.value


@dataclass(frozen=True)
class LoginPermission:
    allowed: bool
    retry_after: Optional[timedelta] = None
    reason: Optional[AuthErrorKind] = None


class AuthService:
    def __init__(
        self,
        db: Session,
        *,
        brute_force: BruteForceCounter,
        codec: Optional[TokenCodec] = None,
        lockout: Optional[LoginLockout] = None,
        notifier=None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.accounts = AccountRepository(db)
        self.codec = codec or TokenCodec.from_settings(clock)
        self.revocations = RevocationStore(db, clock)
        self.lockout = lockout or LoginLockout(db, clock=clock)
        self.side_tokens = SideTokenService(db, clock=clock)
        self.brute_force = brute_force
        self.notifier = notifier
        self._clock = clock

    # ============= SESSIONS =============

    def issue_session_pair(self, user: User) -> TokenPair:
        pair = self.codec.issue_pair(user)
        logger.info("session_issued", user_id=user.id, role=user.role.value, token_version=user.token_version)
        return pair

    def _gate(self, payload: TokenPayload) -> User:
        if self.revocations.is_jti_revoked(payload.jti):
            raise RevokedToken()

        user = self.accounts.get_by_id(payload.user_id)
        if user is None:
            raise MalformedToken("Invalid authentication credentials")

        if payload.token_version != user.token_version:
            raise StaleTokenVersion()

        if not user.is_active:
            raise AccountInactive()

        self.lockout.ensure_unlocked(user)
        return user

    def _verify_and_gate(self, raw_token: str, token_type: TokenType) -> Tuple[TokenPayload, User]:
        payload = self.codec.verify(raw_token, token_type)
        try:
            user = self._gate(payload)
        except AuthError as exc:
            logger.info(
                "authentication_rejected",
                kind=exc.kind.value,
                token_type=token_type.value,
                user_id=payload.user_id,
                jti=payload.jti,
            )
            raise
        return payload, user

    def authenticate(self, raw_token: str) -> AccountContext:
        payload, user = self._verify_and_gate(raw_token, TokenType.ACCESS)
        return AccountContext(user=user, token=payload)

    def refresh(self, raw_refresh_token: str) -> str:
        """Exchange a refresh token for a new access token."""
        _, user = self._verify_and_gate(raw_refresh_token, TokenType.REFRESH)
        access_token = self.codec.issue(user, TokenType.ACCESS)
        logger.info("access_token_refreshed", user_id=user.id)
        return access_token

    def logout(self, raw_access_token: str, raw_refresh_token: Optional[str] = None) -> None:
        """Revoke the (already authenticated) access token and, if valid, its refresh token."""
        self.revocations.revoke(raw_access_token, reason="logout")

        if not raw_refresh_token:
            return
        try:
            refresh_payload = self.codec.verify(raw_refresh_token, TokenType.REFRESH)
        except AuthError as exc:
            logger.info("logout_refresh_token_ignored", kind=exc.kind.value)
            return
        self.revocations.revoke_payload(refresh_payload, reason="logout")

    def logout_all_devices(self, user_id: int, reason: str = "logout_all") -> int:
        return bump_token_version(self.db, user_id, reason=reason)

    # ============= LOGIN =============

    def _permission(self, address: str, user: Optional[User]) -> LoginPermission:
        if self.brute_force.record_and_check(address):
            return LoginPermission(
                allowed=False,
                retry_after=self.brute_force.retry_after(address),
                reason=AuthErrorKind.BRUTE_FORCE_SUSPECTED,
            )

        if user is not None:
            state = self.lockout.state(user)
            if state.is_locked:
                return LoginPermission(
                    allowed=False,
                    retry_after=state.retry_after,
                    reason=AuthErrorKind.ACCOUNT_LOCKED,
                )

        return LoginPermission(allowed=True)

    def check_login_allowed(self, address: str, email: str) -> LoginPermission:
        """Record a login attempt from ``address`` and decide whether it may proceed."""
        return self._permission(address, self.accounts.get_by_email(email))

    def record_login_outcome(self, user_id: int, success: bool, address: Optional[str] = None) -> Optional[LockState]:
        if success:
            self.lockout.record_success(user_id, address=address)
            return None

        state = self.lockout.record_failure(user_id, address=address)
        if state is not None and state.newly_locked and self.notifier is not None:
            user = self.accounts.get_by_id(user_id)
            if user is not None:
                self.notifier.account_locked(email=user.email, name=user.name, locked_until=state.locked_until)
        return state

    def login(self, email: str, password: str, address: str) -> Tuple[User, TokenPair]:
        user = self.accounts.get_by_email(email)

        permission = self._permission(address, user)
        if not permission.allowed:
            # Locked and wrong-password responses take the same bcrypt time.
            burn_password_check(password)
            logger.warning(
                "login_blocked",
                reason=permission.reason.value,
                email=email,
                user_id=user.id if user else None,
                client_ip=address,
                attempts=user.login_attempts if user else None,
            )
            if permission.reason == AuthErrorKind.BRUTE_FORCE_SUSPECTED:
                raise BruteForceSuspected(retry_after=permission.retry_after)
            raise AccountLocked(retry_after=permission.retry_after)

        if user is None:
            burn_password_check(password)
            logger.warning("login_failed", cause="unknown_email", email=email, client_ip=address)
            raise InvalidCredentials()

        if not verify_password(password, user.password_hash):
            self.record_login_outcome(user.id, False, address)
            raise InvalidCredentials()

        if not user.is_active:
            logger.warning("login_failed", cause="inactive", user_id=user.id, client_ip=address)
            raise AccountInactive()

        self.record_login_outcome(user.id, True, address)
        self.db.refresh(user)
        return user, self.issue_session_pair(user)

    # ============= PASSWORDS =============

    def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        address: Optional[str] = None,
    ) -> User:
        self.lockout.ensure_unlocked(user)

        if not verify_password(current_password, user.password_hash):
            self.record_login_outcome(user.id, False, address)
            raise InvalidCredentials("Current password is incorrect")

        if verify_password(new_password, user.password_hash):
            raise APIError(
                status_code=status.HTTP_400_BAD_REQUEST,
                message="New password must differ from the current password",
            )

        self.accounts.update_fields(
            user.id,
            {
                User.password_hash: hash_password(new_password),
                User.login_attempts: 0,
                User.locked_until: None,
            },
        )
        bump_token_version(self.db, user.id, reason="password_change", commit=False)
        self.db.commit()
        self.db.refresh(user)

        logger.info("password_changed", user_id=user.id, client_ip=address)
        if self.notifier is not None:
            self.notifier.password_changed(email=user.email, name=user.name, client_ip=address)
        return user

    def request_password_reset(self, email: str, address: Optional[str] = None) -> Optional[str]:
        """Issue and mail a reset token. Unknown or inactive emails are only logged."""
        user = self.accounts.get_by_email(email)
        if user is None or not user.is_active:
            logger.warning("password_reset_requested_unknown_email", email=email, client_ip=address)
            return None

        token = self.side_tokens.issue_password_reset(user.id)
        if self.notifier is not None:
            self.notifier.password_reset(
                email=user.email,
                name=user.name,
                token=token,
                expires_minutes=self.side_tokens.reset_ttl_minutes,
            )
        return token

    def reset_password(self, token: str, new_password: str, address: Optional[str] = None) -> User:
        user = self.side_tokens.reset_password(token, new_password)
        if self.notifier is not None:
            self.notifier.password_changed(email=user.email, name=user.name, client_ip=address)
        return user

    # ============= EMAIL VERIFICATION =============

    def send_email_verification(self, user: User) -> str:
        token = self.side_tokens.issue_email_verification(user.id)
        if self.notifier is not None:
            self.notifier.email_verification(email=user.email, name=user.name, token=token)
        return token

    def verify_email(self, token: str) -> User:
        return self.side_tokens.redeem_email_verification(token)

    # ============= ADMINISTRATION =============

    def _require_account(self, user_id: int) -> User:
        user = self.accounts.get_by_id(user_id)
        if user is None:
            raise AccountNotFound()
        return user

    def deactivate_account(self, user_id: int) -> User:
        user = self._require_account(user_id)
        self.accounts.update_fields(user_id, {User.is_active: False})
        bump_token_version(self.db, user_id, reason="deactivated", commit=False)
        self.db.commit()
        self.db.refresh(user)
        logger.info("account_deactivated", user_id=user_id)
        return user

    def activate_account(self, user_id: int) -> User:
        user = self._require_account(user_id)
        self.accounts.update_fields(user_id, {User.is_active: True})
        self.db.commit()
        self.db.refresh(user)
        logger.info("account_activated", user_id=user_id)
        return user

    def unlock_account(self, user_id: int, reason: Optional[str] = None) -> User:
        user = self._require_account(user_id)
        if not self.lockout.state(user).is_locked:
            raise APIError(status_code=status.HTTP_400_BAD_REQUEST, message="Account is not locked")

        self.lockout.unlock(user_id)
        self.db.refresh(user)
        if self.notifier is not None:
            self.notifier.account_unlocked(email=user.email, name=user.name, reason=reason or "Unlocked by administrator")
        return user

    def auth_stats(self) -> Dict[str, Any]:
        now = self._clock()
        by_role = {
            role.value: self.accounts.count_where(User.role == role)
            for role in UserRole
        }
        return {
            "users": {
                "total": self.accounts.count_where(),
                "active": self.accounts.count_where(User.is_active.is_(True)),
                "verified": self.accounts.count_where(User.email_verified_at.isnot(None)),
                "locked": self.accounts.count_where(User.locked_until > now),
                "by_role": by_role,
            },
            "tokens": RevocationRepository(self.db).counts(now),
        }
