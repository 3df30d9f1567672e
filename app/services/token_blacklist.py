from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, from_epoch, utcnow
from app.core.tokens import TokenCodec, TokenPayload
from app.repositories.revocations import RevocationRepository

logger = structlog.get_logger()


class RevocationStore:
    """Explicit per-token revocation keyed by ``jti``.

    Entries only need to live until the token's own expiry; after that the
    codec rejects the token anyway and ``sweep_expired`` removes the row.
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.repo = RevocationRepository(db)
        self._clock = clock

    def revoke(self, token: str, reason: str = "logout") -> bool:
        """Revoke a token that was already verified upstream.

        Returns True when a new entry was written; a duplicate revoke is a no-op.
        """
        claims = TokenCodec.decode_unverified(token)
        if not claims:
            logger.warning("token_revoke_skipped", reason=reason, cause="undecodable")
            return False

        jti = claims.get("jti")
        user_id = claims.get("sub")
        exp = claims.get("exp")
        if not jti or not user_id or not exp:
            logger.warning("token_revoke_skipped", reason=reason, cause="missing_claims")
            return False

        try:
            return self._insert(str(jti), int(user_id), from_epoch(exp), reason)
        except (TypeError, ValueError, OverflowError, OSError):
            logger.warning("token_revoke_skipped", reason=reason, cause="invalid_claims")
            return False

    def revoke_payload(self, payload: TokenPayload, reason: str = "logout") -> bool:
        return self._insert(payload.jti, payload.user_id, payload.expires_at, reason)

    def _insert(self, jti: str, user_id: int, expires_at, reason: str) -> bool:
        if self.repo.exists(jti):
            return False

        self.repo.insert_entry(jti=jti, user_id=user_id, expires_at=expires_at, reason=reason)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent revoke of the same jti won the insert.
            self.db.rollback()
            return False

        logger.info("token_revoked", user_id=user_id, jti=jti, reason=reason, expires_at=expires_at.isoformat())
        return True

    def is_revoked(self, token: str) -> bool:
        claims = TokenCodec.decode_unverified(token)
        jti: Optional[str] = claims.get("jti") if claims else None
        if not jti:
            return False
        return self.is_jti_revoked(str(jti))

    def is_jti_revoked(self, jti: str) -> bool:
        return self.repo.is_present(jti, self._clock())

    def sweep_expired(self) -> int:
        deleted = self.repo.delete_expired(self._clock())
        self.db.commit()
        if deleted:
            logger.info("revocation_sweep_completed", deleted=deleted)
        return deleted
