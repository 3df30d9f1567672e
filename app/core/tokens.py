"""Signed session tokens (access + refresh JWT pair).

Access and refresh tokens are signed with distinct secrets. Verification pins
the configured algorithm and never reads it from the token header, so an
``alg: none`` or algorithm-confusion token fails signature checking.
"""
import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from app.core.clock import Clock, from_epoch, to_epoch, utcnow
from app.core.config import settings
from app.core.exceptions import ExpiredToken, MalformedToken, WrongTokenType

logger = structlog.get_logger()


class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


@dataclass(frozen=True)
class TokenPayload:
    user_id: int
    role: str
    token_version: int
    token_type: TokenType
    jti: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "TokenPayload":
        try:
            return cls(
                user_id=int(claims["sub"]),
                role=str(claims["role"]),
                token_version=int(claims["token_version"]),
                token_type=TokenType(claims["type"]),
                jti=str(claims["jti"]),
                issued_at=from_epoch(claims["iat"]),
                expires_at=from_epoch(claims["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedToken() from exc


class TokenCodec:
    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        issuer: str,
        audience: str,
        algorithm: str = "HS256",
        clock: Clock = utcnow,
    ):
        self._secrets = {
            TokenType.ACCESS: access_secret,
            TokenType.REFRESH: refresh_secret,
        }
        self._ttls = {
            TokenType.ACCESS: access_ttl,
            TokenType.REFRESH: refresh_ttl,
        }
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, clock: Clock = utcnow) -> "TokenCodec":
        return cls(
            access_secret=settings.JWT_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            algorithm=settings.ALGORITHM,
            clock=clock,
        )

    def ttl(self, token_type: TokenType) -> timedelta:
        return self._ttls[token_type]

    def issue(self, user, token_type: TokenType) -> str:
        issued_at = self._clock()
        claims = {
            "sub": str(user.id),
            "role": _role_value(user.role),
            "token_version": int(user.token_version or 0),
            "type": token_type.value,
            "jti": uuid.uuid4().hex,
            "iat": to_epoch(issued_at),
            "exp": to_epoch(issued_at + self._ttls[token_type]),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(claims, self._secrets[token_type], algorithm=self.algorithm)

    def issue_pair(self, user) -> TokenPair:
        return TokenPair(
            access_token=self.issue(user, TokenType.ACCESS),
            refresh_token=self.issue(user, TokenType.REFRESH),
        )

    def _decode(self, token: str, token_type: TokenType) -> Dict[str, Any]:
        return jwt.decode(
            token,
            self._secrets[token_type],
            algorithms=[self.algorithm],
            audience=self.audience,
            issuer=self.issuer,
        )

    def verify(self, token: str, expected_type: TokenType) -> TokenPayload:
        """Check signature, expiry, issuer/audience and type; raise on any failure."""
        if not token:
            raise MalformedToken()

        try:
            claims = self._decode(token, expected_type)
        except ExpiredSignatureError as exc:
            raise ExpiredToken() from exc
        except JWTClaimsError as exc:
            logger.warning("token_claims_rejected", expected_type=expected_type.value, error=str(exc))
            raise MalformedToken() from exc
        except JWTError as exc:
            if self._verifies_as(token, _other(expected_type)):
                logger.warning("token_type_mismatch", expected_type=expected_type.value)
                raise WrongTokenType() from exc
            logger.warning("token_verification_failed", expected_type=expected_type.value, error=str(exc))
            raise MalformedToken() from exc

        # Guards against deployments that share one secret for both types.
        if claims.get("type") != expected_type.value:
            logger.warning("token_type_mismatch", expected_type=expected_type.value)
            raise WrongTokenType()

        return TokenPayload.from_claims(claims)

    def _verifies_as(self, token: str, token_type: TokenType) -> bool:
        try:
            self._decode(token, token_type)
        except ExpiredSignatureError:
            return True
        except JWTError:
            return False
        return True

    @staticmethod
    def decode_unverified(token: str) -> Optional[Dict[str, Any]]:
        """Read claims without checking the signature.

        Only for bookkeeping on tokens that were verified upstream (for
        example building a revocation entry). Never authorize from this.
        """
        if not token:
            return None
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            return None


def _other(token_type: TokenType) -> TokenType:
    return TokenType.REFRESH if token_type == TokenType.ACCESS else TokenType.ACCESS


def _role_value(role) -> str:
    return role.value if isinstance(role, enum.Enum) else str(role)
