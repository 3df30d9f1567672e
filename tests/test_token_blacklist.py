from datetime import timedelta

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hash_password
from app.core.tokens import TokenCodec, TokenType
from app.models.token_blacklist import TokenBlacklist
from app.models.user import User, UserRole
from app.services.token_blacklist import RevocationStore


def _create_user(db: Session, email: str = "revoke@example.com") -> User:
    user = User(
        email=email,
        name="Revocation User",
        password_hash=hash_password("StrongPass1!"),
        role=UserRole.PARENT,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def test_revoked_token_is_reported_revoked(db_session: Session):
    user = _create_user(db_session)
    token = TokenCodec.from_settings().issue(user, TokenType.ACCESS)
    store = RevocationStore(db_session)

    assert store.is_revoked(token) is False
    assert store.revoke(token, reason="logout") is True
    assert store.is_revoked(token) is True


def test_revoking_twice_is_a_no_op(db_session: Session):
    user = _create_user(db_session)
    token = TokenCodec.from_settings().issue(user, TokenType.ACCESS)
    store = RevocationStore(db_session)

    assert store.revoke(token) is True
    assert store.revoke(token) is False
    assert db_session.query(TokenBlacklist).count() == 1
    assert store.is_revoked(token) is True


def test_entry_expires_with_the_token(db_session: Session, clock):
    user = _create_user(db_session)
    codec = TokenCodec.from_settings(clock)
    payload = codec.verify(codec.issue(user, TokenType.ACCESS), TokenType.ACCESS)
    store = RevocationStore(db_session, clock)

    store.revoke_payload(payload, reason="security")
    entry = db_session.query(TokenBlacklist).one()
    assert entry.expires_at == payload.expires_at
    assert entry.reason == "security"

    clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES + 1)
    assert store.is_jti_revoked(payload.jti) is False


def test_sweep_deletes_only_expired_entries(db_session: Session, clock):
    user = _create_user(db_session)
    store = RevocationStore(db_session, clock)
    db_session.add_all(
        [
            TokenBlacklist(jti="expired-jti", user_id=user.id, expires_at=clock() - timedelta(minutes=1), reason="logout"),
            TokenBlacklist(jti="live-jti", user_id=user.id, expires_at=clock() + timedelta(hours=1), reason="logout"),
        ]
    )
    db_session.commit()

    assert store.sweep_expired() == 1
    remaining = [entry.jti for entry in db_session.query(TokenBlacklist).all()]
    assert remaining == ["live-jti"]


def test_undecodable_token_is_skipped(db_session: Session):
    assert RevocationStore(db_session).revoke("not-a-token") is False
    assert db_session.query(TokenBlacklist).count() == 0
