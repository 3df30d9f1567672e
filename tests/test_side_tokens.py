import pytest
from sqlalchemy.orm import Session

from app.core.exceptions import SideTokenNotFoundOrExpired
from app.core.security import hash_password, hash_token, verify_password
from app.models.user import User, UserRole
from app.services.side_tokens import SideTokenService


def _create_user(db: Session, email: str = "side@example.com", **overrides) -> User:
    user = User(
        email=email,
        name="Side Token User",
        password_hash=hash_password("StrongPass1!"),
        role=UserRole.PARENT,
        **overrides,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def test_tokens_are_stored_as_digests(db_session: Session, clock):
    user = _create_user(db_session)
    service = SideTokenService(db_session, clock=clock)

    token = service.issue_email_verification(user.id)
    db_session.refresh(user)

    assert len(token) == 64
    assert user.email_verification_token == hash_token(token)
    assert user.email_verification_token != token


def test_email_verification_redeems_once(db_session: Session, clock):
    user = _create_user(db_session)
    service = SideTokenService(db_session, clock=clock)
    token = service.issue_email_verification(user.id)

    verified = service.redeem_email_verification(token)
    assert verified.id == user.id
    assert verified.email_verified_at == clock()
    assert verified.email_verification_token is None

    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_email_verification(token)


def test_reissued_verification_token_replaces_old_one(db_session: Session, clock):
    user = _create_user(db_session)
    service = SideTokenService(db_session, clock=clock)
    first = service.issue_email_verification(user.id)
    second = service.issue_email_verification(user.id)

    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_email_verification(first)
    assert service.redeem_email_verification(second).id == user.id


def test_password_reset_token_redeems_once(db_session: Session, clock):
    user = _create_user(db_session)
    service = SideTokenService(db_session, clock=clock, reset_ttl_minutes=60)
    token = service.issue_password_reset(user.id)

    assert service.redeem_password_reset(token).id == user.id
    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_password_reset(token)


def test_password_reset_token_expires(db_session: Session, clock):
    user = _create_user(db_session)
    service = SideTokenService(db_session, clock=clock, reset_ttl_minutes=60)
    token = service.issue_password_reset(user.id)

    clock.advance(minutes=61)

    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_password_reset(token)


def test_zero_minute_reset_token_is_already_expired(db_session: Session, clock):
    user = _create_user(db_session)
    service = SideTokenService(db_session, clock=clock, reset_ttl_minutes=0)
    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_password_reset(service.issue_password_reset(user.id))

    service = SideTokenService(db_session, clock=clock, reset_ttl_minutes=60)
    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_password_reset(service.issue_password_reset(user.id, ttl_minutes=0))


def test_inactive_account_cannot_redeem(db_session: Session, clock):
    user = _create_user(db_session, is_active=False)
    service = SideTokenService(db_session, clock=clock)
    token = service.issue_password_reset(user.id)

    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_password_reset(token)


@pytest.mark.parametrize("token", ["", "unknown-token"])
def test_unknown_tokens_are_rejected(db_session: Session, clock, token):
    service = SideTokenService(db_session, clock=clock)

    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_email_verification(token)
    with pytest.raises(SideTokenNotFoundOrExpired):
        service.redeem_password_reset(token)


def test_reset_password_sets_hash_and_bumps_version(db_session: Session, clock):
    user = _create_user(db_session, login_attempts=5)
    service = SideTokenService(db_session, clock=clock)
    token = service.issue_password_reset(user.id)

    updated = service.reset_password(token, "NewStrong2@")

    assert verify_password("NewStrong2@", updated.password_hash)
    assert updated.token_version == 1
    assert updated.login_attempts == 0
    assert updated.password_reset_token is None
    assert updated.password_reset_expires is None

    with pytest.raises(SideTokenNotFoundOrExpired):
        service.reset_password(token, "Another3#Pass")
