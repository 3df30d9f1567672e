import pytest
from sqlalchemy.orm import Session

from app.core.exceptions import AccountNotFound
from app.core.security import hash_password
from app.models.user import User, UserRole
from app.repositories.accounts import AccountRepository
from app.services.token_version import bump_token_version


def _create_user(db: Session, email: str = "version@example.com") -> User:
    user = User(
        email=email,
        name="Version User",
        password_hash=hash_password("StrongPass1!"),
        role=UserRole.PARENT,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def test_each_bump_increments_by_one(db_session: Session):
    user = _create_user(db_session)

    assert [bump_token_version(db_session, user.id) for _ in range(3)] == [1, 2, 3]
    db_session.refresh(user)
    assert user.token_version == 3


def test_bump_can_join_callers_transaction(db_session: Session):
    user = _create_user(db_session)

    assert bump_token_version(db_session, user.id, commit=False) == 1
    db_session.rollback()

    assert AccountRepository(db_session).scalar(user.id, User.token_version) == 0


def test_bump_for_missing_account_raises(db_session: Session):
    with pytest.raises(AccountNotFound):
        bump_token_version(db_session, 4242)


def test_only_counter_fields_can_be_incremented(db_session: Session):
    user = _create_user(db_session)

    with pytest.raises(ValueError):
        AccountRepository(db_session).atomic_increment(user.id, "role")
