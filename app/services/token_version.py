import structlog
from sqlalchemy.orm import Session

from app.core.exceptions import AccountNotFound
from app.repositories.accounts import AccountRepository

logger = structlog.get_logger()


def bump_token_version(db: Session, user_id: int, reason: str = "security", *, commit: bool = True) -> int:
    """
    Invalidate every outstanding token for a user at once.

    Issues one ``token_version = token_version + 1`` UPDATE, so racing callers
    each get their own increment.

    Args:
        db (Session): Database session
        user_id (int): Account whose sessions are invalidated
        reason (str): Audit reason (password_change, logout_all, deactivated, ...)
        commit (bool): Commit immediately; pass False to join the caller's transaction

    Returns:
        int: The new token version
    """
    new_version = AccountRepository(db).atomic_increment(user_id, "token_version")
    if new_version is None:
        raise AccountNotFound()

    if commit:
        db.commit()

    logger.info("token_version_bumped", user_id=user_id, token_version=new_version, reason=reason)
    return new_version
