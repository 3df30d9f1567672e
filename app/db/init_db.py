from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
import logging

from app.core.clock import utcnow
from app.core.config import settings
from app.core.security import hash_password
from app.db.base import Base
from app.models.user import User, UserRole
from app.repositories.accounts import normalize_email

logger = logging.getLogger(__name__)


def create_tables(bind: Engine) -> None:
    Base.metadata.create_all(bind=bind)


def init_db(db: Session) -> Optional[User]:
    """Seed the bootstrap admin account if it does not exist yet."""
    admin_email = normalize_email(settings.DEFAULT_ADMIN_EMAIL)
    admin = db.query(User).filter(User.email == admin_email).first()
    if admin:
        return admin

    seed_password = (settings.DEFAULT_ADMIN_PASSWORD or "").strip()
    if not seed_password:
        message = (
            "Missing admin bootstrap credentials: set DEFAULT_ADMIN_PASSWORD "
            "or create an admin user manually before launch."
        )
        if settings.ENVIRONMENT == "production":
            logger.error("%s env=%s", message, settings.ENVIRONMENT)
            raise RuntimeError(message)
        logger.warning("%s env=%s", message, settings.ENVIRONMENT)
        return None

    admin = User(
        email=admin_email,
        password_hash=hash_password(seed_password),
        name="Administrator",
        role=UserRole.ADMIN,
        is_active=True,
        email_verified_at=utcnow(),
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("admin_user_created email=%s", admin_email)
    return admin


if __name__ == "__main__":
    from app.db.session import SessionLocal, engine

    create_tables(engine)
    db = SessionLocal()
    try:
        init_db(db)
    finally:
        db.close()
