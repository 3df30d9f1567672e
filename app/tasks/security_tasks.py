from celery import shared_task
import structlog

from app.db.session import SessionLocal
from app.services.token_blacklist import RevocationStore

logger = structlog.get_logger(__name__)


@shared_task(bind=True, max_retries=3)
def cleanup_expired_revocations(self):
    """Delete revocation entries whose token has expired anyway, keeping the table bounded."""
    db = SessionLocal()
    try:
        deleted = RevocationStore(db).sweep_expired()
        logger.info("revocation_cleanup_task_completed", deleted=deleted)
        return {"deleted": deleted}
    except Exception as exc:
        db.rollback()
        logger.exception("revocation_sweep_failed", error=str(exc))
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
