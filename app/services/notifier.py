"""Security notifications handed off to Celery.

Enqueue failures are logged and never propagate: the auth flow must not
depend on email delivery.
"""
from datetime import datetime
from typing import Optional

import structlog

logger = structlog.get_logger()


class CeleryNotifier:
    def _dispatch(self, task, **kwargs) -> None:
        try:
            result = task.delay(**kwargs)
        except Exception as exc:
            logger.exception("notification_enqueue_failed", task=task.name, error=str(exc))
            return
        logger.info("notification_queued", task=task.name, task_id=result.id)

    def email_verification(self, *, email: str, name: str, token: str) -> None:
        from app.tasks.email_tasks import send_email_verification

        self._dispatch(send_email_verification, user_email=email, name=name, token=token)

    def password_reset(self, *, email: str, name: str, token: str, expires_minutes: int) -> None:
        from app.tasks.email_tasks import send_password_reset

        self._dispatch(
            send_password_reset,
            user_email=email,
            name=name,
            reset_token=token,
            expires_minutes=expires_minutes,
        )

    def password_changed(self, *, email: str, name: str, client_ip: Optional[str]) -> None:
        from app.tasks.email_tasks import send_password_changed

        self._dispatch(send_password_changed, user_email=email, name=name, client_ip=client_ip)

    def account_locked(self, *, email: str, name: str, locked_until: datetime) -> None:
        from app.tasks.email_tasks import send_account_locked

        self._dispatch(
            send_account_locked,
            user_email=email,
            name=name,
            locked_until=locked_until.isoformat(),
        )

    def account_unlocked(self, *, email: str, name: str, reason: str) -> None:
        from app.tasks.email_tasks import send_account_unlocked

        self._dispatch(send_account_unlocked, user_email=email, name=name, reason=reason)
