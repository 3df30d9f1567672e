from typing import Optional

import structlog
from celery import Task

from app.core.celery_app import celery_app
from app.utils.email import _send_email_smtp, build_email
from app.utils.email_templates import (
    account_locked_template,
    account_unlocked_template,
    email_verification_template,
    password_changed_template,
    password_reset_template,
)

logger = structlog.get_logger(__name__)


# -------------------------------
# Base Task (Retry-safe)
# -------------------------------
class EmailTask(Task):
    """
    Base email task with retries and backoff.
    Prevents email loss on temporary SMTP failures.
    """
    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True
    acks_late = True


def _deliver(task: Task, event: str, *, to: str, subject: str, text: str, html: str) -> None:
    try:
        _send_email_smtp(build_email(to=to, subject=subject, text=text, html=html))
        logger.info(event, email=to)
    except Exception as exc:
        logger.exception(f"{event}_error", email=to, error=str(exc))
        raise task.retry(exc=exc)


# -------------------------------
# Email Verification
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_email_verification(self, user_email: str, name: str, token: str):
    _deliver(
        self,
        "email_verification_sent",
        to=user_email,
        subject="Verify your email address",
        text="Open the link in this email to verify your address.",
        html=email_verification_template(name, token),
    )


# -------------------------------
# Password Reset
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_password_reset(self, user_email: str, name: str, reset_token: str, expires_minutes: int):
    _deliver(
        self,
        "password_reset_sent",
        to=user_email,
        subject="Reset your password",
        text=f"Open the link in this email to reset your password. It expires in {expires_minutes} minutes.",
        html=password_reset_template(name, reset_token, expires_minutes),
    )


# -------------------------------
# Password Changed
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_password_changed(self, user_email: str, name: str, client_ip: Optional[str] = None):
    _deliver(
        self,
        "password_changed_sent",
        to=user_email,
        subject="Your password was changed",
        text="Your password was changed and all sessions were signed out.",
        html=password_changed_template(name, client_ip),
    )


# -------------------------------
# Account Locked / Unlocked
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_account_locked(self, user_email: str, name: str, locked_until: str):
    _deliver(
        self,
        "account_locked_sent",
        to=user_email,
        subject="Your account was locked",
        text=f"Your account is locked until {locked_until} UTC after repeated failed sign-ins.",
        html=account_locked_template(name, locked_until),
    )


@celery_app.task(base=EmailTask, bind=True)
def send_account_unlocked(self, user_email: str, name: str, reason: str):
    _deliver(
        self,
        "account_unlocked_sent",
        to=user_email,
        subject="Your account was unlocked",
        text="Your account has been unlocked. You can sign in again.",
        html=account_unlocked_template(name, reason),
    )
