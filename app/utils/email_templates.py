from datetime import datetime
from html import escape
from typing import Optional

from app.core.config import settings


def _layout(title: str, body: str) -> str:
    current_year = datetime.utcnow().year
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #1F4E79; color: white; padding: 20px; text-align: center; }}
            .button {{ background: #1F4E79; color: #fff; padding: 10px 16px; text-decoration: none; border-radius: 4px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>{escape(settings.EMAILS_FROM_NAME)}</h1>
                <p>{title}</p>
            </div>
            {body}
            <p>&copy; {current_year} {escape(settings.EMAILS_FROM_NAME)}</p>
        </div>
    </body>
    </html>
    """


def email_verification_template(name: str, token: str):
    """HTML email template for email address verification."""
    verify_link = f"{settings.FRONTEND_URL}/verify-email?token={token}"
    return _layout(
        "Verify Your Email",
        f"""
            <p>Hello {escape(name)},</p>
            <p>Please confirm your email address to finish setting up your account.</p>
            <p><a href="{verify_link}" class="button">Verify Email</a></p>
            <p>If you did not create an account, you can ignore this email.</p>
        """,
    )


def password_reset_template(name: str, reset_token: str, expires_minutes: int):
    """HTML email template for password reset."""
    reset_link = f"{settings.FRONTEND_URL}/reset-password?token={reset_token}"
    return _layout(
        "Password Reset Request",
        f"""
            <p>Hello {escape(name)},</p>
            <p>We received a request to reset your password.</p>
            <p><a href="{reset_link}" class="button">Reset Password</a></p>
            <p>This link expires in {expires_minutes} minutes and can only be used once.</p>
            <p>If you did not request this, you can ignore this email.</p>
        """,
    )


def password_changed_template(name: str, client_ip: Optional[str]):
    where = f" from {escape(client_ip)}" if client_ip else ""
    return _layout(
        "Password Changed",
        f"""
            <p>Hello {escape(name)},</p>
            <p>Your password was changed{where}. All existing sessions have been signed out.</p>
            <p>If this was not you, reset your password immediately and contact the school office.</p>
        """,
    )


def account_locked_template(name: str, locked_until: str):
    return _layout(
        "Account Temporarily Locked",
        f"""
            <p>Hello {escape(name)},</p>
            <p>Your account was locked after too many failed sign-in attempts.</p>
            <p>It unlocks automatically at <strong>{escape(locked_until)} UTC</strong>.</p>
            <p>If these attempts were not yours, consider resetting your password.</p>
        """,
    )


def account_unlocked_template(name: str, reason: str):
    return _layout(
        "Account Unlocked",
        f"""
            <p>Hello {escape(name)},</p>
            <p>Your account has been unlocked. Reason: {escape(reason)}</p>
            <p>You can sign in again now.</p>
        """,
    )
