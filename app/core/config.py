from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from typing import List, Optional
import json
import ipaddress


PLACEHOLDER_SECRET_MARKERS = ("your-secret-key-here", "change-me", "changeme")


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "School Complaint & Visit API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str = "sqlite:///./school_portal.db"

    # Session tokens
    JWT_SECRET: str
    JWT_REFRESH_SECRET: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    JWT_ISSUER: str = "school-complaint-system"
    JWT_AUDIENCE: str = "school-system-users"

    # Passwords
    BCRYPT_ROUNDS: int = 12

    # Login protection
    MAX_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCK_DURATION_MINUTES: int = 30
    MAX_ATTEMPTS_PER_IP: int = 20
    BRUTE_FORCE_WINDOW_MINUTES: int = 15

    # Side tokens
    PASSWORD_RESET_TOKEN_EXPIRE_MINUTES: int = 60

    # Per-route rate limits (slowapi)
    REGISTER_RATE_LIMIT: str = "5/minute"
    FORGOT_PASSWORD_RATE_LIMIT: str = "5/minute"
    RESEND_VERIFICATION_RATE_LIMIT: str = "3/minute"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Email
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAILS_FROM_EMAIL: str = ""
    EMAILS_FROM_NAME: str = "School Portal"
    EMAILS_FROM_SECURITY: str = ""

    # Environment
    ENVIRONMENT: str = "development"
    ENV: Optional[str] = Field(default=None)

    DEBUG: bool = False

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Monitoring
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue)
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # Admin bootstrap
    DEFAULT_ADMIN_EMAIL: str = "admin@school-portal.example.com"
    DEFAULT_ADMIN_PASSWORD: str = ""

    # Proxies
    TRUST_PROXY_HEADERS: bool = True
    TRUSTED_PROXY_IPS: str = "127.0.0.1,::1"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator(
        "MAX_LOGIN_ATTEMPTS",
        "ACCOUNT_LOCK_DURATION_MINUTES",
        "MAX_ATTEMPTS_PER_IP",
        "BRUTE_FORCE_WINDOW_MINUTES",
        "PASSWORD_RESET_TOKEN_EXPIRE_MINUTES",
    )
    @classmethod
    def require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("JWT_SECRET", "JWT_REFRESH_SECRET")
    @classmethod
    def require_secret(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("JWT secrets must not be empty")
        return value

    @classmethod
    def _parse_ip_list(cls, value) -> List[str]:
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            if raw.startswith("["):
                try:
                    parsed = json.loads(raw)
                    if isinstance(parsed, list):
                        return parsed
                except json.JSONDecodeError as exc:
                    raise ValueError("IP lists must be valid JSON or comma-separated IPs") from exc
            return [ip.strip() for ip in raw.split(",")]
        if isinstance(value, list):
            return [str(ip).strip() for ip in value if str(ip).strip()]
        return value

    @field_validator("TRUSTED_PROXY_IPS")
    @classmethod
    def validate_trusted_proxy_ip_format(cls, value: str) -> str:
        normalized = cls._parse_ip_list(value)
        for ip in normalized:
            try:
                ipaddress.ip_address(ip)
            except ValueError as exc:
                raise ValueError(f"Invalid proxy IP address: {ip}") from exc
        return ",".join(normalized)

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT != "production":
            return self
        for name in ("JWT_SECRET", "JWT_REFRESH_SECRET"):
            secret = getattr(self, name)
            if len(secret) < 32 or any(marker in secret.lower() for marker in PLACEHOLDER_SECRET_MARKERS):
                raise ValueError(f"{name} must be at least 32 chars and not use placeholders in production")
        if self.JWT_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        return self

    @property
    def trusted_proxy_ips(self) -> List[str]:
        return self._parse_ip_list(self.TRUSTED_PROXY_IPS)

    def is_trusted_proxy(self, ip: str | None) -> bool:
        if not ip:
            return False
        if ip in {"127.0.0.1", "::1"}:
            return True
        return ip in self.trusted_proxy_ips

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
