import structlog
import ipaddress
from typing import Callable, List, Optional, Tuple

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import MalformedToken
from app.core.tokens import TokenCodec
from app.db.session import get_db
from app.models.user import User, UserRole
from app.services.auth_service import AccountContext, AuthService
from app.services.brute_force import BruteForceCounter
from app.services.notifier import CeleryNotifier

logger = structlog.get_logger()


def get_real_client_ip(request: Request) -> Tuple[Optional[str], List[str]]:
    """Return client IP and full proxy chain if provided."""
    direct_ip = request.client.host if request.client else None
    trust_proxy_headers = (
        settings.ENVIRONMENT == "production"
        and settings.TRUST_PROXY_HEADERS
        and settings.is_trusted_proxy(direct_ip)
    )

    if not trust_proxy_headers:
        return direct_ip, []

    chain: List[str] = []
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        chain = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]

    # RFC7239 fallback
    forwarded = request.headers.get("Forwarded")
    if forwarded and not chain:
        for part in (segment.strip() for segment in forwarded.split(";")):
            if part.lower().startswith("for="):
                chain.append(part.split("=", 1)[1].strip().strip('"'))

    for candidate in chain:
        try:
            ipaddress.ip_address(candidate)
            return candidate, chain
        except ValueError:
            continue

    return direct_ip, chain


def get_client_ip(request: Request) -> str:
    client_ip, _ = get_real_client_ip(request)
    return client_ip or "unknown"


def get_notifier() -> CeleryNotifier:
    return CeleryNotifier()


def get_brute_force_counter(request: Request) -> BruteForceCounter:
    return request.app.state.brute_force_counter


def get_token_codec() -> TokenCodec:
    return TokenCodec.from_settings()


def get_auth_service(
    db: Session = Depends(get_db),
    brute_force: BruteForceCounter = Depends(get_brute_force_counter),
    notifier: CeleryNotifier = Depends(get_notifier),
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthService:
    return AuthService(db, brute_force=brute_force, codec=codec, notifier=notifier)


def get_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MalformedToken("Not authenticated")
    return token.strip()


def get_current_context(
    request: Request,
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> AccountContext:
    """Run the full authentication gate for the bearer token on this request."""
    context = service.authenticate(token)
    request.state.user_id = context.user_id
    return context


def get_current_user(context: AccountContext = Depends(get_current_context)) -> User:
    return context.user


def require_roles(*roles: UserRole) -> Callable[..., User]:
    allowed = frozenset(roles)

    def dependency(
        request: Request,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in allowed:
            logger.warning(
                "role_access_denied",
                action=f"{request.method} {request.url.path}",
                user_id=current_user.id,
                role=current_user.role.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return dependency


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    client_ip, ip_chain = get_real_client_ip(request)
    logger.info(
        "admin_action",
        action=f"{request.method} {request.url.path}",
        admin_user_id=current_user.id,
        client_ip=client_ip,
        ip_chain=ip_chain,
    )
    return current_user
