from slowapi import Limiter

from app.api.deps import get_client_ip

# Coarse per-route limits on unauthenticated endpoints (register, forgot
# password). Login throttling is handled by the brute-force counter and the
# per-account lockout instead. Keyed by the same trusted client address.
limiter = Limiter(key_func=get_client_ip)
