"""Rate limiting for the public storefront and admin routes.

Requests are keyed by client IP. With ``trust_forwarded_for`` set, the
first ``X-Forwarded-For`` hop added by the reverse proxy is the shopper.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from storefront.core.config import settings


def client_ip(request: Request) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request) or "unknown"


limiter = Limiter(key_func=client_ip, enabled=settings.rate_limit_enabled)
