"""Per-client rate limiting for the payment endpoints (SlowAPI)."""
from fastapi import Request
from slowapi import Limiter

from .config import settings


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def payment_rate_limit() -> str:
    """Initiations allowed per client per minute, read at request time."""
    return f"{settings.rate_limit_payment_per_minute}/minute"


limiter = Limiter(key_func=get_client_ip)
