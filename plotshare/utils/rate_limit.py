import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def get_real_ip(request: Request) -> str:
    """Extract the client IP, respecting TRUSTED_PROXY_COUNT.

    With TRUSTED_PROXY_COUNT=0 (default) X-Forwarded-For is ignored and the
    direct connection IP is used. Otherwise the address at position
    len(ips) - TRUSTED_PROXY_COUNT is taken, so clients cannot spoof it.
    """
    trusted_proxy_count = int(os.getenv("TRUSTED_PROXY_COUNT", "0"))
    if trusted_proxy_count > 0:
        forwarded = request.headers.get("X-Forwarded-For", "")
        if forwarded:
            ips = [ip.strip() for ip in forwarded.split(",")]
            return ips[max(0, len(ips) - trusted_proxy_count)]
    return get_remote_address(request)


_is_dev = os.getenv("APP_ENV", "development") == "development"

limiter = Limiter(
    key_func=get_real_ip,
    default_limits=["200/minute" if _is_dev else "60/minute"],
)

# Filing and posting write to the thread of another user; keep them tight
DISPUTE_WRITE_RATE_LIMIT = "30/minute" if _is_dev else "10/minute"
LIST_RATE_LIMIT = "100/minute" if _is_dev else "30/minute"
STAFF_RATE_LIMIT = "120/minute" if _is_dev else "60/minute"
