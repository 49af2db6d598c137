"""
Inbound rate limiting using slowapi.

Ranking requests fan out into many upstream searches, so callers are limited
per tenant (the X-Organization-Id header) and, for requests without a
tenant, per client IP.

Rate Limits:
- Rankings: settings.rate_limit_rankings (default 20/minute)
- Default: settings.rate_limit_default (default 100/minute)
"""

import ipaddress
import logging
import re

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

TENANT_HEADER = "x-organization-id"

# Simple pattern to quickly reject obviously invalid IPs before parsing
_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")


def _is_valid_ip(value: str) -> bool:
    """Return True if *value* looks like a valid IPv4 or IPv6 address."""
    if not _IP_LIKE.match(value):
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _is_private_ip(value: str) -> bool:
    """Return True if *value* is a private, loopback, or link-local address.

    Private IPs in X-Forwarded-For can be spoofed to share someone else's
    bucket, so they are ignored.
    """
    try:
        addr = ipaddress.ip_address(value)
        return addr.is_private or addr.is_loopback or addr.is_link_local
    except ValueError:
        return False


def _get_real_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the remote address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First entry is the client
        candidate = forwarded.split(",")[0].strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    return get_remote_address(request)


def get_rate_limit_key(request: Request) -> str:
    """Tenant-scoped key when the tenant header is present, else client IP."""
    tenant_id = request.headers.get(TENANT_HEADER, "").strip()
    if tenant_id:
        return f"tenant:{tenant_id}"
    return f"ip:{_get_real_ip(request)}"


# Format: "count/period" where period can be: second, minute, hour, day
RATE_LIMITS = {
    "rankings": settings.rate_limit_rankings,
    "default": settings.rate_limit_default,
}

if settings.rate_limit_storage_uri.startswith("memory://") and settings.is_production:
    logger.warning(
        "Rate limiter using in-memory storage; limits are per process, not global"
    )

limiter = Limiter(
    key_func=get_rate_limit_key,
    storage_uri=settings.rate_limit_storage_uri,
    default_limits=[RATE_LIMITS["default"]],
)


def get_rate_limit(endpoint: str) -> str:
    """
    Get rate limit configuration for a specific endpoint.

    Example:
        >>> get_rate_limit("rankings")
        "20/minute"
        >>> get_rate_limit("unknown")
        "100/minute"
    """
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
