"""
Middleware Package
==================

Starlette middleware for rate limiting and security headers.
"""

from .rate_limit import (
    RateLimitMiddleware,
    RateLimiter,
    get_rate_limiter,
    check_upload_quota,
    increment_upload_quota,
)
from .security import SecurityHeadersMiddleware

__all__ = [
    "RateLimitMiddleware",
    "RateLimiter",
    "get_rate_limiter",
    "check_upload_quota",
    "increment_upload_quota",
    "SecurityHeadersMiddleware",
]
