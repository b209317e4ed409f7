"""
Rate Limiting Middleware
========================

Redis-based rate limiting for the portal APIs.

Callers are keyed by the "sub" and "firm_id" claims of their bearer token,
anonymous callers by client address. Without REDIS_URL every request is
allowed.
"""

import os
import time
import logging
from typing import Callable, Optional, Tuple
from datetime import datetime

import redis
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import get_settings

logger = logging.getLogger(__name__)

# Requests per minute
RATE_LIMIT_PER_USER = int(os.environ.get("RATE_LIMIT_PER_USER", "30"))
RATE_LIMIT_PER_FIRM = int(os.environ.get("RATE_LIMIT_PER_FIRM", "200"))
RATE_LIMIT_AUTH = int(os.environ.get("RATE_LIMIT_AUTH", "10"))

# Daily quotas
MAX_UPLOADS_PER_DAY = int(os.environ.get("MAX_UPLOADS_PER_DAY_PER_FIRM", "1000"))

_EXEMPT_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")
_AUTH_PATHS = ("/auth/login", "/auth/internal/login", "/auth/signup", "/auth/forgot-password")


class RateLimiter:
    """
    Redis-based rate limiter using a sliding window.
    """

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url
        self._client = None

    @property
    def client(self):
        """Lazy-load Redis client"""
        if not self.redis_url:
            return None

        if self._client is None:
            try:
                self._client = redis.from_url(self.redis_url, decode_responses=True)
                self._client.ping()
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed: {e}")
                self._client = None

        return self._client

    def is_allowed(self, key: str, limit: int, window_seconds: int = 60) -> Tuple[bool, int, int]:
        """
        Check if a request is allowed under the limit.

        Args:
            key: Rate limit key (e.g., "ratelimit:user:123")
            limit: Maximum requests in the window
            window_seconds: Window length

        Returns:
            (is_allowed, remaining, reset_time)
        """
        if not self.client:
            return (True, limit, 0)

        now = time.time()
        window_start = now - window_seconds

        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(now): now})
            pipe.expire(key, window_seconds)
            results = pipe.execute()
            current_count = results[1]
        except redis.RedisError as e:
            logger.warning(f"Rate limit check failed: {e}")
            return (True, limit, 0)

        reset_time = int(now + window_seconds)
        if current_count >= limit:
            return (False, 0, reset_time)
        return (True, max(0, limit - current_count - 1), reset_time)

    def check_daily_quota(self, key: str, limit: int) -> Tuple[bool, int]:
        """
        Check a daily counter.

        Returns:
            (is_allowed, remaining)
        """
        if not self.client:
            return (True, limit)

        quota_key = f"quota:{datetime.utcnow():%Y-%m-%d}:{key}"
        try:
            current = int(self.client.get(quota_key) or 0)
        except redis.RedisError as e:
            logger.warning(f"Quota check failed: {e}")
            return (True, limit)

        if current >= limit:
            return (False, 0)
        return (True, limit - current)

    def increment_quota(self, key: str, amount: int = 1) -> None:
        if not self.client:
            return

        quota_key = f"quota:{datetime.utcnow():%Y-%m-%d}:{key}"
        try:
            pipe = self.client.pipeline()
            pipe.incrby(quota_key, amount)
            pipe.expire(quota_key, 86400 * 2)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Quota increment failed: {e}")


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get singleton rate limiter instance"""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(get_settings().redis_url)
    return _rate_limiter


def _caller_claims(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """(user_id, firm_id) from the bearer token; signature is checked, revocation is not."""
    from ..auth import decode_token

    authorization = request.headers.get("authorization", "")
    if not authorization.lower().startswith("bearer "):
        return None, None
    payload = decode_token(authorization.split(" ", 1)[1].strip())
    if not payload or payload.get("type") != "access":
        return None, None
    return payload.get("sub"), payload.get("firm_id")


def _too_many(limit: int, reset: int, scope: str) -> JSONResponse:
    retry_after = max(0, reset - int(time.time()))
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded: {limit} requests per minute per {scope}",
            "retry_after": retry_after,
        },
        headers={
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(reset),
            "Retry-After": str(retry_after),
        },
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-user, per-firm and per-address request limits.
    """

    def __init__(self, app):
        super().__init__(app)
        self.limiter = get_rate_limiter()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in _EXEMPT_PATHS or path.startswith("/storage/"):
            return await call_next(request)

        user_id, firm_id = _caller_claims(request)

        if user_id:
            limit = RATE_LIMIT_PER_USER
            key = f"ratelimit:user:{user_id}"
            scope = "user"
        else:
            host = request.client.host if request.client else "unknown"
            limit = RATE_LIMIT_AUTH if path in _AUTH_PATHS else RATE_LIMIT_PER_USER
            key = f"ratelimit:ip:{host}"
            scope = "address"

        allowed, remaining, reset = self.limiter.is_allowed(key, limit, window_seconds=60)
        if not allowed:
            logger.warning(f"Rate limit hit for {key} on {path}")
            return _too_many(limit, reset, scope)

        if firm_id:
            firm_allowed, _, firm_reset = self.limiter.is_allowed(
                f"ratelimit:firm:{firm_id}", RATE_LIMIT_PER_FIRM, window_seconds=60
            )
            if not firm_allowed:
                logger.warning(f"Firm rate limit hit for {firm_id} on {path}")
                return _too_many(RATE_LIMIT_PER_FIRM, firm_reset, "firm")

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


def check_upload_quota(firm_id: str, count: int = 1) -> bool:
    """True if the firm may store `count` more files today."""
    allowed, remaining = get_rate_limiter().check_daily_quota(f"uploads:{firm_id}", MAX_UPLOADS_PER_DAY)
    return allowed and remaining >= count


def increment_upload_quota(firm_id: str, count: int = 1) -> None:
    get_rate_limiter().increment_quota(f"uploads:{firm_id}", count)
