"""
Security Middleware
====================

Security headers for both portals, with optional HTTPS redirect.
"""

import os
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, RedirectResponse

ENFORCE_HTTPS = os.environ.get("ENFORCE_HTTPS", "false").lower() in ("true", "1", "yes")
HSTS_MAX_AGE = int(os.environ.get("HSTS_MAX_AGE", "31536000"))

# The API only serves JSON and signed file downloads
CONTENT_SECURITY_POLICY = "default-src 'none'; frame-ancestors 'none'"


def _is_https(request: Request) -> bool:
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to every response.

    Headers added:
    - Strict-Transport-Security (HTTPS only)
    - X-Content-Type-Options
    - X-Frame-Options
    - Referrer-Policy
    - Content-Security-Policy
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if ENFORCE_HTTPS and not _is_https(request):
            url = str(request.url).replace("http://", "https://", 1)
            return RedirectResponse(url, status_code=301)

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if _is_https(request):
            response.headers["Strict-Transport-Security"] = f"max-age={HSTS_MAX_AGE}; includeSubDomains"
        # Swagger UI needs its own scripts
        if not request.url.path.startswith(("/docs", "/redoc", "/openapi.json")):
            response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY

        return response
