"""
Security Headers Middleware - Add security headers to all responses.

Action pages are plain HTML with a single form that posts back to the same
origin; the only third-party resource they load is the CAPTCHA widget.

Headers added:
1. Content-Security-Policy (CSP) - Same-origin forms, CAPTCHA script/frame only
2. X-Frame-Options - Prevents clickjacking
3. X-Content-Type-Options - Prevents MIME sniffing
4. Strict-Transport-Security (HSTS) - Forces HTTPS (production only)
5. Referrer-Policy - Tickets live in the URL path, so never send them on

Usage:
    from app.middleware.security_headers import SecurityHeadersMiddleware

    app.add_middleware(SecurityHeadersMiddleware, enforce_https=True)
"""

from urllib.parse import urlsplit

from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _captcha_origin() -> str:
    parts = urlsplit(settings.CAPTCHA_SCRIPT_URL)
    return f"{parts.scheme}://{parts.netloc}"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all HTTP responses."""

    def __init__(self, app, enforce_https: bool = False):
        """
        Initialize security headers middleware.

        Args:
            app: FastAPI application
            enforce_https: Whether to add HSTS header (production only)
        """
        super().__init__(app)
        self.enforce_https = enforce_https

        captcha = _captcha_origin() if settings.captcha_enabled() else None
        sources = captcha or "'none'"
        self.content_security_policy = (
            "default-src 'none'; "
            f"script-src {sources}; "
            f"frame-src {sources}; "
            f"connect-src {sources}; "
            "style-src 'unsafe-inline'; "
            "frame-ancestors 'none'; "
            "base-uri 'none'; "
            "form-action 'self'"
        )

        logger.info(
            "Security headers middleware initialized",
            enforce_https=self.enforce_https,
            captcha_origin=captcha,
        )

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        response.headers["Content-Security-Policy"] = self.content_security_policy
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        if self.enforce_https:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; "  # 1 year
                "includeSubDomains"
            )

        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"

        return response
