"""
RequestContext Middleware - Adds request tracking to all requests.

This middleware automatically adds the following to every request:
- request_id: Unique ID for request tracing
- ip_address: Client IP address (forwarded to the CAPTCHA provider)
- user_agent: Client user agent string
- language: Page language negotiated from Accept-Language

The request ID and client IP are also bound to the structlog context, so
every log line emitted while handling the request carries them.

Usage:
    In endpoints:
        request.state.request_id
        request.state.ip_address
        request.state.user_agent
        request.state.language
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.reputation_service import is_ip_address
from app.utils.messages import negotiate_language

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Add request context to all incoming requests.

    Adds to request.state:
    - request_id: UUID for tracing this request
    - ip_address: Client IP address
    - user_agent: Client user agent string
    - language: Negotiated page language ("en" or "pt")

    Also adds X-Request-ID header to responses for client-side tracing.
    """

    async def dispatch(self, request: Request, call_next):
        """Process request and add context."""

        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        ip_address = self._extract_client_ip(request)
        request.state.ip_address = ip_address

        request.state.user_agent = request.headers.get("user-agent")

        request.state.language = negotiate_language(request.headers.get("accept-language"))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, client_ip=ip_address)

        logger.debug(
            "Request started",
            method=request.method,
            path=request.url.path,
            language=request.state.language,
        )

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()

        response.headers["X-Request-ID"] = request_id
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        Resolve the address of the browser that opened the link.

        X-Forwarded-For is honoured only when TRUST_X_FORWARDED_FOR is set and
        the direct peer is one of TRUSTED_PROXY_IPS. The right-most entry that
        is not itself a trusted proxy is taken, so a client cannot prepend a
        forged address. Values that do not parse as an IP are ignored.
        """
        peer = request.client.host if request.client else None

        if not settings.TRUST_X_FORWARDED_FOR or peer not in settings.TRUSTED_PROXY_IPS:
            return peer

        hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",")]
        for hop in reversed(hops):
            if not hop or hop in settings.TRUSTED_PROXY_IPS:
                continue
            if not is_ip_address(hop):
                logger.warning("Ignoring unparseable forwarded address", proxy_ip=peer)
                break
            return hop

        return peer
