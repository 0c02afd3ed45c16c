"""
Middleware components for request processing.

This package contains middleware for:
- Request context (request ID, client IP, page language)
- Security headers
"""

from app.middleware.request_context import RequestContextMiddleware
from app.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "RequestContextMiddleware",
    "SecurityHeadersMiddleware",
]
