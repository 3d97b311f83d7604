"""Security headers middleware.

Every response gets content-type, framing and referrer protections.  JSON
and event-stream responses are never cached by intermediaries since they
reflect unsaved in-memory state.
"""

from __future__ import annotations

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'",
}

_UNCACHED_TYPES = ("application/json", "text/event-stream")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        content_type = response.headers.get("content-type", "")
        if content_type.startswith(_UNCACHED_TYPES):
            response.headers.setdefault("Cache-Control", "no-store")
        return response
