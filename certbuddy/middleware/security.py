#!/usr/bin/env python3
#
# certbuddy/middleware/security.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Security response headers for every HTTP response."""

from __future__ import annotations

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_CONTENT_SECURITY_POLICY = (
	"default-src 'self'; "
	"style-src 'self' 'unsafe-inline'; "
	"script-src 'self'; "
	"img-src 'self' data: https:; "
	"connect-src 'self' ws: wss:"
)

# One year, matches the HSTS preload list requirement
_HSTS = "max-age=31536000; includeSubDomains; preload"

_STATIC_HEADERS = {
	"X-Content-Type-Options": "nosniff",
	"X-Frame-Options": "DENY",
	"Referrer-Policy": "no-referrer",
	"Content-Security-Policy": _CONTENT_SECURITY_POLICY,
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
	"""Attach hardening headers; HSTS only when the request came in over HTTPS."""

	async def dispatch(self, request: Request, call_next: Callable) -> Response:
		response = await call_next(request)
		for name, value in _STATIC_HEADERS.items():
			response.headers.setdefault(name, value)
		if request.url.scheme == "https":
			response.headers.setdefault("Strict-Transport-Security", _HSTS)
		return response
