#!/usr/bin/env python3
#
# certbuddy/utils/request_id.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Request ID middleware for tracing and access logging."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_log = logging.getLogger("certbuddy.access")


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Tag each request with an ``X-Request-ID`` and log one access line."""

	async def dispatch(self, request: Request, call_next: Callable) -> Response:
		request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
		request.state.request_id = request_id

		started = time.perf_counter()
		response = await call_next(request)
		duration_ms = (time.perf_counter() - started) * 1000

		response.headers["X-Request-ID"] = request_id

		level = logging.WARNING if response.status_code >= 400 else logging.INFO
		_log.log(
			level,
			"HTTP %s %s status=%d duration_ms=%.1f request_id=%s",
			request.method,
			request.url.path,
			response.status_code,
			duration_ms,
			request_id,
		)
		return response
