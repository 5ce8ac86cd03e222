#!/usr/bin/env python3
#
# certbuddy/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response helpers."""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse


def ok_response(
	*,
	message: str | None = None,
	data: Any = None,
	**extra: Any,
) -> dict[str, Any]:
	"""Build a normalized success response: ``{"status": "ok", "message"?, "data"?}``."""
	payload: dict[str, Any] = {"status": "ok"}
	if message is not None:
		payload["message"] = message
	if data is not None:
		payload["data"] = data
	if extra:
		payload.update(extra)
	return payload


def accepted_response(job_id: str, status: str, message: str) -> JSONResponse:
	"""202 Accepted for a queued job, carrying ``jobId`` and its initial status."""
	data = {"jobId": job_id, "status": status}
	return JSONResponse(status_code=202, content=ok_response(message=message, data=data))
