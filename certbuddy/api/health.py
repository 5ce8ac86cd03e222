#!/usr/bin/env python3
#
# certbuddy/api/health.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Unauthenticated liveness and certbot availability probes."""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends, HTTPException, Request

from ..services.certbot import CertbotRunner
from ..utils.deps import get_runner
from ..utils.time import isoformat_utc, utcnow

router = APIRouter(tags=["health"])


@router.get("")
def health(request: Request):
	started = getattr(request.app.state, "started_monotonic", time.monotonic())
	return {
		"status": "ok",
		"timestamp": isoformat_utc(utcnow()),
		"uptime": round(time.monotonic() - started, 3),
		"activeJobs": request.app.state.orchestrator.active,
	}


@router.get("/certbot")
async def certbot_health(runner: CertbotRunner = Depends(get_runner)):
	version = await runner.version()
	if version is None:
		raise HTTPException(status_code=503, detail="Certbot not available")
	return {"status": "ok", "certbot": {"available": True, "version": version}}
