#!/usr/bin/env python3
#
# certbuddy/api/certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate read endpoints, lifecycle submissions and job queries."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request

from ..models.certificates import (
	CertificateRequest,
	RenewalOptions,
	RevocationOptions,
	validate_cert_name,
)
from ..services.certbot import CertbotBusyError, CertbotError, CertbotRunner
from ..services.jobs import JobStore
from ..services.orchestrator import JobOrchestrator
from ..utils.deps import get_jobs, get_orchestrator, get_runner
from ..utils.rate_limit import RATE_LIMIT_JOBS, limiter
from .auth import current_user_id
from .response import accepted_response, ok_response

_log = logging.getLogger(__name__)

router = APIRouter(tags=["certificates"])


def _cert_name(name: str) -> str:
	try:
		return validate_cert_name(name)
	except ValueError:
		raise HTTPException(status_code=400, detail="Invalid certificate name")


def _read_failed(exc: CertbotError) -> HTTPException:
	if isinstance(exc, CertbotBusyError):
		return HTTPException(status_code=500, detail="Certbot is busy, please try again shortly")
	return HTTPException(status_code=500, detail="Failed to list certificates")


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------

@router.get("")
async def list_certificates(
	_user_id: str = Depends(current_user_id),
	runner: CertbotRunner = Depends(get_runner),
):
	try:
		certificates = await runner.list_certificates()
	except CertbotError as exc:
		raise _read_failed(exc)
	return ok_response(data=[c.model_dump() for c in certificates])


@router.get("/logs")
async def get_logs(
	limit: int = Query(100, ge=1, le=1000),
	_user_id: str = Depends(current_user_id),
	runner: CertbotRunner = Depends(get_runner),
):
	"""Tail of the newest certbot log file."""
	return ok_response(data=await runner.get_logs(limit))


@router.get("/dns-challenge")
async def get_dns_challenge(
	user_id: str = Depends(current_user_id),
	orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
	"""Challenge the caller must publish right now; ``data`` is null when there is none."""
	return {"status": "ok", "data": await orchestrator.current_dns_challenge(user_id)}


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@router.get("/jobs")
def list_jobs(
	user_id: str = Depends(current_user_id),
	jobs: JobStore = Depends(get_jobs),
):
	return ok_response(data=[job.to_dict() for job in jobs.list_for_user(user_id)])


@router.get("/jobs/{job_id}")
def get_job(
	job_id: str = Path(..., min_length=1, max_length=64),
	user_id: str = Depends(current_user_id),
	jobs: JobStore = Depends(get_jobs),
):
	job = jobs.get(job_id)
	if job is None:
		raise HTTPException(status_code=404, detail="Job not found")
	if job.user_id != user_id:
		_log.warning("JOB_ACCESS_DENIED id=%s user=%s owner=%s", job_id, user_id, job.user_id)
		raise HTTPException(status_code=403, detail="Access denied")
	return ok_response(data=job.to_dict())


# ---------------------------------------------------------------------------
# Lifecycle submissions (202 + job id; certbot runs in the background)
# ---------------------------------------------------------------------------

@router.post("", status_code=202)
@limiter.limit(RATE_LIMIT_JOBS)
async def obtain_certificate(
	request: Request,
	payload: CertificateRequest,
	user_id: str = Depends(current_user_id),
	orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
	job = orchestrator.obtain(user_id, payload)
	return accepted_response(job.id, job.status, "Certificate request started")


@router.post("/renew", status_code=202)
@limiter.limit(RATE_LIMIT_JOBS)
async def renew_certificates(
	request: Request,
	payload: RenewalOptions,
	user_id: str = Depends(current_user_id),
	orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
	job = orchestrator.renew(user_id, payload)
	return accepted_response(job.id, job.status, "Certificate renewal started")


@router.post("/revoke", status_code=202)
@limiter.limit(RATE_LIMIT_JOBS)
async def revoke_certificate(
	request: Request,
	payload: RevocationOptions,
	user_id: str = Depends(current_user_id),
	orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
	job = orchestrator.revoke(user_id, payload)
	return accepted_response(job.id, job.status, "Certificate revocation started")


# Parametrised routes last so /logs, /jobs and /dns-challenge match first
@router.get("/{name}")
async def get_certificate(
	name: str,
	_user_id: str = Depends(current_user_id),
	runner: CertbotRunner = Depends(get_runner),
):
	try:
		certificate = await runner.get_certificate(_cert_name(name))
	except CertbotError as exc:
		raise _read_failed(exc)
	if certificate is None:
		raise HTTPException(status_code=404, detail="Certificate not found")
	return ok_response(data=certificate.model_dump())


@router.delete("/{name}", status_code=202)
@limiter.limit(RATE_LIMIT_JOBS)
async def delete_certificate(
	request: Request,
	name: str,
	user_id: str = Depends(current_user_id),
	orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
	job = orchestrator.delete(user_id, _cert_name(name))
	return accepted_response(job.id, job.status, "Certificate deletion started")
