#!/usr/bin/env python3
#
# certbuddy/services/jobs.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""In-memory job registry for certificate lifecycle operations.

A job moves ``pending -> in_progress -> completed | failed`` and never
back. Terminal jobs are frozen, with one exception: their DNS challenge
snapshot may still be cleared. Jobs live in process memory only and are
evicted by :meth:`JobStore.cleanup` after a retention window.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Literal

from ..utils.time import isoformat_utc, utcnow
from .certbot import CommandResult

_log = logging.getLogger(__name__)

__all__ = [
	"Job",
	"JobKind",
	"JobStatus",
	"JobStore",
	"JOB_RETENTION",
	"MAX_TERMINAL_JOBS",
	"UNKNOWN_ERROR",
]

JobKind = Literal["obtain", "renew", "revoke", "delete"]
JobStatus = Literal["pending", "in_progress", "completed", "failed"]

JOB_RETENTION = timedelta(hours=24)
MAX_TERMINAL_JOBS = 100
UNKNOWN_ERROR = "Unknown error occurred"

TERMINAL_STATUSES = frozenset({"completed", "failed"})

# Allowed forward edges; everything else is rejected
_TRANSITIONS: dict[str, frozenset[str]] = {
	"pending": frozenset({"in_progress", "failed"}),
	"in_progress": frozenset({"completed", "failed"}),
	"completed": frozenset(),
	"failed": frozenset(),
}


@dataclass
class Job:
	id: str
	type: JobKind
	user_id: str
	request: dict[str, Any]
	created_at: datetime
	updated_at: datetime
	status: JobStatus = "pending"
	result: CommandResult | None = None
	error: str | None = None
	progress: int | None = None
	progress_message: str | None = None
	dns_challenge: dict[str, str] | None = None
	completed_at: datetime | None = None

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES

	def to_dict(self) -> dict[str, Any]:
		"""JSON-ready view with camelCase keys, as served to the browser."""
		return {
			"id": self.id,
			"type": self.type,
			"status": self.status,
			"userId": self.user_id,
			"request": self.request,
			"result": self.result.to_dict() if self.result is not None else None,
			"error": self.error,
			"progress": self.progress,
			"progressMessage": self.progress_message,
			"dnsChallenge": self.dns_challenge,
			"createdAt": isoformat_utc(self.created_at),
			"updatedAt": isoformat_utc(self.updated_at),
			"completedAt": isoformat_utc(self.completed_at),
		}


class JobStore:
	"""Owns every :class:`Job` of the process.

	Only ever touched from the event loop thread, so there is no locking.
	Mutators never raise for unknown ids or illegal transitions; they log a
	warning and return False instead.
	"""

	def __init__(
		self,
		*,
		retention: timedelta = JOB_RETENTION,
		max_terminal: int = MAX_TERMINAL_JOBS,
		clock: Callable[[], datetime] = utcnow,
	) -> None:
		self._jobs: dict[str, Job] = {}
		self._retention = retention
		self._max_terminal = max_terminal
		self._clock = clock

	def __len__(self) -> int:
		return len(self._jobs)

	def __contains__(self, job_id: object) -> bool:
		return job_id in self._jobs

	# -----------------------------------------------------------------------
	# Reads
	# -----------------------------------------------------------------------

	def get(self, job_id: str) -> Job | None:
		return self._jobs.get(job_id)

	def list_for_user(self, user_id: str) -> list[Job]:
		"""All jobs of ``user_id``, newest creation first."""
		# Reverse insertion order first so equal timestamps still list newest first
		owned = [job for job in reversed(self._jobs.values()) if job.user_id == user_id]
		return sorted(owned, key=lambda job: job.created_at, reverse=True)

	# -----------------------------------------------------------------------
	# Mutations
	# -----------------------------------------------------------------------

	def create(self, kind: JobKind, user_id: str, request: dict[str, Any]) -> Job:
		"""Register a new ``pending`` job.

		The one failure is an empty ``user_id``, which raises ValueError:
		every job must have an owner for event routing and access checks.
		Callers always pass an authenticated id, so this never fires in
		normal operation.
		"""
		if not user_id:
			raise ValueError("Job owner must not be empty")
		now = self._clock()
		job = Job(
			id=str(uuid.uuid4()),
			type=kind,
			user_id=user_id,
			request=dict(request),
			created_at=now,
			updated_at=now,
		)
		self._jobs[job.id] = job
		_log.info("JOB_CREATED id=%s kind=%s user=%s", job.id, kind, user_id)
		return job

	def _lookup(self, job_id: str, action: str) -> Job | None:
		job = self._jobs.get(job_id)
		if job is None:
			_log.warning("JOB_MISSING id=%s action=%s", job_id, action)
		return job

	def _transition(self, job: Job, status: JobStatus) -> bool:
		if status not in _TRANSITIONS[job.status]:
			_log.warning(
				"JOB_TRANSITION_REJECTED id=%s from=%s to=%s",
				job.id, job.status, status,
			)
			return False
		now = self._clock()
		job.status = status
		job.updated_at = now
		if status in TERMINAL_STATUSES:
			job.completed_at = now
		_log.info("JOB_STATUS id=%s status=%s", job.id, status)
		return True

	def set_status(self, job_id: str, status: JobStatus) -> bool:
		job = self._lookup(job_id, "set_status")
		if job is None:
			return False
		return self._transition(job, status)

	def set_progress(self, job_id: str, percent: int, message: str) -> bool:
		job = self._lookup(job_id, "set_progress")
		if job is None or job.is_terminal:
			return False
		job.progress = max(0, min(100, int(percent)))
		job.progress_message = message
		job.updated_at = self._clock()
		return True

	def set_dns_challenge(self, job_id: str, snapshot: dict[str, str] | None) -> bool:
		"""Attach a challenge snapshot, or clear it with ``None``.

		Clearing is the only change a terminal job still accepts.
		"""
		job = self._lookup(job_id, "set_dns_challenge")
		if job is None:
			return False
		if job.is_terminal and snapshot is not None:
			_log.warning("JOB_TERMINAL id=%s rejected dns_challenge update", job.id)
			return False
		job.dns_challenge = dict(snapshot) if snapshot is not None else None
		job.updated_at = self._clock()
		return True

	def complete(self, job_id: str, result: CommandResult) -> bool:
		"""Finish a running job from a command result.

		Failed results copy stderr into ``error``, falling back to
		:data:`UNKNOWN_ERROR` when certbot printed nothing.
		"""
		job = self._lookup(job_id, "complete")
		if job is None:
			return False
		status: JobStatus = "completed" if result.success else "failed"
		if not self._transition(job, status):
			return False
		job.result = result
		job.error = None if result.success else (result.stderr or UNKNOWN_ERROR)
		return True

	def fail(self, job_id: str, error: str) -> bool:
		job = self._lookup(job_id, "fail")
		if job is None:
			return False
		if not self._transition(job, "failed"):
			return False
		job.error = error or UNKNOWN_ERROR
		return True

	# -----------------------------------------------------------------------
	# Retention
	# -----------------------------------------------------------------------

	def cleanup(self) -> int:
		"""Evict stale terminal jobs; returns how many were removed.

		Terminal jobs not updated within the retention window go first.
		If more than ``max_terminal`` terminal jobs remain, the
		least recently updated ones are dropped until the cap holds.
		Pending and running jobs are never touched.
		"""
		cutoff = self._clock() - self._retention
		expired = [
			job.id for job in self._jobs.values()
			if job.is_terminal and job.updated_at < cutoff
		]
		for job_id in expired:
			del self._jobs[job_id]

		terminal = sorted(
			(job for job in self._jobs.values() if job.is_terminal),
			key=lambda job: job.updated_at,
		)
		excess = len(terminal) - self._max_terminal
		evicted = 0
		if excess > 0:
			for job in terminal[:excess]:
				del self._jobs[job.id]
			evicted = excess

		removed = len(expired) + evicted
		if removed:
			_log.info(
				"JOB_CLEANUP removed=%d expired=%d over_cap=%d remaining=%d",
				removed, len(expired), evicted, len(self._jobs),
			)
		return removed
