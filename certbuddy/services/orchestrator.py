#!/usr/bin/env python3
#
# certbuddy/services/orchestrator.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Background workflows for obtain, renew, revoke and delete.

The public methods create a job and return it right away; certbot runs in a
supervised task afterwards. Whatever happens inside that task, the job ends
``completed`` or ``failed`` and the owner gets an ``operation_complete``
event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from ..models.certificates import CertificateRequest, RenewalOptions, RevocationOptions
from .certbot import (
	CertbotRunner,
	delete_args,
	obtain_args,
	redact_request,
	renew_args,
	revoke_args,
)
from .challenge import (
	ChallengePaths,
	ChallengeWatcher,
	prepare_challenge_dir,
	read_challenge_file,
	remove_challenge_dir,
)
from .jobs import UNKNOWN_ERROR, Job, JobKind, JobStore
from .notifier import Notifier

_log = logging.getLogger(__name__)

__all__ = ["JobOrchestrator"]

SHUTDOWN_ERROR = "Operation interrupted by server shutdown"


@dataclass(frozen=True)
class _Workflow:
	"""What differs between the four operations."""
	kind: JobKind
	build_args: Callable[[Optional[ChallengePaths]], list[str]]
	starting: str
	executing: str
	# certificate_update event sent on success, if any
	update: tuple[str, dict[str, Any]] | None = None
	manual_dns: bool = False


class JobOrchestrator:
	def __init__(
		self,
		jobs: JobStore,
		runner: CertbotRunner,
		notifier: Notifier,
		watcher: ChallengeWatcher,
		*,
		challenge_root: Path,
		propagation_seconds: int = 90,
	) -> None:
		self._jobs = jobs
		self._runner = runner
		self._notifier = notifier
		self._watcher = watcher
		self._challenge_root = challenge_root
		self._propagation_seconds = propagation_seconds
		self._tasks: set[asyncio.Task] = set()
		# Hook paths of manual DNS jobs that are still running
		self._challenges: dict[str, ChallengePaths] = {}

	@property
	def active(self) -> int:
		"""Number of workflows still running."""
		return len(self._tasks)

	async def current_dns_challenge(self, user_id: str) -> dict[str, str] | None:
		"""Live challenge of the user's newest in-flight manual DNS job.

		Reads the hook's file on every call, so a rewritten record shows up
		at once and a removed file yields None.
		"""
		for job in self._jobs.list_for_user(user_id):
			paths = self._challenges.get(job.id)
			if paths is None or job.is_terminal:
				continue
			snapshot = await asyncio.to_thread(read_challenge_file, paths.challenge_file)
			if snapshot is not None:
				return snapshot
		return None

	# -----------------------------------------------------------------------
	# Entry points (must be called from the event loop)
	# -----------------------------------------------------------------------

	def obtain(self, user_id: str, request: CertificateRequest) -> Job:
		if request.dns_credentials and not request.is_manual_dns:
			_log.warning(
				"DNS_CREDENTIALS provider=%s credentials accepted but not applied to certbot",
				request.dns_provider,
			)
		workflow = _Workflow(
			kind="obtain",
			build_args=lambda paths: obtain_args(
				request,
				auth_hook=paths.auth_hook if paths else None,
				cleanup_hook=paths.cleanup_hook if paths else None,
			),
			starting="Starting certificate request...",
			executing="Executing certbot command...",
			update=("obtained", {"domains": list(request.domains)}),
			manual_dns=request.is_manual_dns,
		)
		return self._submit(workflow, user_id, request.model_dump(mode="json"))

	def renew(self, user_id: str, options: RenewalOptions) -> Job:
		workflow = _Workflow(
			kind="renew",
			build_args=lambda _paths: renew_args(options),
			starting="Starting certificate renewal...",
			executing="Executing renewal command...",
			update=("renewed", {"certName": options.cert_name}) if options.cert_name else None,
		)
		return self._submit(workflow, user_id, options.model_dump(mode="json"))

	def revoke(self, user_id: str, options: RevocationOptions) -> Job:
		workflow = _Workflow(
			kind="revoke",
			build_args=lambda _paths: revoke_args(options),
			starting="Starting certificate revocation...",
			executing="Executing revocation command...",
			update=("revoked", {"certName": options.cert_name}),
		)
		return self._submit(workflow, user_id, options.model_dump(mode="json"))

	def delete(self, user_id: str, cert_name: str) -> Job:
		workflow = _Workflow(
			kind="delete",
			build_args=lambda _paths: delete_args(cert_name),
			starting="Starting certificate deletion...",
			executing="Executing deletion command...",
			update=("deleted", {"certName": cert_name}),
		)
		return self._submit(workflow, user_id, {"cert_name": cert_name})

	def _submit(self, workflow: _Workflow, user_id: str, payload: dict[str, Any]) -> Job:
		job = self._jobs.create(workflow.kind, user_id, redact_request(payload))
		task = asyncio.create_task(self._run(job.id, user_id, workflow), name=f"job-{workflow.kind}-{job.id}")
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return job

	# -----------------------------------------------------------------------
	# Workflow
	# -----------------------------------------------------------------------

	async def _progress(self, job_id: str, user_id: str, kind: str, percent: int, message: str) -> None:
		self._jobs.set_progress(job_id, percent, message)
		await self._notifier.send_operation_progress(user_id, job_id, kind, percent, message)

	async def _run(self, job_id: str, user_id: str, workflow: _Workflow) -> None:
		kind = workflow.kind
		paths: ChallengePaths | None = None
		watch_task: asyncio.Task | None = None

		try:
			self._jobs.set_status(job_id, "in_progress")
			await self._progress(job_id, user_id, kind, 0, workflow.starting)

			if workflow.manual_dns:
				paths = await asyncio.to_thread(
					prepare_challenge_dir,
					self._challenge_root,
					job_id,
					self._propagation_seconds,
				)
				self._challenges[job_id] = paths
				args = workflow.build_args(paths)
				watch_task = self._watcher.start(job_id, user_id, paths.challenge_file)
				await self._progress(
					job_id, user_id, kind, 10,
					"DNS challenge hooks created, starting validation...",
				)
			else:
				args = workflow.build_args(None)

			await self._progress(job_id, user_id, kind, 20, workflow.executing)
			result = await self._runner.run(args)
			self._jobs.complete(job_id, result)

			if result.success:
				_log.info("JOB_DONE id=%s kind=%s success=true", job_id, kind)
				await self._notifier.send_operation_complete(user_id, job_id, kind, True, result.to_dict())
				if workflow.update is not None:
					event, certificate = workflow.update
					await self._notifier.send_certificate_update(user_id, event, certificate)
			else:
				_log.warning("JOB_DONE id=%s kind=%s success=false exit=%d", job_id, kind, result.exit_code)
				await self._notifier.send_operation_complete(
					user_id, job_id, kind, False,
					{"error": result.stderr or UNKNOWN_ERROR, "exitCode": result.exit_code},
				)
		except asyncio.CancelledError:
			_log.warning("JOB_CANCELLED id=%s kind=%s", job_id, kind)
			if self._jobs.fail(job_id, SHUTDOWN_ERROR):
				await self._notifier.send_operation_complete(
					user_id, job_id, kind, False, {"error": SHUTDOWN_ERROR},
				)
			raise
		except Exception as exc:
			message = str(exc) or type(exc).__name__
			_log.exception("JOB_ERROR id=%s kind=%s: %s", job_id, kind, message)
			if self._jobs.fail(job_id, message):
				await self._notifier.send_operation_complete(
					user_id, job_id, kind, False, {"error": message},
				)
		finally:
			if watch_task is not None:
				watch_task.cancel()
				await asyncio.gather(watch_task, return_exceptions=True)
			if paths is not None:
				self._challenges.pop(job_id, None)
				await asyncio.to_thread(remove_challenge_dir, paths)

	async def aclose(self, timeout: float = 10.0) -> None:
		"""Wait for running workflows, then cancel the stragglers."""
		pending = [task for task in self._tasks if not task.done()]
		if not pending:
			return
		_log.info("JOBS waiting for %d running workflows", len(pending))
		_, not_done = await asyncio.wait(pending, timeout=timeout)
		if not_done:
			_log.warning("JOBS cancelling %d workflows at shutdown", len(not_done))
			for task in not_done:
				task.cancel()
			await asyncio.gather(*not_done, return_exceptions=True)
