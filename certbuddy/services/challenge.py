#!/usr/bin/env python3
#
# certbuddy/services/challenge.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Manual DNS-01 support: certbot hook scripts and the challenge file watcher.

Certbot runs ``auth-hook.sh`` once per domain during authorization. The hook
writes ``dns-challenge.json`` and then sleeps so the user can publish the TXT
record. The watcher polls for that file and pushes its content to the job
owner. Each job gets its own directory, so parallel manual jobs never share
files.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from ..models.certificates import DnsChallenge
from .jobs import JobStore
from .notifier import Notifier

_log = logging.getLogger(__name__)

__all__ = [
	"ChallengePaths",
	"ChallengeWatcher",
	"prepare_challenge_dir",
	"read_challenge_file",
	"remove_challenge_dir",
]

POLL_INTERVAL = 1.0
MAX_POLL_ATTEMPTS = 120
CHALLENGE_FILENAME = "dns-challenge.json"

_AUTH_HOOK = """#!/bin/sh
# certbot --manual-auth-hook for job {job_id}
set -e
CHALLENGE_FILE={challenge_file}
TMP_FILE="$CHALLENGE_FILE.tmp"
printf '{{"domain": "%s", "validation": "%s", "record_name": "_acme-challenge.%s", "timestamp": "%s"}}\\n' \\
	"$CERTBOT_DOMAIN" "$CERTBOT_VALIDATION" "$CERTBOT_DOMAIN" "$(date -u +%Y-%m-%dT%H:%M:%SZ)" > "$TMP_FILE"
mv -f "$TMP_FILE" "$CHALLENGE_FILE"
echo "Create this DNS TXT record:"
echo "  _acme-challenge.$CERTBOT_DOMAIN  TXT  $CERTBOT_VALIDATION"
echo "Waiting {propagation} seconds for DNS propagation..."
sleep {propagation}
"""

_CLEANUP_HOOK = """#!/bin/sh
# certbot --manual-cleanup-hook for job {job_id}
rm -f {challenge_file}
"""


@dataclass(frozen=True)
class ChallengePaths:
	directory: Path
	auth_hook: Path
	cleanup_hook: Path
	challenge_file: Path


def prepare_challenge_dir(root: Path, job_id: str, propagation_seconds: int) -> ChallengePaths:
	"""Create ``<root>/certbuddy-<job_id>/`` with both hook scripts (mode 0700)."""
	directory = root / f"certbuddy-{job_id}"
	directory.mkdir(mode=0o700, parents=True, exist_ok=True)
	paths = ChallengePaths(
		directory=directory,
		auth_hook=directory / "auth-hook.sh",
		cleanup_hook=directory / "cleanup-hook.sh",
		challenge_file=directory / CHALLENGE_FILENAME,
	)
	quoted = shlex.quote(str(paths.challenge_file))
	for path, template in ((paths.auth_hook, _AUTH_HOOK), (paths.cleanup_hook, _CLEANUP_HOOK)):
		path.write_text(
			template.format(
				job_id=job_id,
				challenge_file=quoted,
				propagation=int(propagation_seconds),
			),
			encoding="utf-8",
		)
		path.chmod(0o700)
	_log.debug("CHALLENGE_HOOKS job=%s dir=%s", job_id, directory)
	return paths


def remove_challenge_dir(paths: ChallengePaths) -> None:
	try:
		shutil.rmtree(paths.directory)
	except FileNotFoundError:
		pass
	except OSError as exc:
		_log.warning("CHALLENGE_CLEANUP dir=%s failed: %s", paths.directory, exc)


def read_challenge_file(path: Path) -> dict[str, str] | None:
	"""Parse a challenge snapshot; None while it is absent or not yet complete."""
	try:
		raw = path.read_text(encoding="utf-8")
	except FileNotFoundError:
		return None
	except OSError as exc:
		_log.debug("CHALLENGE_READ path=%s failed: %s", path, exc)
		return None
	try:
		return DnsChallenge.model_validate(json.loads(raw)).model_dump()
	except (ValueError, ValidationError) as exc:
		_log.debug("CHALLENGE_READ path=%s malformed: %s", path, exc)
		return None


class ChallengeWatcher:
	"""Polls a job's challenge file and relays every new snapshot.

	Certbot rewrites the file once per name in the order, and the cleanup
	hook removes it again. The watcher follows those changes until the job
	finishes: a changed file is pushed to the owner, a vanished one clears
	the job's snapshot. Finding nothing within ``max_attempts`` polls is not
	an error for the job: certbot keeps running on its own schedule and
	decides the outcome.
	"""

	def __init__(
		self,
		jobs: JobStore,
		notifier: Notifier,
		*,
		poll_interval: float = POLL_INTERVAL,
		max_attempts: int = MAX_POLL_ATTEMPTS,
		reader: Callable[[Path], Optional[dict[str, str]]] = read_challenge_file,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self._jobs = jobs
		self._notifier = notifier
		self._poll_interval = poll_interval
		self._max_attempts = max_attempts
		self._reader = reader
		self._sleep = sleep

	def start(self, job_id: str, user_id: str, challenge_file: Path) -> asyncio.Task:
		"""Run :meth:`watch` as a task; the caller must cancel it when done."""
		return asyncio.create_task(
			self.watch(job_id, user_id, challenge_file),
			name=f"challenge-watch-{job_id}",
		)

	async def watch(self, job_id: str, user_id: str, challenge_file: Path) -> dict[str, str] | None:
		"""Follow ``challenge_file`` until the job is terminal.

		Returns the snapshot current when the job finished, or None.
		"""
		current: dict[str, str] | None = None
		found = 0
		attempt = 0
		while True:
			attempt += 1
			if not found and attempt > self._max_attempts:
				_log.warning(
					"CHALLENGE_TIMEOUT job=%s no challenge file after %d attempts",
					job_id, self._max_attempts,
				)
				return None

			await self._sleep(self._poll_interval)

			job = self._jobs.get(job_id)
			if job is None or job.is_terminal:
				if not found:
					_log.debug("CHALLENGE_WATCH job=%s finished before a challenge appeared", job_id)
				return current

			snapshot = await asyncio.to_thread(self._reader, challenge_file)
			if snapshot == current:
				continue

			if snapshot is None:
				# Cleanup hook removed the file
				self._jobs.set_dns_challenge(job_id, None)
				_log.info("CHALLENGE_CLEARED job=%s", job_id)
				current = None
				continue

			current = snapshot
			found += 1
			self._jobs.set_dns_challenge(job_id, snapshot)
			await self._notifier.send_dns_challenge(user_id, job_id, snapshot)
			_log.info(
				"CHALLENGE_FOUND job=%s domain=%s record=%s attempt=%d count=%d",
				job_id, snapshot["domain"], snapshot["record_name"], attempt, found,
			)
