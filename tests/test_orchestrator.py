#!/usr/bin/env python3
#
# tests/test_orchestrator.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from certbuddy.models.certificates import CertificateRequest, RenewalOptions, RevocationOptions
from certbuddy.services.certbot import REDACTED, CommandResult
from certbuddy.services.challenge import ChallengeWatcher
from certbuddy.services.jobs import JobStore
from certbuddy.services.orchestrator import SHUTDOWN_ERROR, JobOrchestrator
from conftest import RecordingNotifier, ScriptedRunner

OK = CommandResult(True, "Successfully received certificate.", "", 0)
BROKEN = CommandResult(False, "", "Some challenges have failed.", 1)


def _request(**overrides) -> CertificateRequest:
	fields = {
		"domains": ["example.com", "www.example.com"],
		"email": "admin@example.com",
		"plugin": "standalone",
		"agree_tos": True,
	}
	fields.update(overrides)
	return CertificateRequest(**fields)


class Harness:
	def __init__(self, runner, tmp_path: Path, *, poll_interval: float = 0.01) -> None:
		self.jobs = JobStore()
		self.notifier = RecordingNotifier()
		self.runner = runner
		self.challenge_root = tmp_path / "challenges"
		watcher = ChallengeWatcher(self.jobs, self.notifier, poll_interval=poll_interval, max_attempts=500)
		self.orchestrator = JobOrchestrator(
			self.jobs,
			runner,
			self.notifier,
			watcher,
			challenge_root=self.challenge_root,
			propagation_seconds=0,
		)


@pytest.mark.anyio
async def test_obtain_returns_pending_job_then_completes(tmp_path: Path):
	h = Harness(ScriptedRunner(OK), tmp_path)

	job = h.orchestrator.obtain("1", _request())
	assert job.status == "pending"
	assert h.orchestrator.active == 1

	await h.orchestrator.aclose()

	assert job.status == "completed"
	assert job.progress == 20
	assert job.result == OK
	assert h.orchestrator.active == 0
	assert h.runner.calls == [[
		"certonly", "--non-interactive", "--standalone",
		"-d", "example.com", "-d", "www.example.com",
		"--email", "admin@example.com", "--agree-tos",
	]]


@pytest.mark.anyio
async def test_success_event_sequence(tmp_path: Path):
	h = Harness(ScriptedRunner(OK), tmp_path)

	job = h.orchestrator.obtain("1", _request())
	await h.orchestrator.aclose()

	assert h.notifier.types() == [
		"operation_progress", "operation_progress", "operation_complete", "certificate_update",
	]
	assert [p["progress"] for p in h.notifier.of_type("operation_progress")] == [0, 20]
	assert all(user == "1" for user, _ in h.notifier.events)
	complete = h.notifier.of_type("operation_complete")[0]
	assert complete == {"jobId": job.id, "operation": "obtain", "success": True, "data": OK.to_dict()}
	assert h.notifier.of_type("certificate_update") == [
		{"event": "obtained", "certificate": {"domains": ["example.com", "www.example.com"]}},
	]


@pytest.mark.anyio
async def test_failed_certbot_run(tmp_path: Path):
	h = Harness(ScriptedRunner(BROKEN), tmp_path)

	job = h.orchestrator.revoke("1", RevocationOptions(cert_name="example.com", reason="superseded"))
	await h.orchestrator.aclose()

	assert job.status == "failed"
	assert job.error == "Some challenges have failed."
	assert "certificate_update" not in h.notifier.types()
	assert h.notifier.of_type("operation_complete")[0]["data"] == {
		"error": "Some challenges have failed.", "exitCode": 1,
	}
	assert h.runner.calls[0] == [
		"revoke", "--non-interactive", "--cert-name", "example.com",
		"--reason", "superseded", "--no-delete-after-revoke",
	]


@pytest.mark.anyio
async def test_runner_exception_fails_job(tmp_path: Path):
	h = Harness(ScriptedRunner(RuntimeError("certbot vanished")), tmp_path)

	job = h.orchestrator.delete("1", "example.com")
	await h.orchestrator.aclose()

	assert job.status == "failed"
	assert job.error == "certbot vanished"
	complete = h.notifier.of_type("operation_complete")[0]
	assert complete["success"] is False
	assert complete["data"] == {"error": "certbot vanished"}


@pytest.mark.anyio
async def test_renew_all_sends_no_certificate_update(tmp_path: Path):
	h = Harness(ScriptedRunner(OK), tmp_path)

	h.orchestrator.renew("1", RenewalOptions(dry_run=True))
	h.orchestrator.renew("1", RenewalOptions(cert_name="example.com"))
	await h.orchestrator.aclose()

	assert sorted(h.runner.calls) == [["renew", "--cert-name", "example.com"], ["renew", "--dry-run"]]
	assert h.notifier.of_type("certificate_update") == [
		{"event": "renewed", "certificate": {"certName": "example.com"}},
	]


@pytest.mark.anyio
async def test_credentials_never_stored_on_job(tmp_path: Path):
	h = Harness(ScriptedRunner(OK), tmp_path)
	request = _request(plugin="dns", dns_provider="cloudflare", dns_credentials={"api_token": "s3cret"})

	job = h.orchestrator.obtain("1", request)
	await h.orchestrator.aclose()

	assert job.request["dns_credentials"] == REDACTED
	assert "s3cret" not in str(job.to_dict())
	assert "--dns-cloudflare" in h.runner.calls[0]


class ManualDnsRunner:
	"""Runs the auth hook like certbot would, then waits for the relayed challenge."""

	def __init__(self) -> None:
		self.notifier: RecordingNotifier | None = None
		self.calls: list[list[str]] = []

	async def run(self, args) -> CommandResult:
		self.calls.append(list(args))
		hook = args[args.index("--manual-auth-hook") + 1]
		env = {**os.environ, "CERTBOT_DOMAIN": "example.com", "CERTBOT_VALIDATION": "gfj9Xq-Hn5pA"}
		proc = await asyncio.create_subprocess_exec(hook, env=env, stdout=asyncio.subprocess.DEVNULL)
		await proc.wait()
		for _ in range(500):
			if "dns_challenge" in self.notifier.types():
				break
			await asyncio.sleep(0.01)
		return OK


@pytest.mark.anyio
async def test_manual_dns_relays_challenge_and_cleans_up(tmp_path: Path):
	runner = ManualDnsRunner()
	h = Harness(runner, tmp_path)
	notifier = runner.notifier = h.notifier

	job = h.orchestrator.obtain("1", _request(plugin="dns", dns_provider="manual", domains=["example.com"]))
	await h.orchestrator.aclose()

	assert job.status == "completed"
	assert [p["progress"] for p in notifier.of_type("operation_progress")] == [0, 10, 20]
	challenge = notifier.of_type("dns_challenge")[0]
	assert challenge["jobId"] == job.id
	assert challenge["record_name"] == "_acme-challenge.example.com"
	assert challenge["validation"] == "gfj9Xq-Hn5pA"
	assert notifier.types().index("dns_challenge") < notifier.types().index("operation_complete")
	assert "--manual" in runner.calls[0]
	assert not (h.challenge_root / f"certbuddy-{job.id}").exists()


async def _run_hook(hook: str, validation: str) -> None:
	env = {**os.environ, "CERTBOT_DOMAIN": "example.com", "CERTBOT_VALIDATION": validation}
	proc = await asyncio.create_subprocess_exec(hook, env=env, stdout=asyncio.subprocess.DEVNULL)
	assert await proc.wait() == 0


async def _until(predicate, what: str) -> None:
	for _ in range(500):
		if predicate():
			return
		await asyncio.sleep(0.01)
	raise AssertionError(f"timed out waiting for {what}")


class TwoRecordRunner:
	"""Plays certbot for ``example.com`` plus ``*.example.com``: two TXT records, then cleanup."""

	def __init__(self) -> None:
		self.harness: Harness | None = None
		self.live: list[dict | None] = []

	async def run(self, args) -> CommandResult:
		h = self.harness
		auth = args[args.index("--manual-auth-hook") + 1]
		cleanup = args[args.index("--manual-cleanup-hook") + 1]
		job = h.jobs.list_for_user("1")[0]

		for validation in ("tok-A", "tok-B"):
			await _run_hook(auth, validation)
			self.live.append(await h.orchestrator.current_dns_challenge("1"))
			await _until(
				lambda: validation in [p["validation"] for p in h.notifier.of_type("dns_challenge")],
				f"{validation} event",
			)
			assert job.dns_challenge["validation"] == validation

		await _run_hook(cleanup, "tok-B")
		self.live.append(await h.orchestrator.current_dns_challenge("1"))
		await _until(lambda: job.dns_challenge is None, "cleared snapshot")
		return OK


@pytest.mark.anyio
async def test_manual_dns_snapshot_tracks_each_record_and_cleanup(tmp_path: Path):
	runner = TwoRecordRunner()
	h = runner.harness = Harness(runner, tmp_path)

	job = h.orchestrator.obtain("1", _request(plugin="dns", dns_provider="manual", domains=["example.com", "*.example.com"]))
	await h.orchestrator.aclose()

	assert job.status == "completed", job.error
	assert [snap["validation"] for snap in runner.live[:2]] == ["tok-A", "tok-B"]
	assert runner.live[2] is None
	assert [p["validation"] for p in h.notifier.of_type("dns_challenge")] == ["tok-A", "tok-B"]
	assert await h.orchestrator.current_dns_challenge("1") is None


@pytest.mark.anyio
async def test_current_dns_challenge_ignores_other_users_and_plain_jobs(tmp_path: Path):
	h = Harness(ScriptedRunner(OK), tmp_path)

	h.orchestrator.obtain("1", _request())
	assert await h.orchestrator.current_dns_challenge("1") is None
	assert await h.orchestrator.current_dns_challenge("2") is None
	await h.orchestrator.aclose()


class HangingRunner:
	def __init__(self) -> None:
		self.started = asyncio.Event()

	async def run(self, args) -> CommandResult:
		self.started.set()
		await asyncio.Event().wait()
		return OK


@pytest.mark.anyio
async def test_shutdown_fails_running_jobs(tmp_path: Path):
	runner = HangingRunner()
	h = Harness(runner, tmp_path)

	job = h.orchestrator.renew("1", RenewalOptions(cert_name="example.com"))
	await asyncio.wait_for(runner.started.wait(), timeout=5)
	await h.orchestrator.aclose(timeout=0)

	assert job.status == "failed"
	assert job.error == SHUTDOWN_ERROR
	assert h.orchestrator.active == 0
	assert h.notifier.of_type("operation_complete")[-1] == {
		"jobId": job.id, "operation": "renew", "success": False, "data": {"error": SHUTDOWN_ERROR},
	}
