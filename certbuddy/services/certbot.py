#!/usr/bin/env python3
#
# certbuddy/services/certbot.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certbot subprocess runner, argument builders and output parsing.

Every invocation goes through :meth:`CertbotRunner.run`, which never raises:
non-zero exits, timeouts, oversized output and a missing binary all come
back as a failed :class:`CommandResult`. Only the read path
(:meth:`CertbotRunner.list_certificates`) turns failures into exceptions,
after retrying them.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from ..models.certificates import (
	Certificate,
	CertificateRequest,
	RenewalOptions,
	RevocationOptions,
)
from ..utils.time import isoformat_utc, parse_utc, utcnow

_log = logging.getLogger(__name__)

__all__ = [
	"BUSY_MARKER",
	"CertbotBusyError",
	"CertbotError",
	"CertbotRunner",
	"CommandResult",
	"REDACTED",
	"delete_args",
	"obtain_args",
	"parse_certificate_list",
	"redact_request",
	"renew_args",
	"revoke_args",
	"sanitize",
]

# Certbot prints this on stderr when its lock file is held by another run
BUSY_MARKER = "Another instance of Certbot is already running"

COMMAND_TIMEOUT = 300.0
MAX_OUTPUT_BYTES = 10 * 1024 * 1024
LIST_ATTEMPTS = 3
LIST_BASE_DELAY = 1.0
EXPIRING_SOON = timedelta(days=30)
REDACTED = "[REDACTED]"

_UNSAFE_CHARS = re.compile(r"[;&|`$(){}\[\]<>]")
_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class CommandResult:
	"""Outcome of a single certbot invocation."""
	success: bool
	stdout: str
	stderr: str
	exit_code: int

	def to_dict(self) -> dict[str, Any]:
		return {
			"success": self.success,
			"stdout": self.stdout,
			"stderr": self.stderr,
			"exitCode": self.exit_code,
		}


class CertbotError(Exception):
	"""Certbot failed on the read path."""

	def __init__(self, message: str, result: CommandResult | None = None) -> None:
		super().__init__(message)
		self.result = result


class CertbotBusyError(CertbotError):
	"""Another certbot process holds the lock."""


def sanitize(argument: str) -> str:
	"""Strip shell metacharacters from a single argument."""
	return _UNSAFE_CHARS.sub("", str(argument))


# ---------------------------------------------------------------------------
# Argument builders
# ---------------------------------------------------------------------------

def obtain_args(
	request: CertificateRequest,
	*,
	auth_hook: Path | None = None,
	cleanup_hook: Path | None = None,
) -> list[str]:
	"""``certonly`` arguments for a new certificate.

	Manual DNS needs both hook paths; they are written per job by the
	challenge module before this is called.
	"""
	args = ["certonly", "--non-interactive"]

	if request.plugin == "dns":
		if request.dns_provider == "manual":
			if auth_hook is None or cleanup_hook is None:
				raise ValueError("Manual DNS validation requires auth and cleanup hooks")
			args += [
				"--manual",
				"--preferred-challenges", "dns",
				"--manual-auth-hook", str(auth_hook),
				"--manual-cleanup-hook", str(cleanup_hook),
			]
		else:
			# TODO: materialize dns_credentials into a provider ini and pass --dns-<provider>-credentials
			args.append(f"--dns-{request.dns_provider}")
	else:
		args.append(f"--{request.plugin}")
		if request.plugin == "webroot" and request.webroot_path:
			args += ["-w", request.webroot_path]

	for domain in request.domains:
		args += ["-d", domain]

	args += ["--email", str(request.email)]
	if request.agree_tos:
		args.append("--agree-tos")
	if request.staging:
		args.append("--staging")
	return args


def renew_args(options: RenewalOptions) -> list[str]:
	args = ["renew"]
	if options.cert_name:
		args += ["--cert-name", options.cert_name]
	if options.dry_run:
		args.append("--dry-run")
	if options.force_renewal:
		args.append("--force-renewal")
	return args


def revoke_args(options: RevocationOptions) -> list[str]:
	args = ["revoke", "--non-interactive", "--cert-name", options.cert_name]
	if options.reason:
		args += ["--reason", options.reason]
	if options.delete_after_revoke:
		args.append("--delete-after-revoke")
	else:
		args.append("--no-delete-after-revoke")
	return args


def delete_args(cert_name: str) -> list[str]:
	return ["delete", "--non-interactive", "--cert-name", cert_name]


def redact_request(payload: dict[str, Any]) -> dict[str, Any]:
	"""Copy of a request payload that is safe to keep on a job."""
	cleaned = dict(payload)
	if cleaned.get("dns_credentials"):
		cleaned["dns_credentials"] = REDACTED
	return cleaned


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------

def _status_for(expiry) -> str:
	remaining = expiry - utcnow()
	if remaining < timedelta(0):
		return "expired"
	if remaining < EXPIRING_SOON:
		return "expiring_soon"
	return "valid"


def parse_certificate_list(output: str) -> list[Certificate]:
	"""Parse the text printed by ``certbot certificates``.

	Blocks start at ``Certificate Name:``; unknown lines are skipped and a
	block without a parseable expiry date is dropped with a warning.
	"""
	blocks: list[dict[str, Any]] = []
	current: dict[str, Any] | None = None

	for raw in output.splitlines():
		line = raw.strip()
		key, sep, value = line.partition(":")
		if not sep:
			continue
		value = value.strip()
		if key == "Certificate Name":
			current = {"name": value, "domains": []}
			blocks.append(current)
		elif current is None:
			continue
		elif key == "Domains":
			current["domains"] = value.split()
		elif key == "Expiry Date":
			current["expiry_raw"] = value.split("(", 1)[0].strip()
		elif key == "Serial Number":
			current["serial_number"] = value
		elif key == "Certificate Path":
			current["path"] = value

	certificates = []
	for block in blocks:
		expiry = parse_utc(block.pop("expiry_raw", ""))
		if expiry is None:
			_log.warning("CERTBOT_PARSE cert=%s missing or invalid expiry date", block["name"])
			continue
		certificates.append(
			Certificate(expiry=isoformat_utc(expiry), status=_status_for(expiry), **block)
		)
	return certificates


def _describe_key(cert: x509.Certificate) -> str:
	key = cert.public_key()
	if isinstance(key, rsa.RSAPublicKey):
		return f"RSA {key.key_size}"
	if isinstance(key, ec.EllipticCurvePublicKey):
		return f"ECDSA {key.curve.name}"
	if isinstance(key, ed25519.Ed25519PublicKey):
		return "Ed25519"
	return type(key).__name__


def read_certificate_details(cert_path: Path) -> dict[str, str] | None:
	"""Issuer, start of validity and key type of a PEM certificate, or None."""
	try:
		cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
	except (OSError, ValueError) as exc:
		_log.debug("CERT_DETAILS path=%s unreadable: %s", cert_path, exc)
		return None
	return {
		"issuer": cert.issuer.rfc4514_string(),
		"not_before": isoformat_utc(cert.not_valid_before_utc),
		"key_type": _describe_key(cert),
	}


def read_log_tail(logs_dir: Path, limit: int) -> list[str]:
	"""Last ``limit`` non-blank lines of the newest ``*.log`` file."""
	try:
		candidates = [p for p in logs_dir.iterdir() if p.is_file() and p.name.endswith(".log")]
	except OSError as exc:
		_log.warning("CERTBOT_LOGS dir=%s unreadable: %s", logs_dir, exc)
		return []
	if not candidates:
		return []
	latest = max(candidates, key=lambda p: p.stat().st_mtime)
	try:
		text = latest.read_text(encoding="utf-8", errors="replace")
	except OSError as exc:
		_log.warning("CERTBOT_LOGS file=%s unreadable: %s", latest, exc)
		return []
	lines = [line for line in text.splitlines() if line.strip()]
	return lines[-limit:] if limit > 0 else []


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class CertbotRunner:
	"""Runs the certbot binary as a subprocess.

	Global directory options are added to every call, so a non-root
	install can point certbot somewhere writable.
	"""

	def __init__(
		self,
		certbot_path: str,
		*,
		config_dir: Path | None = None,
		work_dir: Path | None = None,
		logs_dir: Path | None = None,
		timeout: float = COMMAND_TIMEOUT,
		max_output: int = MAX_OUTPUT_BYTES,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.certbot_path = certbot_path
		self.config_dir = config_dir
		self.work_dir = work_dir
		self.logs_dir = logs_dir
		self._timeout = timeout
		self._max_output = max_output
		self._sleep = sleep

	def build_argv(self, args: Sequence[str]) -> list[str]:
		argv = [self.certbot_path]
		for flag, value in (
			("--config-dir", self.config_dir),
			("--work-dir", self.work_dir),
			("--logs-dir", self.logs_dir),
		):
			if value is not None:
				argv += [flag, sanitize(str(value))]
		argv += [sanitize(arg) for arg in args]
		return argv

	async def run(self, args: Sequence[str]) -> CommandResult:
		"""Execute certbot with ``args`` and capture its output.

		Enforces the wall-clock timeout and the combined stdout/stderr cap;
		the process is killed when either is hit. Cancellation kills the
		process and propagates.
		"""
		argv = self.build_argv(args)
		_log.info("CERTBOT_EXEC args=%s", " ".join(argv[1:]))

		try:
			proc = await asyncio.create_subprocess_exec(
				*argv,
				stdin=asyncio.subprocess.DEVNULL,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
			)
		except OSError as exc:
			_log.error("CERTBOT_EXEC failed to start %s: %s", self.certbot_path, exc)
			return CommandResult(False, "", f"Failed to start certbot: {exc}", 127)

		stdout_buf = bytearray()
		stderr_buf = bytearray()
		overflow = False

		def _kill() -> None:
			try:
				proc.kill()
			except ProcessLookupError:
				pass

		async def _drain(stream: asyncio.StreamReader, buf: bytearray) -> None:
			nonlocal overflow
			while True:
				chunk = await stream.read(_READ_CHUNK)
				if not chunk:
					return
				room = self._max_output - len(stdout_buf) - len(stderr_buf)
				if len(chunk) > room:
					buf.extend(chunk[:max(room, 0)])
					if not overflow:
						overflow = True
						_kill()
					return
				buf.extend(chunk)

		async def _communicate() -> int:
			await asyncio.gather(_drain(proc.stdout, stdout_buf), _drain(proc.stderr, stderr_buf))
			return await proc.wait()

		timed_out = False
		try:
			exit_code = await asyncio.wait_for(_communicate(), timeout=self._timeout)
		except asyncio.TimeoutError:
			timed_out = True
			_kill()
			exit_code = await proc.wait()
		except asyncio.CancelledError:
			_kill()
			await asyncio.shield(proc.wait())
			raise

		stdout = stdout_buf.decode("utf-8", errors="replace")
		stderr = stderr_buf.decode("utf-8", errors="replace")

		if timed_out or overflow:
			reason = (
				f"Command timed out after {self._timeout:.0f}s"
				if timed_out
				else f"Command output exceeded {self._max_output} bytes"
			)
			_log.error("CERTBOT_EXEC aborted: %s", reason)
			stderr = f"{stderr}\n{reason}" if stderr else reason
			return CommandResult(False, stdout, stderr, 1)

		if exit_code is None or exit_code < 0:
			exit_code = 1
		success = exit_code == 0
		if success:
			_log.info("CERTBOT_EXEC ok exit=0")
		else:
			_log.warning("CERTBOT_EXEC failed exit=%d", exit_code)
		return CommandResult(success, stdout, stderr, exit_code)

	async def list_certificates(
		self,
		*,
		attempts: int = LIST_ATTEMPTS,
		base_delay: float = LIST_BASE_DELAY,
	) -> list[Certificate]:
		"""Run ``certbot certificates`` with retries.

		Every failure is retried with doubling delays (1 s, 2 s, ...). After
		the last attempt the final error is raised, a
		:class:`CertbotBusyError` when certbot was still locked.
		"""
		for attempt in range(1, attempts + 1):
			try:
				result = await self.run(["certificates"])
				if not result.success:
					if BUSY_MARKER in result.stderr:
						raise CertbotBusyError("Certbot is busy", result)
					raise CertbotError("Failed to list certificates", result)
				return parse_certificate_list(result.stdout)
			except CertbotError as exc:
				if attempt >= attempts:
					_log.error("CERTBOT_LIST failed after %d attempts: %s", attempts, exc)
					raise
				delay = base_delay * (2 ** (attempt - 1))
				if isinstance(exc, CertbotBusyError):
					_log.warning(
						"CERTBOT_LIST busy, retrying in %.1fs (attempt %d/%d)",
						delay, attempt, attempts,
					)
				else:
					_log.warning(
						"CERTBOT_LIST error, retrying in %.1fs (attempt %d/%d): %s",
						delay, attempt, attempts, exc,
					)
				await self._sleep(delay)
		raise CertbotError("Failed to list certificates")

	async def get_certificate(self, name: str) -> Optional[Certificate]:
		"""Single certificate by lineage name, enriched from its PEM when readable."""
		certificate = next((c for c in await self.list_certificates() if c.name == name), None)
		if certificate is None or self.config_dir is None:
			return certificate
		details = await asyncio.to_thread(
			read_certificate_details,
			self.config_dir / "live" / name / "cert.pem",
		)
		if details:
			certificate = certificate.model_copy(update=details)
		return certificate

	async def get_logs(self, limit: int = 100) -> list[str]:
		if self.logs_dir is None:
			return []
		return await asyncio.to_thread(read_log_tail, self.logs_dir, limit)

	async def version(self) -> str | None:
		"""``certbot --version`` output, or None when certbot is unusable."""
		result = await self.run(["--version"])
		if not result.success:
			return None
		# Older releases print the version on stderr
		return (result.stdout.strip() or result.stderr.strip()) or None
