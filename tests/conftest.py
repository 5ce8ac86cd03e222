#!/usr/bin/env python3
#
# tests/conftest.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Shared fixtures: isolated config, a fake certbot, an authenticated client."""

from __future__ import annotations

import stat
import time
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from certbuddy import create_app
from certbuddy.services.certbot import CommandResult
from certbuddy.services.notifier import Notifier
from certbuddy.utils.config import Config
from certbuddy.utils.rate_limit import limiter

CERTIFICATES_OUTPUT = """\
Saving debug log to /var/log/letsencrypt/letsencrypt.log

- - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - -
Found the following certs:
  Certificate Name: example.com
    Serial Number: 1234567890abcdef
    Key Type: ECDSA
    Domains: example.com www.example.com
    Expiry Date: 2099-12-31 23:59:59+00:00 (VALID: 27000 days)
    Certificate Path: /etc/letsencrypt/live/example.com/fullchain.pem
    Private Key Path: /etc/letsencrypt/live/example.com/privkey.pem
  Certificate Name: old.example.org
    Serial Number: fedcba0987654321
    Domains: old.example.org
    Expiry Date: 2020-01-01 00:00:00+00:00 (INVALID: EXPIRED)
    Certificate Path: /etc/letsencrypt/live/old.example.org/fullchain.pem
- - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - -
"""

# Records every invocation, then behaves like a healthy certbot
_FAKE_CERTBOT = """#!/bin/sh
echo "$@" >> {calls}
case " $* " in
	*" --version "*)
		echo "certbot 2.11.0"
		exit 0
		;;
	*" certificates "*)
		cat {listing}
		exit 0
		;;
	*" fail.example.com "*)
		echo "Some challenges have failed." >&2
		exit 1
		;;
esac
echo "Successfully received certificate."
exit 0
"""


def write_script(path: Path, body: str) -> Path:
	path.write_text(body, encoding="utf-8")
	path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
	return path


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
	"""Poll ``predicate`` from a sync test until it holds or time runs out."""
	deadline = time.monotonic() + timeout
	while time.monotonic() < deadline:
		if predicate():
			return True
		time.sleep(interval)
	return predicate()


class RecordingNotifier(Notifier):
	"""Notifier that keeps every broadcast instead of sending it."""

	def __init__(self) -> None:
		super().__init__(lambda token: None)
		self.events: list[tuple[str | None, dict[str, Any]]] = []

	async def broadcast(self, event: dict[str, Any], user_id: str | None = None) -> int:
		self.events.append((user_id, event))
		return 1

	def types(self) -> list[str]:
		return [event["type"] for _, event in self.events]

	def of_type(self, event_type: str) -> list[dict[str, Any]]:
		return [event["payload"] for _, event in self.events if event["type"] == event_type]


class ScriptedRunner:
	"""Stand-in for CertbotRunner.run that replays canned results."""

	def __init__(self, *results: CommandResult | BaseException) -> None:
		self.results = list(results)
		self.calls: list[list[str]] = []

	async def run(self, args) -> CommandResult:
		self.calls.append(list(args))
		outcome = self.results.pop(0) if len(self.results) > 1 else self.results[0]
		if isinstance(outcome, BaseException):
			raise outcome
		return outcome


@pytest.fixture
def anyio_backend():
	return "asyncio"


@pytest.fixture(autouse=True)
def _no_rate_limits():
	limiter.enabled = False
	yield
	limiter.enabled = True


@pytest.fixture
def certbot_calls(tmp_path: Path) -> Path:
	return tmp_path / "certbot-calls.log"


@pytest.fixture
def fake_certbot(tmp_path: Path, certbot_calls: Path) -> Path:
	listing = tmp_path / "certificates.txt"
	listing.write_text(CERTIFICATES_OUTPUT, encoding="utf-8")
	return write_script(
		tmp_path / "certbot",
		_FAKE_CERTBOT.format(calls=certbot_calls, listing=listing),
	)


@pytest.fixture
def cfg(tmp_path: Path, fake_certbot: Path) -> Config:
	data_dir = tmp_path / "data"
	return Config(
		base_dir=tmp_path,
		data_dir=data_dir,
		db_path=data_dir / "certbuddy.db",
		certbot_path=str(fake_certbot),
		certbot_config_dir=tmp_path / "letsencrypt",
		certbot_work_dir=tmp_path / "work",
		certbot_logs_dir=tmp_path / "logs",
		challenge_dir=tmp_path / "challenges",
		dns_propagation_seconds=0,
		allowed_origins=("http://localhost:3000",),
		allow_registration=True,
		log_level="DEBUG",
	)


@pytest.fixture
def client(cfg: Config):
	app = create_app(cfg)
	with TestClient(app) as test_client:
		yield test_client


def login(client: TestClient, username: str = "admin", password: str = "admin") -> dict[str, str]:
	response = client.post("/api/auth/login", json={"username": username, "password": password})
	assert response.status_code == 200, response.text
	return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def auth_headers(client: TestClient) -> dict[str, str]:
	return login(client)
