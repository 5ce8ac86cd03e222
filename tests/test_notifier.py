#!/usr/bin/env python3
#
# tests/test_notifier.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import json
import sqlite3

import pytest
from starlette.websockets import WebSocketState

from certbuddy.services.notifier import Notifier


class FakeSocket:
	def __init__(self, *, broken: bool = False) -> None:
		self.client_state = WebSocketState.CONNECTED
		self.application_state = WebSocketState.CONNECTED
		self.broken = broken
		self.sent: list[dict] = []
		self.close_code: int | None = None

	async def send_text(self, text: str) -> None:
		if self.broken:
			raise RuntimeError("Cannot call send once a close message has been sent")
		self.sent.append(json.loads(text))

	async def close(self, code: int = 1000, reason: str | None = None) -> None:
		self.close_code = code
		self.application_state = WebSocketState.DISCONNECTED


@pytest.fixture
def notifier() -> Notifier:
	return Notifier(lambda token: None)


@pytest.mark.anyio
async def test_broadcast_reaches_only_the_owner(notifier: Notifier):
	mine, other = FakeSocket(), FakeSocket()
	notifier.register("1", mine)
	notifier.register("2", other)

	delivered = await notifier.send_operation_progress("1", "job-1", "obtain", 20, "Executing certbot command...")

	assert delivered == 1
	assert mine.sent == [{
		"type": "operation_progress",
		"payload": {"jobId": "job-1", "operation": "obtain", "progress": 20, "message": "Executing certbot command..."},
	}]
	assert other.sent == []


@pytest.mark.anyio
async def test_broadcast_without_user_reaches_everyone(notifier: Notifier):
	sockets = [FakeSocket(), FakeSocket(), FakeSocket()]
	notifier.register("1", sockets[0])
	notifier.register("1", sockets[1])
	notifier.register("2", sockets[2])

	assert await notifier.broadcast({"type": "maintenance", "payload": {}}) == 3
	assert all(ws.sent == [{"type": "maintenance", "payload": {}}] for ws in sockets)


@pytest.mark.anyio
async def test_broadcast_skips_closed_and_drops_broken(notifier: Notifier):
	closing = FakeSocket()
	closing.client_state = WebSocketState.DISCONNECTED
	broken = FakeSocket(broken=True)
	healthy = FakeSocket()
	for ws in (closing, broken, healthy):
		notifier.register("1", ws)

	delivered = await notifier.send_certificate_update("1", "renewed", {"certName": "example.com"})

	assert delivered == 1
	assert closing.sent == []
	assert healthy.sent[0]["payload"] == {"event": "renewed", "certificate": {"certName": "example.com"}}
	# Closed sockets stay until their own handler unregisters them
	assert notifier.connection_count("1") == 2


@pytest.mark.anyio
async def test_operation_complete_and_dns_payloads(notifier: Notifier):
	ws = FakeSocket()
	notifier.register("1", ws)

	await notifier.send_operation_complete("1", "job-1", "revoke", False, {"error": "boom", "exitCode": 1})
	await notifier.send_dns_challenge("1", "job-2", {"domain": "example.com", "validation": "abc"})

	assert ws.sent[0]["payload"] == {
		"jobId": "job-1", "operation": "revoke", "success": False, "data": {"error": "boom", "exitCode": 1},
	}
	assert ws.sent[1] == {
		"type": "dns_challenge",
		"payload": {"domain": "example.com", "validation": "abc", "jobId": "job-2"},
	}


def test_unregister_forgets_users_without_connections(notifier: Notifier):
	first, second = FakeSocket(), FakeSocket()
	notifier.register("1", first)
	notifier.register("1", second)

	notifier.unregister("1", first)
	assert notifier.users == ["1"]
	notifier.unregister("1", second)
	assert notifier.users == []
	assert notifier.connection_count() == 0

	notifier.unregister("1", second)


@pytest.mark.anyio
async def test_close_all_uses_going_away(notifier: Notifier):
	first, second = FakeSocket(), FakeSocket()
	notifier.register("1", first)
	notifier.register("2", second)

	await notifier.close_all()

	assert first.close_code == 1001
	assert second.close_code == 1001
	assert notifier.connection_count() == 0


class HandshakeSocket(FakeSocket):
	def __init__(self, token: str | None) -> None:
		super().__init__()
		self.query_params = {"token": token} if token else {}
		self.accepted = False
		self.close_reason: str | None = None

	async def accept(self) -> None:
		self.accepted = True

	async def close(self, code: int = 1000, reason: str | None = None) -> None:
		await super().close(code, reason)
		self.close_reason = reason


@pytest.mark.anyio
async def test_serve_closes_with_internal_error_when_database_fails():
	def authenticate(token: str):
		raise sqlite3.OperationalError("database is locked")

	notifier = Notifier(authenticate)
	ws = HandshakeSocket("abc")

	await notifier.serve(ws)

	assert ws.accepted
	assert ws.close_code == 1011
	assert ws.close_reason == "Authentication unavailable"
	assert notifier.connection_count() == 0
