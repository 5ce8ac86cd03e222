#!/usr/bin/env python3
#
# certbuddy/services/notifier.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Per-user WebSocket fan-out for job and certificate events."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from typing import Any, Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

_log = logging.getLogger(__name__)

__all__ = ["Notifier", "WELCOME_MESSAGE"]

WELCOME_MESSAGE = "Connected to CertBuddy"


def _is_open(websocket: WebSocket) -> bool:
	return (
		websocket.client_state == WebSocketState.CONNECTED
		and websocket.application_state == WebSocketState.CONNECTED
	)


def _frame_text(message: dict[str, Any]) -> str | None:
	"""Text of an inbound frame; binary frames are decoded as UTF-8."""
	if message.get("text") is not None:
		return message["text"]
	data = message.get("bytes")
	if data is None:
		return None
	try:
		return data.decode("utf-8")
	except UnicodeDecodeError:
		return None


class Notifier:
	"""Registry of live connections keyed by user id.

	``authenticate`` maps a bearer token to a user id (or None). It is a
	blocking callable and runs in a worker thread.
	"""

	def __init__(self, authenticate: Callable[[str], Optional[str]]) -> None:
		self._authenticate = authenticate
		self._clients: dict[str, set[WebSocket]] = {}

	# -----------------------------------------------------------------------
	# Registry
	# -----------------------------------------------------------------------

	def register(self, user_id: str, websocket: WebSocket) -> None:
		self._clients.setdefault(user_id, set()).add(websocket)
		_log.info("WS_CONNECTED user=%s connections=%d", user_id, len(self._clients[user_id]))

	def unregister(self, user_id: str, websocket: WebSocket) -> None:
		sockets = self._clients.get(user_id)
		if sockets is None or websocket not in sockets:
			return
		sockets.discard(websocket)
		if not sockets:
			del self._clients[user_id]
		_log.info("WS_DISCONNECTED user=%s", user_id)

	def connection_count(self, user_id: str | None = None) -> int:
		if user_id is not None:
			return len(self._clients.get(user_id, ()))
		return sum(len(sockets) for sockets in self._clients.values())

	@property
	def users(self) -> list[str]:
		return list(self._clients)

	# -----------------------------------------------------------------------
	# Connection handling
	# -----------------------------------------------------------------------

	async def serve(self, websocket: WebSocket) -> None:
		"""Run one client connection until it goes away.

		The handshake is accepted first so a rejected client still gets a
		proper 1008 close frame with a reason.
		"""
		await websocket.accept()

		token = websocket.query_params.get("token")
		if not token:
			_log.warning("WS_REJECTED reason=missing_token")
			await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Token required")
			return

		try:
			user_id = await asyncio.to_thread(self._authenticate, token)
		except sqlite3.Error as exc:
			_log.error("WS_AUTH_FAILED database error: %s", exc)
			await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Authentication unavailable")
			return
		if not user_id:
			_log.warning("WS_REJECTED reason=invalid_token")
			await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
			return

		self.register(user_id, websocket)
		try:
			await websocket.send_text(
				json.dumps({"type": "connected", "payload": {"message": WELCOME_MESSAGE}})
			)
			while True:
				message = await websocket.receive()
				if message["type"] == "websocket.disconnect":
					break
				raw = _frame_text(message)
				if raw is None:
					_log.debug("WS_MESSAGE user=%s ignored undecodable frame", user_id)
					continue
				await self._handle_message(user_id, websocket, raw)
		except WebSocketDisconnect:
			pass
		finally:
			self.unregister(user_id, websocket)

	async def _handle_message(self, user_id: str, websocket: WebSocket, raw: str) -> None:
		try:
			message = json.loads(raw)
		except ValueError:
			_log.debug("WS_MESSAGE user=%s ignored non-JSON frame", user_id)
			return
		if not isinstance(message, dict):
			return
		if message.get("type") == "ping":
			await websocket.send_text(json.dumps({"type": "pong", "payload": {}}))

	# -----------------------------------------------------------------------
	# Broadcasting
	# -----------------------------------------------------------------------

	async def broadcast(self, event: dict[str, Any], user_id: str | None = None) -> int:
		"""Send ``event`` to every open connection of ``user_id`` (or of everyone).

		Returns the number of connections that received it. Connections that
		are not open are skipped; ones that fail mid-send are dropped.
		"""
		text = json.dumps(event, default=str)
		if user_id is not None:
			targets = [(user_id, ws) for ws in self._clients.get(user_id, ())]
		else:
			targets = [(uid, ws) for uid, sockets in self._clients.items() for ws in sockets]

		delivered = 0
		for uid, websocket in targets:
			if not _is_open(websocket):
				continue
			try:
				await websocket.send_text(text)
				delivered += 1
			except (WebSocketDisconnect, RuntimeError, OSError) as exc:
				_log.debug("WS_SEND_FAILED user=%s: %s", uid, exc)
				self.unregister(uid, websocket)
		return delivered

	async def send_operation_progress(
		self,
		user_id: str,
		job_id: str,
		operation: str,
		progress: int,
		message: str,
	) -> int:
		return await self.broadcast(
			{
				"type": "operation_progress",
				"payload": {
					"jobId": job_id,
					"operation": operation,
					"progress": progress,
					"message": message,
				},
			},
			user_id,
		)

	async def send_operation_complete(
		self,
		user_id: str,
		job_id: str,
		operation: str,
		success: bool,
		data: Any = None,
	) -> int:
		return await self.broadcast(
			{
				"type": "operation_complete",
				"payload": {
					"jobId": job_id,
					"operation": operation,
					"success": success,
					"data": data,
				},
			},
			user_id,
		)

	async def send_certificate_update(self, user_id: str, event: str, certificate: Any) -> int:
		return await self.broadcast(
			{"type": "certificate_update", "payload": {"event": event, "certificate": certificate}},
			user_id,
		)

	async def send_dns_challenge(self, user_id: str, job_id: str, snapshot: dict[str, str]) -> int:
		return await self.broadcast(
			{"type": "dns_challenge", "payload": {**snapshot, "jobId": job_id}},
			user_id,
		)

	async def close_all(self) -> None:
		"""Close every connection with 1001 (going away) on shutdown."""
		for uid, websocket in [(u, ws) for u, sockets in self._clients.items() for ws in sockets]:
			if _is_open(websocket):
				try:
					await websocket.close(code=status.WS_1001_GOING_AWAY)
				except (RuntimeError, OSError) as exc:
					_log.debug("WS_CLOSE_FAILED user=%s: %s", uid, exc)
			self.unregister(uid, websocket)
