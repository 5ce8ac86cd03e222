#!/usr/bin/env python3
#
# certbuddy/db/sqlite_auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Bearer-token storage. Only SHA-256 digests of tokens ever hit the disk."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from ..utils.crypto import hash_token
from ..utils.time import utcnow
from .sqlite_runtime import transaction


def create_auth_token(
	conn: sqlite3.Connection,
	user_id: int,
	token: str,
	expires_at: datetime,
) -> int:
	"""Store a new auth token (hashed) and return the token ID."""
	with transaction(conn):
		cur = conn.execute(
			"""
			INSERT INTO auth_tokens (user_id, token_hash, expires_at, created_at)
			VALUES (?, ?, ?, ?)
			""",
			(user_id, hash_token(token), expires_at, utcnow()),
		)
		return cur.lastrowid


def get_user_by_token(conn: sqlite3.Connection, token: str) -> sqlite3.Row | None:
	"""Resolve an unexpired token to its active user."""
	cur = conn.execute(
		"""
		SELECT u.* FROM users u
		JOIN auth_tokens t ON u.id = t.user_id
		WHERE t.token_hash = ? AND t.expires_at > ? AND u.is_active = 1
		""",
		(hash_token(token), utcnow()),
	)
	return cur.fetchone()


def delete_auth_token(conn: sqlite3.Connection, token: str) -> None:
	with transaction(conn):
		conn.execute("DELETE FROM auth_tokens WHERE token_hash = ?", (hash_token(token),))


def delete_user_tokens(conn: sqlite3.Connection, user_id: int, *, keep: str | None = None) -> int:
	"""Revoke every token of a user, optionally sparing the one in ``keep``."""
	with transaction(conn):
		if keep is None:
			cur = conn.execute("DELETE FROM auth_tokens WHERE user_id = ?", (user_id,))
		else:
			cur = conn.execute(
				"DELETE FROM auth_tokens WHERE user_id = ? AND token_hash != ?",
				(user_id, hash_token(keep)),
			)
		return cur.rowcount
