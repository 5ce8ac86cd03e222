#!/usr/bin/env python3
#
# certbuddy/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Schema creation and first-run bootstrap."""

from __future__ import annotations

import logging
import sqlite3

from ..utils.crypto import hash_password
from ..utils.time import utcnow
from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin"


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create tables for users and their bearer tokens (idempotent).

	Jobs have no table; they live in memory only.
	"""
	with transaction(conn):
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS users (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				username TEXT NOT NULL UNIQUE,
				email TEXT,
				password_hash TEXT NOT NULL,
				is_admin INTEGER NOT NULL DEFAULT 0,
				is_active INTEGER NOT NULL DEFAULT 1,
				last_login_at timestamp,
				last_login_ip TEXT,
				created_at timestamp NOT NULL
			)
			"""
		)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS auth_tokens (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				user_id INTEGER NOT NULL,
				token_hash TEXT NOT NULL UNIQUE,
				expires_at timestamp NOT NULL,
				created_at timestamp NOT NULL,
				FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_auth_tokens_expires_at ON auth_tokens(expires_at)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_auth_tokens_user_id ON auth_tokens(user_id)")


def ensure_default_admin(conn: sqlite3.Connection) -> bool:
	"""Create ``admin``/``admin`` when the users table is empty.

	Returns True if the account was created.
	"""
	try:
		with transaction(conn, immediate=True):
			count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
			if count:
				return False
			conn.execute(
				"""
				INSERT INTO users (username, password_hash, is_admin, is_active, created_at)
				VALUES (?, ?, 1, 1, ?)
				""",
				(DEFAULT_ADMIN_USERNAME, hash_password(DEFAULT_ADMIN_PASSWORD), utcnow()),
			)
	except sqlite3.IntegrityError:
		return False
	_log.warning(
		"AUTH created default admin user (username: %s, password: %s) - CHANGE THIS!",
		DEFAULT_ADMIN_USERNAME, DEFAULT_ADMIN_PASSWORD,
	)
	return True
