#!/usr/bin/env python3
#
# certbuddy/db/sqlite_users.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""User CRUD."""

from __future__ import annotations

import sqlite3
from typing import Optional

from ..utils.crypto import hash_password
from ..utils.time import utcnow
from .sqlite_runtime import transaction


def get_user_by_username(conn: sqlite3.Connection, username: str) -> sqlite3.Row | None:
	"""Get a user by username (case-insensitive).

	Usernames are stored lowercase, so a plain equality can use the index.
	"""
	cur = conn.execute("SELECT * FROM users WHERE username = ?", (username.strip().lower(),))
	return cur.fetchone()


def get_user_by_id(conn: sqlite3.Connection, user_id: int) -> Optional[sqlite3.Row]:
	cur = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
	return cur.fetchone()


def create_user(
	conn: sqlite3.Connection,
	username: str,
	password: str,
	*,
	email: str | None = None,
	is_admin: bool = False,
) -> int | None:
	"""Create a user and return its ID, or None when the username is taken."""
	try:
		with transaction(conn):
			cur = conn.execute(
				"""
				INSERT INTO users (username, email, password_hash, is_admin, is_active, created_at)
				VALUES (?, ?, ?, ?, 1, ?)
				""",
				(username.strip().lower(), email, hash_password(password), int(is_admin), utcnow()),
			)
			return cur.lastrowid
	except sqlite3.IntegrityError:
		return None


def set_password(conn: sqlite3.Connection, user_id: int, password: str) -> bool:
	"""Replace a user's password hash. Returns False for an unknown user."""
	with transaction(conn):
		cur = conn.execute(
			"UPDATE users SET password_hash = ? WHERE id = ?",
			(hash_password(password), user_id),
		)
		return cur.rowcount > 0


def update_last_login(conn: sqlite3.Connection, user_id: int, ip_address: str) -> None:
	with transaction(conn):
		conn.execute(
			"UPDATE users SET last_login_at = ?, last_login_ip = ? WHERE id = ?",
			(utcnow(), ip_address, user_id),
		)
