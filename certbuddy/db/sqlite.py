#!/usr/bin/env python3
#
# certbuddy/db/sqlite.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite access layer: one import point for the runtime, schema, user and token helpers."""

from __future__ import annotations

from .sqlite_auth import (
	create_auth_token,
	delete_auth_token,
	delete_user_tokens,
	get_user_by_token,
)
from .sqlite_runtime import close_all_connections, close_connection, connect, transaction
from .sqlite_schema import ensure_default_admin, init_schema
from .sqlite_users import create_user, get_user_by_id, get_user_by_username, set_password, update_last_login

__all__ = [
	"close_all_connections",
	"close_connection",
	"connect",
	"create_auth_token",
	"create_user",
	"delete_auth_token",
	"delete_user_tokens",
	"ensure_default_admin",
	"get_user_by_id",
	"get_user_by_token",
	"get_user_by_username",
	"init_schema",
	"set_password",
	"transaction",
	"update_last_login",
]
