#!/usr/bin/env python3
#
# certbuddy/api/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Authentication API routes and dependencies."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..db import sqlite as sqlite_db
from ..models.users import LoginRequest, PasswordChangeRequest, RegisterRequest
from ..utils.crypto import DUMMY_PASSWORD_HASH, generate_token_expiry, new_token, verify_password
from ..utils.deps import get_config, get_conn
from ..utils.rate_limit import RATE_LIMIT_AUTH, limiter
from ..utils.time import isoformat_utc
from .response import ok_response

_log = logging.getLogger(__name__)
_security = HTTPBearer(auto_error=False)

router = APIRouter(tags=["auth"])

# Proxy headers are only honoured from these peers
_TRUSTED_PROXIES = {"127.0.0.1", "::1"}


def _get_client_ip(request: Request) -> str:
	direct_ip = request.client.host if request.client else "unknown"
	if direct_ip in _TRUSTED_PROXIES:
		forwarded_for = request.headers.get("X-Forwarded-For")
		if forwarded_for:
			return forwarded_for.split(",")[0].strip()
		x_real_ip = request.headers.get("X-Real-IP")
		if x_real_ip:
			return x_real_ip.strip()
	return direct_ip


# ---------------------------------------------------------------------------
# Token verification (shared by HTTP and WebSocket)
# ---------------------------------------------------------------------------

def authenticate_token(conn: sqlite3.Connection, token: str) -> Optional[sqlite3.Row]:
	"""Resolve a bearer token to an active user row, or None."""
	if not token:
		return None
	return sqlite_db.get_user_by_token(conn, token)


def make_token_authenticator(db_path: Path) -> Callable[[str], Optional[str]]:
	"""Blocking ``token -> user id`` lookup for the realtime endpoint."""

	def _authenticate(token: str) -> Optional[str]:
		conn = sqlite_db.connect(db_path)
		try:
			user = authenticate_token(conn, token)
		finally:
			sqlite_db.close_connection(conn)
		return str(user["id"]) if user else None

	return _authenticate


def get_current_user(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
	conn: sqlite3.Connection = Depends(get_conn),
) -> sqlite3.Row:
	"""FastAPI dependency that enforces bearer authentication."""
	if not credentials or not credentials.credentials:
		raise HTTPException(status_code=401, detail="Not authenticated")
	user = authenticate_token(conn, credentials.credentials)
	if user is None:
		raise HTTPException(status_code=401, detail="Invalid or expired token")
	return user


def current_user_id(user: sqlite3.Row = Depends(get_current_user)) -> str:
	"""Owner id used for jobs and realtime events."""
	return str(user["id"])


def _issue_token(conn: sqlite3.Connection, user_id: int) -> dict:
	token = new_token()
	expires_at = generate_token_expiry()
	sqlite_db.create_auth_token(conn, user_id, token, expires_at)
	return {
		"token": token,
		"expires_at": isoformat_utc(expires_at),
		"token_type": "Bearer",
	}


def _user_public(user: sqlite3.Row) -> dict:
	return {
		"id": user["id"],
		"username": user["username"],
		"email": user["email"],
		"is_admin": bool(user["is_admin"]),
		"created_at": isoformat_utc(user["created_at"]),
		"last_login_at": isoformat_utc(user["last_login_at"]),
	}


# ---------------------------------------------------------------------------
# Auth Endpoints
# ---------------------------------------------------------------------------

@router.post("/login")
@limiter.limit(RATE_LIMIT_AUTH)
def login(
	request: Request,
	payload: LoginRequest,
	conn: sqlite3.Connection = Depends(get_conn),
):
	"""Authenticate a user and return a bearer token."""
	client_ip = _get_client_ip(request)
	user = sqlite_db.get_user_by_username(conn, payload.username)

	# Verify against a dummy hash for unknown users so timing doesn't leak existence
	password_hash = user["password_hash"] if user else DUMMY_PASSWORD_HASH
	password_valid = verify_password(payload.password, password_hash)

	if not user or not password_valid:
		_log.info("LOGIN_FAILED ip=%s username=%s", client_ip, payload.username)
		raise HTTPException(status_code=401, detail="Invalid username or password")
	if not user["is_active"]:
		_log.info("LOGIN_INACTIVE ip=%s username=%s", client_ip, payload.username)
		raise HTTPException(status_code=403, detail="Account disabled")

	data = _issue_token(conn, user["id"])
	sqlite_db.update_last_login(conn, user["id"], client_ip)
	_log.info("LOGIN_SUCCESS ip=%s username=%s", client_ip, payload.username)
	return ok_response(data={**data, "user": _user_public(user)})


@router.post("/register", status_code=201)
@limiter.limit(RATE_LIMIT_AUTH)
def register(
	request: Request,
	payload: RegisterRequest,
	conn: sqlite3.Connection = Depends(get_conn),
	cfg=Depends(get_config),
):
	"""Create a regular account and log it in. Disabled unless configured."""
	if not cfg.allow_registration:
		raise HTTPException(status_code=403, detail="Registration is disabled")

	user_id = sqlite_db.create_user(
		conn,
		payload.username,
		payload.password,
		email=str(payload.email) if payload.email else None,
	)
	if user_id is None:
		raise HTTPException(status_code=409, detail="Username already exists")

	user = sqlite_db.get_user_by_id(conn, user_id)
	_log.info("USER_REGISTERED ip=%s username=%s", _get_client_ip(request), payload.username)
	data = _issue_token(conn, user_id)
	return ok_response(message="User registered", data={**data, "user": _user_public(user)})


@router.post("/change-password")
@limiter.limit(RATE_LIMIT_AUTH)
def change_password(
	request: Request,
	payload: PasswordChangeRequest,
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
):
	"""Change the caller's password; every other session of theirs is revoked."""
	if not verify_password(payload.current_password, user["password_hash"]):
		raise HTTPException(status_code=401, detail="Current password is incorrect")

	sqlite_db.set_password(conn, user["id"], payload.new_password)
	revoked = sqlite_db.delete_user_tokens(conn, user["id"], keep=credentials.credentials)
	_log.info("PASSWORD_CHANGED user=%s revoked_tokens=%d", user["username"], revoked)
	return ok_response(message="Password changed")


@router.post("/logout")
def logout(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
	conn: sqlite3.Connection = Depends(get_conn),
):
	"""Invalidate the presented token (idempotent)."""
	if credentials and credentials.credentials:
		sqlite_db.delete_auth_token(conn, credentials.credentials)
	return ok_response(message="Logged out")


@router.get("/me")
def get_current_user_info(user: sqlite3.Row = Depends(get_current_user)):
	return ok_response(data=_user_public(user))
