#!/usr/bin/env python3
#
# certbuddy/utils/crypto.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Password hashing and bearer-token helpers."""

from __future__ import annotations

import hashlib
import hmac
import os
import secrets
from datetime import datetime, timedelta

from .time import utcnow

_PBKDF2_ITERATIONS = 600_000  # OWASP minimum for PBKDF2-SHA256

# Verified against when the username is unknown so both paths cost the same
DUMMY_PASSWORD_HASH = (
	"pbkdf2:sha256:600000$"
	"00000000000000000000000000000000$"
	"0000000000000000000000000000000000000000000000000000000000000000"
)

# Fixed lifetime of a bearer token; there is no sliding refresh
TOKEN_TTL_HOURS = 24


def hash_password(password: str) -> str:
	"""Hash a password as ``pbkdf2:sha256:<iterations>$<salt>$<hash>``."""
	salt = os.urandom(16)
	dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
	return f"pbkdf2:sha256:{_PBKDF2_ITERATIONS}${salt.hex()}${dk.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
	"""Constant-time check of a password against a stored hash."""
	try:
		method, salt_hex, hash_hex = password_hash.split("$")
		scheme, algorithm, iterations = method.split(":")
		if scheme != "pbkdf2":
			return False
		dk = hashlib.pbkdf2_hmac(
			algorithm,
			password.encode("utf-8"),
			bytes.fromhex(salt_hex),
			int(iterations),
		)
		return hmac.compare_digest(dk, bytes.fromhex(hash_hex))
	except (ValueError, TypeError):
		return False


def new_token() -> str:
	"""Generate a new opaque bearer token (32 bytes, URL-safe base64)."""
	return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
	"""SHA-256 of a token; only the digest is ever stored."""
	return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token_expiry(hours: int = TOKEN_TTL_HOURS) -> datetime:
	"""Expiry timestamp for a freshly issued token."""
	return utcnow() + timedelta(hours=hours)
