#!/usr/bin/env python3
#
# certbuddy/models/users.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""User-related Pydantic models."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# Username: 3-64 chars, starts/ends with alphanumeric, allows _ or - in middle
_USERNAME_RE = re.compile(r"^[a-z0-9](?:[a-z0-9_-]{1,62}[a-z0-9])?$")


class LoginRequest(BaseModel):
	"""Login request payload."""
	username: str = Field(..., min_length=1, max_length=64)
	password: str = Field(..., min_length=1, max_length=256)

	@field_validator("username")
	@classmethod
	def normalize_username(cls, v: str) -> str:
		return v.strip().lower()


class RegisterRequest(BaseModel):
	"""Self-service registration payload."""
	username: str = Field(..., min_length=3, max_length=64)
	email: Optional[EmailStr] = None
	password: str = Field(..., min_length=8, max_length=256)

	@field_validator("username")
	@classmethod
	def validate_username(cls, v: str) -> str:
		v_lower = v.strip().lower()
		if not _USERNAME_RE.match(v_lower):
			raise ValueError(
				"Username must be 3-64 alphanumeric chars, may contain _ or - "
				"(but not at start/end)"
			)
		return v_lower


class PasswordChangeRequest(BaseModel):
	"""Password change request payload."""
	current_password: str = Field(..., min_length=1, max_length=256)
	new_password: str = Field(..., min_length=8, max_length=256)

	@model_validator(mode="after")
	def validate_passwords_differ(self) -> "PasswordChangeRequest":
		if self.current_password == self.new_password:
			raise ValueError("New password must be different from current password")
		return self
