#!/usr/bin/env python3
#
# certbuddy/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pydantic models for CertBuddy."""

from .certificates import (
	Certificate,
	CertificateRequest,
	DnsChallenge,
	RenewalOptions,
	RevocationOptions,
)
from .users import (
	LoginRequest,
	PasswordChangeRequest,
	RegisterRequest,
)

__all__ = [
	# Certificates
	"Certificate",
	"CertificateRequest",
	"DnsChallenge",
	"RenewalOptions",
	"RevocationOptions",
	# Users
	"LoginRequest",
	"PasswordChangeRequest",
	"RegisterRequest",
]
