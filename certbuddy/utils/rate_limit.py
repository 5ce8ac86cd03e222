#!/usr/bin/env python3
#
# certbuddy/utils/rate_limit.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Rate limiting configuration using slowapi."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

# Rate limit presets
RATE_LIMIT_AUTH = "5/minute"       # login, register, change-password
RATE_LIMIT_JOBS = "10/minute"      # certbot lifecycle submissions

# Global limiter instance
limiter = Limiter(key_func=get_remote_address)

__all__ = [
	"RATE_LIMIT_AUTH",
	"RATE_LIMIT_JOBS",
	"limiter",
]
