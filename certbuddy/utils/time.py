#!/usr/bin/env python3
#
# certbuddy/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Timezone-aware time utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
	"""Return the current UTC time as a timezone-aware datetime."""
	return datetime.now(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
	"""Render a datetime as ISO-8601 with a ``Z`` suffix (None passes through)."""
	if dt is None:
		return None
	if dt.tzinfo is None:
		raise ValueError("Naive datetime not allowed - must be timezone-aware")
	return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_utc(s: str) -> Optional[datetime]:
	"""Parse an ISO-8601 timestamp string to a UTC datetime.
	
	Handles both 'Z' suffix and '+00:00' offset notation.
	Naive timestamps are assumed to be UTC (certbot prints offsets, but
	hand-written inputs sometimes don't). Returns None when unparseable.
	"""
	if not s:
		return None
	s = s.strip()
	try:
		if s.endswith("Z"):
			s = s[:-1] + "+00:00"
		dt = datetime.fromisoformat(s)
	except (ValueError, TypeError):
		return None
	if dt.tzinfo is None:
		dt = dt.replace(tzinfo=timezone.utc)
	return dt.astimezone(timezone.utc)
