#!/usr/bin/env python3
#
# certbuddy/tasks/maintenance.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Periodic housekeeping run by the scheduler."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from ..services.jobs import JobStore
from ..utils.time import isoformat_utc, utcnow

_log = logging.getLogger(__name__)

__all__ = [
	"cleanup_jobs",
	"cleanup_stale_sessions",
]


async def cleanup_jobs(jobs: JobStore) -> None:
	"""Drop finished jobs past retention or over the cap."""
	removed = jobs.cleanup()
	if not removed:
		_log.debug("MAINTENANCE no jobs to clean up (%d tracked)", len(jobs))


async def cleanup_stale_sessions(db_path: Path) -> None:
	"""Remove expired auth tokens from SQLite.

	Runs hourly to keep the auth_tokens table small.
	"""
	if not Path(db_path).exists():
		_log.warning("MAINTENANCE SQLite database not found at %s", db_path)
		return

	try:
		async with aiosqlite.connect(db_path) as db:
			# Same text format the sqlite3 adapter writes, so string comparison orders correctly
			cursor = await db.execute(
				"DELETE FROM auth_tokens WHERE expires_at < ?",
				(isoformat_utc(utcnow()),),
			)
			await db.commit()
			deleted_count = cursor.rowcount
	except Exception:
		_log.exception("MAINTENANCE auth token cleanup failed")
		raise

	if deleted_count > 0:
		_log.info("MAINTENANCE cleaned up %d expired auth tokens", deleted_count)
	else:
		_log.debug("MAINTENANCE no expired auth tokens to clean up")
