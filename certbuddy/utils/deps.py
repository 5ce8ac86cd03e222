#!/usr/bin/env python3
#
# certbuddy/utils/deps.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI dependency helpers."""

from __future__ import annotations

from collections.abc import Generator

from fastapi import Request

from ..db import sqlite as sqlite_db


def get_conn(request: Request) -> Generator:
	"""Yield a per-request SQLite connection."""
	conn = sqlite_db.connect(request.app.state.db_path)
	try:
		yield conn
	finally:
		sqlite_db.close_connection(conn)


def get_config(request: Request):
	"""Get the application configuration from app state."""
	return request.app.state.cfg


def get_jobs(request: Request):
	return request.app.state.jobs


def get_runner(request: Request):
	return request.app.state.runner


def get_orchestrator(request: Request):
	return request.app.state.orchestrator
