#!/usr/bin/env python3
#
# certbuddy/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import logging
import sys
import time
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .api import auth as auth_api
from .api import certificates as certificates_api
from .api import health as health_api
from .api import ws as ws_api
from .db.sqlite_runtime import close_all_connections, close_connection, connect
from .db.sqlite_schema import ensure_default_admin, init_schema
from .middleware import SecurityHeadersMiddleware
from .services.certbot import CertbotRunner
from .services.challenge import ChallengeWatcher
from .services.jobs import JobStore
from .services.notifier import Notifier
from .services.orchestrator import JobOrchestrator
from .tasks.maintenance import cleanup_jobs, cleanup_stale_sessions
from .utils.config import Config, get_config
from .utils.rate_limit import limiter
from .utils.request_id import RequestIDMiddleware
from .utils.scheduler import Scheduler

_log = logging.getLogger(__name__)

# ANSI color codes for log levels (if TTY)
_LOG_COLORS = {
	"DEBUG": "\033[36m",    # Cyan
	"INFO": "\033[32m",     # Green
	"WARNING": "\033[33m",  # Yellow
	"ERROR": "\033[31m",    # Red
	"CRITICAL": "\033[35m", # Magenta
}
_RESET = "\033[0m"

_CLEANUP_INTERVAL_SECONDS = 3600.0
_SHUTDOWN_DRAIN_SECONDS = 10.0


class _ColoredFormatter(logging.Formatter):
	"""Adds color to level names on a TTY."""

	def format(self, record):
		orig_levelname = record.levelname
		if orig_levelname in _LOG_COLORS:
			record.levelname = f"{_LOG_COLORS[orig_levelname]}{orig_levelname:<8}{_RESET}"
		else:
			record.levelname = f"{orig_levelname:<8}"
		try:
			return super().format(record)
		finally:
			record.levelname = orig_levelname


def _setup_logging(log_level: str) -> None:
	"""Configure unified logging for the entire application."""
	level = getattr(logging, log_level, logging.INFO)

	if sys.stdout.isatty():
		formatter = _ColoredFormatter(
			fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		)
	else:
		formatter = logging.Formatter(
			fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		)

	# force=True drops handlers installed earlier (e.g. by uvicorn)
	logging.basicConfig(
		level=level,
		handlers=[logging.StreamHandler(sys.stdout)],
		force=True,
	)
	for handler in logging.root.handlers:
		handler.setFormatter(formatter)

	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		logger = logging.getLogger(name)
		logger.handlers.clear()
		logger.setLevel(level)
		logger.propagate = True

	# Quiet down noisy third-party libraries
	for name in ("httpcore", "httpx", "websockets", "aiosqlite"):
		logging.getLogger(name).setLevel(logging.WARNING)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Application lifespan manager."""
	cfg: Config = app.state.cfg

	# ─── BOOTSTRAP ───────────────────────────────────────────
	conn = connect(cfg.db_path)
	try:
		init_schema(conn)
		ensure_default_admin(conn)
	finally:
		close_connection(conn)

	jobs = JobStore()
	runner = CertbotRunner(
		cfg.certbot_path,
		config_dir=cfg.certbot_config_dir,
		work_dir=cfg.certbot_work_dir,
		logs_dir=cfg.certbot_logs_dir,
	)
	notifier = Notifier(auth_api.make_token_authenticator(cfg.db_path))
	watcher = ChallengeWatcher(jobs, notifier)
	orchestrator = JobOrchestrator(
		jobs,
		runner,
		notifier,
		watcher,
		challenge_root=cfg.challenge_dir,
		propagation_seconds=cfg.dns_propagation_seconds,
	)
	app.state.jobs = jobs
	app.state.runner = runner
	app.state.notifier = notifier
	app.state.orchestrator = orchestrator

	# ─── SCHEDULER ───────────────────────────────────────────
	scheduler = Scheduler()
	scheduler.add(
		"job-cleanup",
		interval_seconds=_CLEANUP_INTERVAL_SECONDS,
		func=partial(cleanup_jobs, jobs),
		timeout=30.0,
	)
	scheduler.add(
		"session-cleanup",
		interval_seconds=_CLEANUP_INTERVAL_SECONDS,
		func=partial(cleanup_stale_sessions, cfg.db_path),
		run_on_start=True,
		initial_delay=5.0,
		timeout=60.0,
	)
	app.state.scheduler = scheduler
	await scheduler.start()

	app.state.started_monotonic = time.monotonic()
	_log.info(
		"CertBuddy %s started certbot=%s config_dir=%s challenge_dir=%s",
		__version__, cfg.certbot_path, cfg.certbot_config_dir, cfg.challenge_dir,
	)

	try:
		yield
	finally:
		# ─── SHUTDOWN ────────────────────────────────────────
		await scheduler.stop_graceful(timeout=5.0)
		await orchestrator.aclose(timeout=_SHUTDOWN_DRAIN_SECONDS)
		await notifier.close_all()
		closed_connections = close_all_connections()
		_log.info("SQLITE_SHUTDOWN connections_closed=%d", closed_connections)
		_log.info("CertBuddy shutdown complete")


def create_app(cfg: Config | None = None) -> FastAPI:
	"""Application factory for CertBuddy."""
	cfg = cfg or get_config()
	_setup_logging(cfg.log_level)

	app = FastAPI(
		title="CertBuddy",
		description="Web dashboard and API for managing certbot certificates",
		version=__version__,
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)

	app.state.cfg = cfg
	app.state.db_path = cfg.db_path

	# ─── MIDDLEWARE ──────────────────────────────────────────
	app.add_middleware(SecurityHeadersMiddleware)
	app.add_middleware(RequestIDMiddleware)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=list(cfg.allowed_origins),
		allow_credentials=True,
		allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
		allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
	)

	# Rate limiting
	app.state.limiter = limiter
	app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

	# ─── ROUTES ──────────────────────────────────────────────
	@app.get("/", tags=["meta"])
	def root():
		return {"name": "CertBuddy", "version": __version__}

	app.include_router(health_api.router, prefix="/health")
	app.include_router(auth_api.router, prefix="/api/auth")
	app.include_router(certificates_api.router, prefix="/api/certificates")
	app.include_router(ws_api.router)

	return app
