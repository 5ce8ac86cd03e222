#!/usr/bin/env python3
#
# certbuddy/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Configuration loading and app-level defaults."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path

_log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
	"""Raised when critical configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Defaults (certbot's own defaults, so an unconfigured install "just works")
# ---------------------------------------------------------------------------
DEFAULT_CERTBOT_PATH = "/usr/bin/certbot"
DEFAULT_CERTBOT_CONFIG_DIR = "/etc/letsencrypt"
DEFAULT_CERTBOT_WORK_DIR = "/var/lib/letsencrypt"
DEFAULT_CERTBOT_LOGS_DIR = "/var/log/letsencrypt"
DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000"
DEFAULT_PORT = 5000
DEFAULT_DNS_PROPAGATION_SECONDS = 90

_TRUE_VALUES = ("1", "true", "yes", "on")
_ALLOWED_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(frozen=True)
class Config:
	"""Resolved runtime configuration derived from env and defaults."""
	base_dir: Path
	data_dir: Path
	db_path: Path
	certbot_path: str = DEFAULT_CERTBOT_PATH
	certbot_config_dir: Path = Path(DEFAULT_CERTBOT_CONFIG_DIR)
	certbot_work_dir: Path = Path(DEFAULT_CERTBOT_WORK_DIR)
	certbot_logs_dir: Path = Path(DEFAULT_CERTBOT_LOGS_DIR)
	challenge_dir: Path = Path(tempfile.gettempdir())
	dns_propagation_seconds: int = DEFAULT_DNS_PROPAGATION_SECONDS
	allowed_origins: tuple[str, ...] = field(default=(DEFAULT_ALLOWED_ORIGINS,))
	allow_registration: bool = False
	host: str = "0.0.0.0"
	port: int = DEFAULT_PORT
	log_level: str = "INFO"


def _parse_value(raw: str) -> str:
	"""Extract value, respecting quotes and stripping inline comments."""
	raw = raw.strip()
	if raw and raw[0] in ('"', "'"):
		quote = raw[0]
		end = raw.find(quote, 1)
		if end != -1:
			return raw[1:end]
	if " #" in raw:
		raw = raw.split(" #", 1)[0]
	return raw.strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Load simple KEY=VALUE pairs from settings.env.

	Blank lines, comments and ``export KEY=VALUE`` are understood. Values
	already present in the environment always win.
	"""
	project_root = Path(__file__).resolve().parents[2]
	dotenv_path = dotenv_path or (project_root / "settings.env")
	if not dotenv_path.exists():
		return
	for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
		line = raw_line.strip()
		if not line or line.startswith("#") or "=" not in line:
			continue
		key, value = line.split("=", 1)
		key = key.strip()
		if key.startswith("export "):
			key = key[7:].strip()
		if not key:
			continue
		os.environ.setdefault(key, _parse_value(value))


def _env_int(name: str, default: int, *, minimum: int = 0, maximum: int | None = None) -> int:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	try:
		value = int(raw)
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be an integer, got {raw!r}") from exc
	if value < minimum or (maximum is not None and value > maximum):
		raise ConfigValidationError(f"{name} out of range: {value}")
	return value


def _env_bool(name: str, default: bool = False) -> bool:
	raw = os.getenv(name)
	if raw is None:
		return default
	return raw.strip().lower() in _TRUE_VALUES



def load_config() -> Config:
	"""Load configuration from environment variables (optionally via settings.env)."""
	load_dotenv()
	project_root = Path(__file__).resolve().parents[2]

	data_dir = Path(os.getenv("CERTBUDDY_DATA_DIR", str(project_root / "data"))).resolve()
	db_path = (data_dir / "certbuddy.db").resolve()

	challenge_dir = Path(os.getenv("CERTBUDDY_CHALLENGE_DIR", tempfile.gettempdir())).resolve()

	# Self-healing: ensure writable directories exist
	try:
		for d in (data_dir, challenge_dir):
			if d.exists() and not d.is_dir():
				raise ConfigValidationError(f"Path exists but is not a directory: {d}")
			d.mkdir(parents=True, exist_ok=True)
	except OSError as exc:
		raise ConfigValidationError(f"Cannot create data directories: {exc}") from exc

	log_level = os.getenv("LOG_LEVEL", "INFO").upper()
	if log_level not in _ALLOWED_LOG_LEVELS:
		_log.warning("Invalid LOG_LEVEL %r, falling back to INFO", log_level)
		log_level = "INFO"

	origins = tuple(
		origin.strip()
		for origin in os.getenv("CERTBUDDY_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS).split(",")
		if origin.strip()
	)

	return Config(
		base_dir=project_root,
		data_dir=data_dir,
		db_path=db_path,
		certbot_path=os.getenv("CERTBUDDY_CERTBOT_PATH", DEFAULT_CERTBOT_PATH),
		certbot_config_dir=Path(os.getenv("CERTBUDDY_CERTBOT_CONFIG_DIR", DEFAULT_CERTBOT_CONFIG_DIR)),
		certbot_work_dir=Path(os.getenv("CERTBUDDY_CERTBOT_WORK_DIR", DEFAULT_CERTBOT_WORK_DIR)),
		certbot_logs_dir=Path(os.getenv("CERTBUDDY_CERTBOT_LOGS_DIR", DEFAULT_CERTBOT_LOGS_DIR)),
		challenge_dir=challenge_dir,
		dns_propagation_seconds=_env_int(
			"CERTBUDDY_DNS_PROPAGATION_SECONDS",
			DEFAULT_DNS_PROPAGATION_SECONDS,
			maximum=3600,
		),
		allowed_origins=origins,
		allow_registration=_env_bool("CERTBUDDY_ALLOW_REGISTRATION"),
		host=os.getenv("CERTBUDDY_HOST", "0.0.0.0"),
		port=_env_int("CERTBUDDY_PORT", DEFAULT_PORT, minimum=1, maximum=65535),
		log_level=log_level,
	)


# Global config singleton with thread-safe lazy initialization
_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
	"""Get the global config singleton (thread-safe)."""
	global _config
	if _config is None:
		with _config_lock:
			if _config is None:  # Double-checked locking
				_config = load_config()
	return _config


def reset_config() -> None:
	"""Reset the cached config. Intended for tests only."""
	global _config
	with _config_lock:
		_config = None
