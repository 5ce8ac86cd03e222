#!/usr/bin/env python3
#
# tests/test_config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import os
from pathlib import Path

import pytest

from certbuddy.utils import config as config_mod
from certbuddy.utils.config import ConfigValidationError, load_config, load_dotenv

_ENV_KEYS = (
	"CERTBUDDY_DATA_DIR",
	"CERTBUDDY_CHALLENGE_DIR",
	"CERTBUDDY_CERTBOT_PATH",
	"CERTBUDDY_CERTBOT_CONFIG_DIR",
	"CERTBUDDY_DNS_PROPAGATION_SECONDS",
	"CERTBUDDY_ALLOWED_ORIGINS",
	"CERTBUDDY_ALLOW_REGISTRATION",
	"CERTBUDDY_PORT",
	"LOG_LEVEL",
)


@pytest.fixture
def env(monkeypatch, tmp_path: Path):
	for key in _ENV_KEYS:
		monkeypatch.delenv(key, raising=False)
	# Keep a developer's settings.env out of the picture
	monkeypatch.setattr(config_mod, "load_dotenv", lambda: None)
	monkeypatch.setenv("CERTBUDDY_DATA_DIR", str(tmp_path / "data"))
	monkeypatch.setenv("CERTBUDDY_CHALLENGE_DIR", str(tmp_path / "challenges"))
	return monkeypatch


def test_defaults(env, tmp_path: Path):
	cfg = load_config()

	assert cfg.db_path == (tmp_path / "data" / "certbuddy.db").resolve()
	assert cfg.challenge_dir.is_dir()
	assert cfg.certbot_path == "/usr/bin/certbot"
	assert cfg.certbot_config_dir == Path("/etc/letsencrypt")
	assert cfg.dns_propagation_seconds == 90
	assert cfg.allowed_origins == ("http://localhost:3000",)
	assert cfg.allow_registration is False
	assert cfg.port == 5000


def test_environment_overrides(env):
	env.setenv("CERTBUDDY_CERTBOT_PATH", "/opt/certbot/bin/certbot")
	env.setenv("CERTBUDDY_DNS_PROPAGATION_SECONDS", "30")
	env.setenv("CERTBUDDY_ALLOWED_ORIGINS", "https://a.example, https://b.example,")
	env.setenv("CERTBUDDY_ALLOW_REGISTRATION", "yes")
	env.setenv("LOG_LEVEL", "debug")

	cfg = load_config()

	assert cfg.certbot_path == "/opt/certbot/bin/certbot"
	assert cfg.dns_propagation_seconds == 30
	assert cfg.allowed_origins == ("https://a.example", "https://b.example")
	assert cfg.allow_registration is True
	assert cfg.log_level == "DEBUG"


@pytest.mark.parametrize("key, value", [
	("CERTBUDDY_PORT", "http"),
	("CERTBUDDY_PORT", "70000"),
	("CERTBUDDY_DNS_PROPAGATION_SECONDS", "-1"),
])
def test_invalid_numbers(env, key: str, value: str):
	env.setenv(key, value)

	with pytest.raises(ConfigValidationError):
		load_config()


def test_data_dir_must_be_a_directory(env, tmp_path: Path):
	blocker = tmp_path / "file"
	blocker.write_text("")
	env.setenv("CERTBUDDY_DATA_DIR", str(blocker))

	with pytest.raises(ConfigValidationError):
		load_config()


def test_load_dotenv_keeps_existing_values(monkeypatch, tmp_path: Path):
	monkeypatch.setenv("CERTBUDDY_PORT", "8443")
	# setenv first so teardown also removes what load_dotenv adds
	for key in ("CERTBUDDY_CERTBOT_PATH", "CERTBUDDY_ALLOWED_ORIGINS"):
		monkeypatch.setenv(key, "")
		monkeypatch.delenv(key)
	dotenv = tmp_path / "settings.env"
	dotenv.write_text(
		"# comment\n"
		"export CERTBUDDY_CERTBOT_PATH='/snap/bin/certbot'\n"
		"CERTBUDDY_PORT=9000\n"
		"CERTBUDDY_ALLOWED_ORIGINS=https://x.example # inline\n"
	)

	load_dotenv(dotenv)

	assert os.environ["CERTBUDDY_CERTBOT_PATH"] == "/snap/bin/certbot"
	assert os.environ["CERTBUDDY_PORT"] == "8443"
	assert os.environ["CERTBUDDY_ALLOWED_ORIGINS"] == "https://x.example"


def test_get_config_is_cached_until_reset(env):
	config_mod.reset_config()
	try:
		first = config_mod.get_config()
		assert config_mod.get_config() is first

		env.setenv("CERTBUDDY_PORT", "8443")
		assert config_mod.get_config().port == first.port
		config_mod.reset_config()
		assert config_mod.get_config().port == 8443
	finally:
		config_mod.reset_config()
