#!/usr/bin/env python3
#
# main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

# CertBuddy - Certbot Management WebUI
# Local development entry point
#

import os

import uvicorn
from certbuddy.utils.config import get_config

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Uvicorn logging dict-config that reuses the same format as the app
_UVICORN_LOG_CONFIG: dict = {
	"version": 1,
	"disable_existing_loggers": False,
	"formatters": {
		"default": {
			"format": _LOG_FORMAT,
			"datefmt": _DATE_FORMAT,
		},
	},
	"handlers": {
		"default": {
			"formatter": "default",
			"class": "logging.StreamHandler",
			"stream": "ext://sys.stderr",
		},
	},
	"loggers": {
		"uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
		"uvicorn.error": {"level": "INFO"},
		# Access lines come from RequestIDMiddleware instead
		"uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": False},
	},
}

if __name__ == "__main__":
	cfg = get_config()

	_level = cfg.log_level.upper()
	for _name in ("uvicorn", "uvicorn.error"):
		_UVICORN_LOG_CONFIG["loggers"][_name]["level"] = _level

	# Jobs and realtime connections live in process memory: one worker only
	uvicorn.run(
		"certbuddy:create_app",
		host=cfg.host,
		port=cfg.port,
		workers=1,
		reload=os.environ.get("CERTBUDDY_DEV_RELOAD", "").lower() in ("1", "true", "yes"),
		factory=True,
		log_config=_UVICORN_LOG_CONFIG,
	)
