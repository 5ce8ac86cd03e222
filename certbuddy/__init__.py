#!/usr/bin/env python3
#
# certbuddy/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""CertBuddy – Certbot management WebUI and job API."""

__version__ = "0.1.0"

from .main import create_app

__all__ = ["create_app", "__version__"]
