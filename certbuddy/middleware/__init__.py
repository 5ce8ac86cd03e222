#!/usr/bin/env python3
#
# certbuddy/middleware/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Middleware modules for CertBuddy."""

from .security import SecurityHeadersMiddleware

__all__ = ["SecurityHeadersMiddleware"]
