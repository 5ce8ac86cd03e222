#!/usr/bin/env python3
#
# certbuddy/services/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certbot job execution and realtime notification services."""

from .certbot import CertbotBusyError, CertbotError, CertbotRunner, CommandResult
from .challenge import ChallengeWatcher
from .jobs import Job, JobStore
from .notifier import Notifier
from .orchestrator import JobOrchestrator

__all__ = [
	"CertbotBusyError",
	"CertbotError",
	"CertbotRunner",
	"ChallengeWatcher",
	"CommandResult",
	"Job",
	"JobOrchestrator",
	"JobStore",
	"Notifier",
]
