#!/usr/bin/env python3
#
# certbuddy/utils/scheduler.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Lightweight async background scheduler for housekeeping tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, TypedDict

from .time import isoformat_utc, utcnow

_log = logging.getLogger(__name__)

__all__ = ["Scheduler", "TaskStatus"]

# Floor for intervals; anything tighter would pin the loop
_MIN_INTERVAL = 1.0
_MAX_BACKOFF = 300.0


class TaskStatus(TypedDict):
	"""Status of one periodic task."""
	name: str
	interval_seconds: float
	last_success: str | None
	last_attempt: str | None
	is_running: bool
	run_count: int
	fail_count: int


@dataclass
class _Task:
	name: str
	interval_seconds: float
	func: Callable[[], Awaitable[None]]
	run_on_start: bool = False
	initial_delay: float = 0.0
	timeout: float | None = None
	last_success: datetime | None = None
	last_attempt: datetime | None = None
	run_count: int = 0
	fail_count: int = 0


class Scheduler:
	"""Runs async callables at fixed intervals until stopped.

	Usage::

		scheduler = Scheduler()
		scheduler.add("job-cleanup", 3600, cleanup_jobs)

		await scheduler.start()          # lifespan startup
		await scheduler.stop_graceful()  # lifespan shutdown

	Tasks are named "periodic tasks" here to keep them apart from certificate
	jobs, which are a different thing entirely.
	"""

	def __init__(self) -> None:
		self._tasks: dict[str, _Task] = {}
		self._runners: dict[str, asyncio.Task] = {}
		self._stop_event: asyncio.Event | None = None
		self._started = False

	@property
	def running(self) -> bool:
		return self._started

	def add(
		self,
		name: str,
		interval_seconds: float,
		func: Callable[[], Awaitable[None]],
		*,
		run_on_start: bool = False,
		initial_delay: float = 0.0,
		timeout: float | None = None,
	) -> None:
		"""Register a periodic task.

		Raises:
			RuntimeError: scheduler already running
			ValueError: duplicate name, interval below the floor, or
				initial_delay without run_on_start
		"""
		if self._started:
			raise RuntimeError(f"Cannot add task {name!r} while scheduler is running")
		if name in self._tasks:
			raise ValueError(f"Task {name!r} is already registered")
		if interval_seconds < _MIN_INTERVAL:
			raise ValueError(f"interval_seconds must be >= {_MIN_INTERVAL}, got {interval_seconds}")
		if initial_delay < 0:
			raise ValueError(f"initial_delay must be >= 0, got {initial_delay}")
		if initial_delay > 0 and not run_on_start:
			raise ValueError("initial_delay requires run_on_start=True")

		self._tasks[name] = _Task(
			name=name,
			interval_seconds=interval_seconds,
			func=func,
			run_on_start=run_on_start,
			initial_delay=initial_delay,
			timeout=timeout,
		)

	async def start(self) -> None:
		"""Spawn one loop per registered task. Needs a running event loop."""
		if self._started:
			return
		self._started = True
		self._stop_event = asyncio.Event()
		for task in self._tasks.values():
			self._runners[task.name] = asyncio.create_task(self._run_loop(task))
			_log.info("SCHEDULER task=%s interval=%ds started", task.name, task.interval_seconds)

	async def stop_graceful(self, timeout: float = 5.0) -> None:
		"""Signal all loops to exit, then cancel whatever is still running after ``timeout``."""
		if not self._started:
			return
		self._started = False
		if self._stop_event is not None:
			self._stop_event.set()

		pending = [t for t in self._runners.values() if not t.done()]
		if pending:
			_, not_done = await asyncio.wait(pending, timeout=timeout)
			if not_done:
				_log.warning("SCHEDULER %d tasks did not stop gracefully, forcing cancel", len(not_done))
				for runner in not_done:
					runner.cancel()
				await asyncio.gather(*not_done, return_exceptions=True)

		self._runners.clear()
		_log.info("SCHEDULER stopped")

	async def _wait_or_stop(self, delay: float) -> bool:
		"""Sleep up to ``delay``; True when a stop was requested meanwhile."""
		assert self._stop_event is not None
		try:
			await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
			return True
		except asyncio.TimeoutError:
			return not self._started

	async def _run_loop(self, task: _Task) -> None:
		loop = asyncio.get_running_loop()
		consecutive_failures = 0

		try:
			if task.run_on_start:
				if task.initial_delay > 0 and await self._wait_or_stop(task.initial_delay):
					return
				if not await self._execute(task):
					consecutive_failures = 1

			next_run = loop.time() + task.interval_seconds
			while self._started:
				if consecutive_failures:
					backoff = min(2.0 ** consecutive_failures, _MAX_BACKOFF)
					next_run = max(next_run, loop.time() + backoff)
				if await self._wait_or_stop(max(0.0, next_run - loop.time())):
					break

				if await self._execute(task):
					consecutive_failures = 0
				else:
					consecutive_failures += 1
					_log.error(
						"SCHEDULER task=%s failed (%d consecutive)",
						task.name, consecutive_failures,
					)

				# Skip missed slots instead of bursting after a long run
				now = loop.time()
				next_run += task.interval_seconds
				if next_run <= now:
					skipped = int((now - next_run) / task.interval_seconds) + 1
					next_run += skipped * task.interval_seconds
					_log.warning("SCHEDULER task=%s skipped %d intervals", task.name, skipped)
		except asyncio.CancelledError:
			_log.debug("SCHEDULER task=%s cancelled", task.name)
		except Exception:
			_log.exception("SCHEDULER task=%s fatal error in run loop", task.name)

	async def _execute(self, task: _Task) -> bool:
		"""Run one iteration; never raises."""
		task.last_attempt = utcnow()
		try:
			if task.timeout is not None:
				await asyncio.wait_for(task.func(), timeout=task.timeout)
			else:
				await task.func()
		except asyncio.TimeoutError:
			task.fail_count += 1
			_log.error("SCHEDULER task=%s timed out after %.1fs", task.name, task.timeout)
			return False
		except Exception:
			task.fail_count += 1
			_log.exception("SCHEDULER task=%s failed (fail #%d)", task.name, task.fail_count)
			return False

		task.last_success = task.last_attempt
		task.run_count += 1
		_log.debug("SCHEDULER task=%s completed (run #%d)", task.name, task.run_count)
		return True

	def get_status(self) -> list[TaskStatus]:
		return [
			{
				"name": task.name,
				"interval_seconds": task.interval_seconds,
				"last_success": isoformat_utc(task.last_success),
				"last_attempt": isoformat_utc(task.last_attempt),
				"is_running": task.name in self._runners and not self._runners[task.name].done(),
				"run_count": task.run_count,
				"fail_count": task.fail_count,
			}
			for task in self._tasks.values()
		]
