"""Debouncing, throttling and concurrency limiting for analysis runs.

Per document key a request moves through debouncing (sleeping), queued
(waiting for a concurrency slot) and running. A request for a key that is
already queued replaces the queued task; a request for a running key is
kept as the single pending rerun, started when the current run finishes.
Slots are handed to waiters strictly in arrival order.

All methods must be called from the event loop thread.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional, Set

from ..config import DiagnosticsSettings
from ..models.records import DocumentAnalysisState

logger = logging.getLogger(__name__)

AnalysisTask = Callable[[], Awaitable[None]]

@dataclass(slots=True)
class _Request:
    task: AnalysisTask
    handle: Optional[asyncio.Task] = None
    queued: bool = False


class AnalysisScheduler:
    def __init__(
        self,
        settings: Optional[DiagnosticsSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or DiagnosticsSettings()
        self._clock = clock
        self._requests: Dict[str, _Request] = {}
        self._running: Set[str] = set()
        self._pending_reruns: Dict[str, AnalysisTask] = {}
        self._cancelled: Set[str] = set()
        self._waiters: Deque[asyncio.Future] = deque()
        self._active = 0
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self._idle_events: Set[asyncio.Event] = set()

    def now(self) -> float:
        return self._clock()

    def schedule(
        self,
        key: str,
        task: AnalysisTask,
        *,
        version: Optional[int] = None,
        immediate: bool = False,
        throttle_state: Optional[DocumentAnalysisState] = None,
        delay: Optional[float] = None,
    ) -> bool:
        """Request a run of ``task`` for ``key``.

        Returns False when the request was dropped by throttling: the key is
        idle, ``version`` equals the version of the last completed run, the
        minimum interval has not elapsed and the request is not immediate.
        ``delay`` overrides the debounce delay.
        """
        if key in self._running:
            self._pending_reruns[key] = task
            self._cancelled.discard(key)
            logger.debug("Analysis of %s is running; rerun pending", key)
            return True

        current = self._requests.get(key)
        if current is not None and current.queued:
            current.task = task
            logger.debug("Collapsed queued analysis of %s", key)
            return True

        throttle_delay = 0.0
        if throttle_state is not None and throttle_state.last_analysis_at is not None:
            elapsed = self.now() - throttle_state.last_analysis_at
            min_interval = self.settings.min_analysis_interval
            if not immediate and version is not None and version == throttle_state.version and elapsed < min_interval:
                logger.debug("Dropped analysis of unchanged %s (%.3fs since last run)", key, elapsed)
                return False
            throttle_delay = max(0.0, min_interval - elapsed)

        if delay is not None:
            debounce = delay
        elif immediate:
            debounce = 0.0
        else:
            debounce = self.settings.analysis_delay

        if current is not None and current.handle is not None:
            current.handle.cancel()
        self._cancelled.discard(key)
        self._arm(key, task, max(debounce, throttle_delay))
        return True

    def cancel(self, key: str) -> None:
        """Drop any waiting request and pending rerun; a running task is left to finish."""
        request = self._requests.pop(key, None)
        if request is not None and request.handle is not None:
            request.handle.cancel()
        self._pending_reruns.pop(key, None)
        if key in self._running:
            self._cancelled.add(key)
        self._notify_idle()

    def dispose(self) -> None:
        self._generation += 1
        for request in self._requests.values():
            if request.handle is not None:
                request.handle.cancel()
        for waiter in self._waiters:
            if not waiter.done():
                waiter.cancel()
        self._requests.clear()
        self._pending_reruns.clear()
        self._cancelled.clear()
        self._running.clear()
        self._waiters.clear()
        self._active = 0
        self._notify_idle()

    def is_scheduled(self, key: str) -> bool:
        return key in self._requests or key in self._pending_reruns

    def is_running(self, key: str) -> bool:
        return key in self._running

    def is_idle(self) -> bool:
        return not (self._requests or self._running or self._pending_reruns)

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until nothing is debouncing, queued, running or pending a rerun."""

        if self.is_idle():
            return
        event = asyncio.Event()
        self._idle_events.add(event)
        try:
            await asyncio.wait_for(event.wait(), timeout)
        finally:
            self._idle_events.discard(event)

    def _notify_idle(self) -> None:
        if self.is_idle():
            for event in self._idle_events:
                event.set()

    def _arm(self, key: str, task: AnalysisTask, wait: float) -> None:
        request = _Request(task=task)
        self._requests[key] = request
        handle = asyncio.get_running_loop().create_task(self._run_request(key, request, wait))
        request.handle = handle
        self._tasks.add(handle)
        handle.add_done_callback(self._tasks.discard)
        logger.debug("Scheduled analysis of %s in %.3fs", key, wait)

    async def _run_request(self, key: str, request: _Request, wait: float) -> None:
        generation = self._generation
        try:
            if wait > 0:
                await asyncio.sleep(wait)
            request.queued = True
            await self._acquire_slot(generation)
        except asyncio.CancelledError:
            if self._requests.get(key) is request:
                del self._requests[key]
                self._notify_idle()
            raise

        if self._requests.get(key) is request:
            del self._requests[key]
        self._running.add(key)
        try:
            await self._execute(key, request.task)
        finally:
            if generation == self._generation:
                self._finish(key)

    async def _execute(self, key: str, task: AnalysisTask) -> None:
        logger.debug("Running analysis of %s", key)
        try:
            await task()
        except Exception:
            logger.exception("Analysis task for %s failed", key)

    def _finish(self, key: str) -> None:
        self._running.discard(key)
        self._release_slot()
        rerun = self._pending_reruns.pop(key, None)
        cancelled = key in self._cancelled
        self._cancelled.discard(key)
        if rerun is not None and not cancelled:
            self._arm(key, rerun, 0.0)
        self._notify_idle()

    async def _acquire_slot(self, generation: int) -> None:
        if self._active < self.settings.max_concurrent_analyses and not self._waiters:
            self._active += 1
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            elif waiter.done() and not waiter.cancelled() and generation == self._generation:
                # The slot was already handed over; pass it on.
                self._release_slot()
            raise

    def _release_slot(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active = max(0, self._active - 1)
