"""Periodic trigger that fires callbacks on cron expressions.

One dispatcher thread sleeps until the earliest next fire time and hands due
callbacks to a thread pool, so separate schedules run concurrently and a slow
job never delays the clock. Missed fires are not replayed: after a job fires
its next time is computed from "now".
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Hashable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from fleetconf.config import settings
from fleetconf.errors import SchedulerError
from fleetconf.services.cron import CronExpression, parse_cron

logger = logging.getLogger(__name__)


class PeriodicTrigger(Protocol):
    def schedule(self, expression: str, callback: Callable[[], None]) -> Hashable: ...

    def cancel(self, handle: Hashable) -> None: ...

    def next_fire_time(self, handle: Hashable) -> datetime | None: ...

    def start(self) -> None: ...

    def stop(self, drain_timeout: float) -> bool: ...


@dataclass
class _Job:
    handle: int
    cron: CronExpression
    callback: Callable[[], None]
    next_fire: datetime | None


class ThreadedCronTrigger:
    def __init__(self, max_workers: int | None = None, clock: Callable[[], datetime] | None = None):
        self.max_workers = max_workers or settings.scheduler_workers
        self._clock = clock or (lambda: datetime.now(UTC))
        self._cond = threading.Condition()
        self._jobs: dict[int, _Job] = {}
        self._handles = itertools.count(1)
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._stopping = False
        self._inflight: set[Future] = set()
        self._inflight_lock = threading.Lock()

    def schedule(self, expression: str, callback: Callable[[], None]) -> int:
        cron = parse_cron(expression)
        with self._cond:
            handle = next(self._handles)
            self._jobs[handle] = _Job(handle, cron, callback, cron.next_after(self._clock()))
            self._cond.notify_all()
        return handle

    def cancel(self, handle: Hashable) -> None:
        with self._cond:
            self._jobs.pop(handle, None)
            self._cond.notify_all()

    def next_fire_time(self, handle: Hashable) -> datetime | None:
        with self._cond:
            job = self._jobs.get(handle)
            return job.next_fire if job else None

    @property
    def running(self) -> bool:
        with self._cond:
            return self._thread is not None and not self._stopping

    def start(self) -> None:
        with self._cond:
            if self._thread is not None:
                raise SchedulerError("Trigger already started")
            self._stopping = False
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="drift-job")
            self._thread = threading.Thread(target=self._dispatch, name="drift-cron-trigger", daemon=True)
            self._thread.start()

    def stop(self, drain_timeout: float) -> bool:
        """Stop firing and wait up to ``drain_timeout`` seconds for running callbacks.

        Returns True when every in-flight callback finished in time.
        """
        deadline = time.monotonic() + max(0.0, drain_timeout)
        with self._cond:
            thread, executor = self._thread, self._executor
            if thread is None:
                return True
            self._stopping = True
            self._cond.notify_all()

        thread.join(max(0.0, deadline - time.monotonic()))
        with self._inflight_lock:
            pending = set(self._inflight)
        _, not_done = wait(pending, timeout=max(0.0, deadline - time.monotonic()))
        executor.shutdown(wait=False, cancel_futures=True)

        with self._cond:
            self._thread = None
            self._executor = None
            self._jobs.clear()
        if not_done:
            logger.warning("%d drift jobs still running after %.1fs drain timeout", len(not_done), drain_timeout)
        return not not_done

    def _dispatch(self) -> None:
        with self._cond:
            while not self._stopping:
                now = self._clock()
                for job in list(self._jobs.values()):
                    if job.next_fire is not None and job.next_fire <= now:
                        self._submit(job)
                        job.next_fire = job.cron.next_after(now)
                        if job.next_fire is None:
                            logger.warning("Cron %r has no future fire time; dropping job", job.cron.expression)
                            self._jobs.pop(job.handle, None)
                upcoming = [j.next_fire for j in self._jobs.values() if j.next_fire is not None]
                if upcoming:
                    self._cond.wait(max(0.0, (min(upcoming) - self._clock()).total_seconds()))
                else:
                    self._cond.wait()

    def _submit(self, job: _Job) -> None:
        future = self._executor.submit(self._invoke, job)
        with self._inflight_lock:
            self._inflight.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future) -> None:
        with self._inflight_lock:
            self._inflight.discard(future)

    @staticmethod
    def _invoke(job: _Job) -> None:
        try:
            job.callback()
        except Exception:
            logger.error("Scheduled job %s (%s) raised", job.handle, job.cron.expression, exc_info=True)
