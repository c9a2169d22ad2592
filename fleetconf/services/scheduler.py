"""Drift Detection Scheduler -- run fleet drift checks on cron schedules.

The registry of live trigger jobs and the running flag share one
reader/writer lock. Admin operations persist through their own session and
take the write side while they touch the registry; each triggered run opens
its own session and never holds the lock while it talks to devices.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fleetconf.config import settings
from fleetconf.db import SessionLocal
from fleetconf.errors import ScheduleNotFoundError, SchedulerError
from fleetconf.metrics import JOB_DURATION, SCHEDULER_RUNNING
from fleetconf.models.drift_schedule import DriftDetectionRun, DriftDetectionSchedule, RunStatus
from fleetconf.schemas.drift_schedule import (
    DriftRunRead,
    DriftScheduleCreate,
    DriftScheduleRead,
    DriftScheduleUpdate,
    SchedulerStatusResponse,
)
from fleetconf.services.compare import ConfigComparator
from fleetconf.services.converter import ConfigConverter
from fleetconf.services.cron import parse_cron
from fleetconf.services.drift_service import ClientFactory, DesiredProvider, DriftService, default_client_factory
from fleetconf.services.reporter import DriftReporter
from fleetconf.services.trigger import PeriodicTrigger, ThreadedCronTrigger

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many readers or one writer. The writer may re-enter and may also read."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._writer_depth = 0

    def acquire_read(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return
            while self._writer is not None:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._writer == threading.get_ident():
                self._writer_depth -= 1
                return
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return
            while self._writer is not None or self._readers > 0:
                self._cond.wait()
            self._writer = me
            self._writer_depth = 1

    def release_write(self) -> None:
        with self._cond:
            if self._writer != threading.get_ident():
                raise RuntimeError("Write lock released by a thread that does not hold it")
            self._writer_depth -= 1
            if self._writer_depth == 0:
                self._writer = None
                self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class JobRegistry:
    """schedule id -> trigger job handle. The mapping itself is never handed out."""

    def __init__(self, lock: ReadWriteLock):
        self._lock = lock
        self._jobs: dict[int, Hashable] = {}

    def add(self, schedule_id: int, handle: Hashable) -> None:
        with self._lock.write_locked():
            self._jobs[schedule_id] = handle

    def remove(self, schedule_id: int) -> Hashable | None:
        with self._lock.write_locked():
            return self._jobs.pop(schedule_id, None)

    def get(self, schedule_id: int) -> Hashable | None:
        with self._lock.read_locked():
            return self._jobs.get(schedule_id)

    def snapshot(self) -> dict[int, Hashable]:
        with self._lock.read_locked():
            return dict(self._jobs)

    def clear(self) -> None:
        with self._lock.write_locked():
            self._jobs.clear()

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._jobs)


@dataclass(frozen=True)
class _ScheduleSnapshot:
    id: int
    name: str
    device_ids: list[int] | None
    device_filter: dict[str, Any] | None


def _device_filter_dict(device_filter) -> dict[str, Any] | None:
    if device_filter is None:
        return None
    if not isinstance(device_filter, dict):
        device_filter = device_filter.model_dump()
    cleaned = {k: v for k, v in device_filter.items() if v is not None}
    return cleaned or None


class DriftScheduler:
    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
        trigger: PeriodicTrigger | None = None,
        client_factory: Callable[[Session], ClientFactory] = default_client_factory,
        converter: ConfigConverter | None = None,
        comparator: ConfigComparator | None = None,
        desired_provider: DesiredProvider | None = None,
        stop_timeout: float | None = None,
        generate_reports: bool | None = None,
    ):
        self.session_factory = session_factory
        self.trigger = trigger or ThreadedCronTrigger()
        self.client_factory = client_factory
        self.converter = converter
        self.comparator = comparator
        self.desired_provider = desired_provider
        self.stop_timeout = settings.scheduler_stop_timeout_seconds if stop_timeout is None else stop_timeout
        self.generate_reports = (
            settings.scheduler_generate_reports if generate_reports is None else generate_reports
        )
        self._lock = ReadWriteLock()
        self._registry = JobRegistry(self._lock)
        self._running = False
        # serialises start/stop so a drain in progress cannot race a restart
        self._lifecycle = threading.Lock()

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        with self._lifecycle:
            with self._lock.write_locked():
                if self._running:
                    raise SchedulerError("Drift scheduler is already running")
                try:
                    with self.session_factory() as db:
                        rows = db.execute(
                            select(
                                DriftDetectionSchedule.id,
                                DriftDetectionSchedule.name,
                                DriftDetectionSchedule.cron_spec,
                            ).where(DriftDetectionSchedule.enabled.is_(True))
                        ).all()
                except SQLAlchemyError as exc:
                    raise SchedulerError(f"Failed to load drift detection schedules: {exc}") from exc

                for schedule_id, name, cron_spec in rows:
                    try:
                        self._register(schedule_id, cron_spec)
                    except Exception:
                        logger.error("Failed to register drift schedule %s (%s)", schedule_id, name, exc_info=True)

                self.trigger.start()
                self._running = True
                SCHEDULER_RUNNING.set(1)

            self._persist_next_runs()
        logger.info("Drift scheduler started with %d schedules", len(self._registry))

    def stop(self) -> None:
        with self._lifecycle:
            with self._lock.write_locked():
                if not self._running:
                    return
                self._running = False
                for handle in self._registry.snapshot().values():
                    self.trigger.cancel(handle)
                self._registry.clear()
                SCHEDULER_RUNNING.set(0)

            if not self.trigger.stop(self.stop_timeout):
                logger.warning(
                    "Drift scheduler stop timed out after %.1fs; abandoning running jobs", self.stop_timeout
                )
        logger.info("Drift scheduler stopped")

    def is_running(self) -> bool:
        with self._lock.read_locked():
            return self._running

    def status(self) -> SchedulerStatusResponse:
        with self._lock.read_locked():
            jobs = self._registry.snapshot()
            return SchedulerStatusResponse(
                running=self._running,
                registered_jobs=len(jobs),
                next_runs={sid: self.trigger.next_fire_time(handle) for sid, handle in jobs.items()},
            )

    def _register(self, schedule_id: int, cron_spec: str) -> None:
        handle = self.trigger.schedule(cron_spec, partial(self._run_job, schedule_id))
        self._registry.add(schedule_id, handle)

    def _deregister(self, schedule_id: int) -> None:
        handle = self._registry.remove(schedule_id)
        if handle is not None:
            self.trigger.cancel(handle)

    def _next_run(self, schedule_id: int) -> datetime | None:
        handle = self._registry.get(schedule_id)
        return self.trigger.next_fire_time(handle) if handle is not None else None

    def _persist_next_runs(self) -> None:
        try:
            with self.session_factory() as db:
                for schedule_id in self._registry.snapshot():
                    db.execute(
                        update(DriftDetectionSchedule)
                        .where(DriftDetectionSchedule.id == schedule_id)
                        .values(next_run=self._next_run(schedule_id))
                    )
                db.commit()
        except SQLAlchemyError:
            logger.warning("Failed to persist next run times", exc_info=True)

    # -- admin --------------------------------------------------------------

    def add_schedule(self, data: DriftScheduleCreate) -> DriftScheduleRead:
        parse_cron(data.cron_spec)
        with self._lock.write_locked():
            with self.session_factory() as db:
                schedule = DriftDetectionSchedule(
                    name=data.name,
                    description=data.description,
                    cron_spec=data.cron_spec.strip(),
                    enabled=data.enabled,
                    device_ids=list(data.device_ids) if data.device_ids else None,
                    device_filter=_device_filter_dict(data.device_filter),
                )
                db.add(schedule)
                db.commit()
                if schedule.enabled and self._running:
                    self._register(schedule.id, schedule.cron_spec)
                    schedule.next_run = self._next_run(schedule.id)
                    db.commit()
                db.refresh(schedule)
                logger.info("Created drift schedule %s (%s) cron=%r", schedule.id, schedule.name, schedule.cron_spec)
                return DriftScheduleRead.model_validate(schedule)

    def update_schedule(self, schedule_id: int, data: DriftScheduleUpdate) -> DriftScheduleRead:
        fields = data.model_dump(exclude_unset=True)
        if fields.get("cron_spec") is None:
            fields.pop("cron_spec", None)
        else:
            parse_cron(fields["cron_spec"])
            fields["cron_spec"] = fields["cron_spec"].strip()
        if fields.get("name") is None:
            fields.pop("name", None)
        if fields.get("enabled") is None:
            fields.pop("enabled", None)
        if "device_filter" in fields:
            fields["device_filter"] = _device_filter_dict(fields["device_filter"])
        if "device_ids" in fields:
            fields["device_ids"] = list(fields["device_ids"]) if fields["device_ids"] else None

        with self._lock.write_locked():
            with self.session_factory() as db:
                schedule = db.get(DriftDetectionSchedule, schedule_id)
                if not schedule:
                    raise ScheduleNotFoundError(schedule_id)

                self._deregister(schedule_id)
                for key, value in fields.items():
                    setattr(schedule, key, value)
                if fields.get("device_ids"):
                    schedule.device_filter = None
                elif fields.get("device_filter"):
                    schedule.device_ids = None
                schedule.next_run = None
                db.commit()

                if schedule.enabled and self._running:
                    self._register(schedule.id, schedule.cron_spec)
                    schedule.next_run = self._next_run(schedule.id)
                    db.commit()
                db.refresh(schedule)
                logger.info("Updated drift schedule %s", schedule_id)
                return DriftScheduleRead.model_validate(schedule)

    def delete_schedule(self, schedule_id: int) -> None:
        with self._lock.write_locked():
            with self.session_factory() as db:
                schedule = db.get(DriftDetectionSchedule, schedule_id)
                if not schedule:
                    raise ScheduleNotFoundError(schedule_id)
                self._deregister(schedule_id)
                db.delete(schedule)
                db.commit()
        logger.info("Deleted drift schedule %s", schedule_id)

    def get_schedule(self, schedule_id: int) -> DriftScheduleRead:
        with self.session_factory() as db:
            schedule = db.get(DriftDetectionSchedule, schedule_id)
            if not schedule:
                raise ScheduleNotFoundError(schedule_id)
            return DriftScheduleRead.model_validate(schedule)

    def list_schedules(self, enabled: bool | None = None) -> list[DriftScheduleRead]:
        with self.session_factory() as db:
            stmt = select(DriftDetectionSchedule).order_by(DriftDetectionSchedule.id)
            if enabled is not None:
                stmt = stmt.where(DriftDetectionSchedule.enabled.is_(enabled))
            return [DriftScheduleRead.model_validate(s) for s in db.scalars(stmt).all()]

    def get_schedule_runs(self, schedule_id: int, limit: int = 50) -> list[DriftRunRead]:
        with self.session_factory() as db:
            if not db.get(DriftDetectionSchedule, schedule_id):
                raise ScheduleNotFoundError(schedule_id)
            stmt = (
                select(DriftDetectionRun)
                .where(DriftDetectionRun.schedule_id == schedule_id)
                .order_by(DriftDetectionRun.started_at.desc(), DriftDetectionRun.id.desc())
                .limit(limit)
            )
            return [DriftRunRead.model_validate(r) for r in db.scalars(stmt).all()]

    def trigger_now(self, schedule_id: int) -> DriftRunRead | None:
        """Run a schedule synchronously, even when it is disabled."""
        self.get_schedule(schedule_id)
        return self.execute_schedule(schedule_id, manual=True)

    # -- execution ----------------------------------------------------------

    def _run_job(self, schedule_id: int) -> None:
        try:
            self.execute_schedule(schedule_id)
        except Exception:
            logger.error("Drift schedule %s execution crashed", schedule_id, exc_info=True)

    def execute_schedule(self, schedule_id: int, manual: bool = False) -> DriftRunRead | None:
        started = time.monotonic()
        with self.session_factory() as db:
            schedule = db.get(DriftDetectionSchedule, schedule_id)
            if not schedule:
                logger.warning("Drift schedule %s no longer exists; skipping run", schedule_id)
                return None
            if not schedule.enabled and not manual:
                logger.info("Drift schedule %s is disabled; skipping run", schedule_id)
                return None
            snapshot = _ScheduleSnapshot(
                id=schedule.id,
                name=schedule.name,
                device_ids=list(schedule.device_ids) if schedule.device_ids else None,
                device_filter=dict(schedule.device_filter) if schedule.device_filter else None,
            )

            run = DriftDetectionRun(
                schedule_id=snapshot.id,
                status=RunStatus.running,
                started_at=datetime.now(UTC),
            )
            try:
                db.add(run)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.error("Failed to create run record for drift schedule %s", snapshot.id, exc_info=True)

            bulk = None
            try:
                service = DriftService(
                    db,
                    converter=self.converter,
                    comparator=self.comparator,
                    desired_provider=self.desired_provider,
                )
                device_ids = service.resolve_devices(snapshot.device_ids, snapshot.device_filter)
                bulk = service.bulk_detect_drift(device_ids, self.client_factory(db))
                db.commit()
            except Exception as exc:
                db.rollback()
                logger.error("Drift schedule %s (%s) run failed", snapshot.id, snapshot.name, exc_info=True)
                run.status = RunStatus.failed
                run.error = str(exc) or exc.__class__.__name__
            else:
                run.status = RunStatus.completed
                run.results = bulk.model_dump(mode="json")

            completed = datetime.now(UTC)
            run.completed_at = completed
            run.duration_ms = int((time.monotonic() - started) * 1000)
            try:
                db.add(run)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.error("Failed to persist run record for drift schedule %s", snapshot.id, exc_info=True)

            if bulk is not None and self.generate_reports:
                try:
                    DriftReporter(db).report_from_bulk(bulk, schedule_id=snapshot.id)
                    db.commit()
                except Exception:
                    db.rollback()
                    logger.warning("Failed to generate report for drift schedule %s", snapshot.id, exc_info=True)

            values: dict[str, Any] = {
                "last_run": completed,
                "run_count": DriftDetectionSchedule.run_count + 1,
            }
            next_run = self._next_run(snapshot.id)
            if next_run is not None:
                values["next_run"] = next_run
            try:
                db.execute(
                    update(DriftDetectionSchedule).where(DriftDetectionSchedule.id == snapshot.id).values(**values)
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.warning("Failed to update statistics for drift schedule %s", snapshot.id, exc_info=True)

            status = run.status.value if run.status else "unknown"
            JOB_DURATION.labels(task="drift_schedule", status=status).observe(time.monotonic() - started)
            logger.info(
                "Drift schedule %s (%s) run %s in %dms",
                snapshot.id,
                snapshot.name,
                status,
                run.duration_ms or 0,
            )
            try:
                return DriftRunRead.model_validate(run) if run.id is not None else None
            except SQLAlchemyError:
                logger.warning("Could not reload run record for drift schedule %s", snapshot.id, exc_info=True)
                return None
