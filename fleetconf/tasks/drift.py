"""
Drift Tasks -- Celery tasks for fleet-wide drift detection and one-shot schedule runs.
"""

import logging
import time

from celery import shared_task
from sqlalchemy import select

from fleetconf.db import SessionLocal
from fleetconf.metrics import JOB_DURATION

logger = logging.getLogger(__name__)


@shared_task
def detect_fleet_drift() -> dict:
    """Check every enabled device and store a ``fleet`` report."""
    logger.info("Running fleet drift detection")
    start = time.monotonic()
    status = "success"
    try:
        with SessionLocal() as db:
            from fleetconf.models.device import Device
            from fleetconf.services.drift_service import DriftService, default_client_factory
            from fleetconf.services.reporter import DriftReporter

            device_ids = list(db.scalars(select(Device.id).where(Device.enabled.is_(True)).order_by(Device.id)).all())
            bulk = DriftService(db).bulk_detect_drift(device_ids, default_client_factory(db))
            db.commit()
            report = DriftReporter(db).generate_comprehensive_report("fleet", bulk.results)
            db.commit()
            if bulk.drifted:
                logger.warning("Config drift detected on %d of %d devices", bulk.drifted, bulk.total)
            return {
                "report_id": report.id,
                "total": bulk.total,
                "in_sync": bulk.in_sync,
                "drifted": bulk.drifted,
                "errors": bulk.errors,
            }
    except Exception:
        status = "error"
        raise
    finally:
        JOB_DURATION.labels(task="detect_fleet_drift", status=status).observe(time.monotonic() - start)


@shared_task
def run_drift_schedule(schedule_id: int) -> dict | None:
    """Execute one drift detection schedule immediately."""
    from fleetconf.services.scheduler import DriftScheduler

    logger.info("Running drift schedule %s on demand", schedule_id)
    run = DriftScheduler(session_factory=SessionLocal).trigger_now(schedule_id)
    return run.model_dump(mode="json") if run else None
