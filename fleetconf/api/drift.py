"""Drift API -- schedules, runs, reports and trends."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from fleetconf.api.deps import get_client_factory, get_db, get_scheduler
from fleetconf.schemas.drift import DriftReportRead, DriftTrendRead, ReportCreateRequest
from fleetconf.schemas.drift_schedule import (
    DriftRunRead,
    DriftScheduleCreate,
    DriftScheduleRead,
    DriftScheduleUpdate,
    SchedulerStatusResponse,
)
from fleetconf.services.drift_service import ClientFactory
from fleetconf.services.scheduler import DriftScheduler

router = APIRouter(prefix="/drift", tags=["drift"])


# -- schedules ---------------------------------------------------------------


@router.get("/schedules", response_model=list[DriftScheduleRead])
def list_schedules(
    enabled: bool | None = Query(default=None),
    scheduler: DriftScheduler = Depends(get_scheduler),
):
    return scheduler.list_schedules(enabled=enabled)


@router.post("/schedules", response_model=DriftScheduleRead, status_code=status.HTTP_201_CREATED)
def create_schedule(
    payload: DriftScheduleCreate,
    scheduler: DriftScheduler = Depends(get_scheduler),
):
    return scheduler.add_schedule(payload)


@router.get("/schedules/{schedule_id}", response_model=DriftScheduleRead)
def get_schedule(schedule_id: int, scheduler: DriftScheduler = Depends(get_scheduler)):
    return scheduler.get_schedule(schedule_id)


@router.patch("/schedules/{schedule_id}", response_model=DriftScheduleRead)
def update_schedule(
    schedule_id: int,
    payload: DriftScheduleUpdate,
    scheduler: DriftScheduler = Depends(get_scheduler),
):
    return scheduler.update_schedule(schedule_id, payload)


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(schedule_id: int, scheduler: DriftScheduler = Depends(get_scheduler)):
    scheduler.delete_schedule(schedule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/schedules/{schedule_id}/runs", response_model=list[DriftRunRead])
def list_schedule_runs(
    schedule_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    scheduler: DriftScheduler = Depends(get_scheduler),
):
    return scheduler.get_schedule_runs(schedule_id, limit=limit)


@router.post("/schedules/{schedule_id}/trigger", response_model=DriftRunRead)
def trigger_schedule(schedule_id: int, scheduler: DriftScheduler = Depends(get_scheduler)):
    run = scheduler.trigger_now(schedule_id)
    if run is None:
        raise HTTPException(status_code=409, detail="Run could not be recorded")
    return run


@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
def scheduler_status(scheduler: DriftScheduler = Depends(get_scheduler)):
    return scheduler.status()


# -- reports -----------------------------------------------------------------


@router.get("/reports", response_model=list[DriftReportRead])
def list_reports(
    report_type: str | None = Query(default=None),
    device_id: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    from fleetconf.services.reporter import DriftReporter

    return DriftReporter(db).get_reports(report_type=report_type, device_id=device_id, limit=limit)


@router.post("/reports", response_model=DriftReportRead, status_code=status.HTTP_201_CREATED)
def create_report(
    payload: ReportCreateRequest,
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    from fleetconf.services.drift_service import DriftService
    from fleetconf.services.reporter import DriftReporter

    if payload.device_ids and payload.device_filter is not None:
        raise HTTPException(status_code=400, detail="device_ids and device_filter are mutually exclusive")
    try:
        svc = DriftService(db)
        device_filter = payload.device_filter.model_dump(exclude_none=True) if payload.device_filter else None
        device_ids = svc.resolve_devices(payload.device_ids, device_filter)
        bulk = svc.bulk_detect_drift(device_ids, client_factory)
        report = DriftReporter(db).generate_comprehensive_report(payload.report_type, bulk.results)
        db.commit()
        return report
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/reports/{report_id}", response_model=DriftReportRead)
def get_report(report_id: int, db: Session = Depends(get_db)):
    from fleetconf.services.reporter import DriftReporter

    try:
        return DriftReporter(db).get_report(report_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


# -- trends ------------------------------------------------------------------


@router.get("/trends", response_model=list[DriftTrendRead])
def list_trends(
    device_id: int | None = Query(default=None),
    resolved: bool | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    from fleetconf.services.reporter import DriftReporter

    return DriftReporter(db).get_drift_trends(device_id=device_id, resolved=resolved, limit=limit)


@router.post("/trends/{trend_id}/resolve", response_model=DriftTrendRead)
def resolve_trend(trend_id: int, db: Session = Depends(get_db)):
    from fleetconf.services.reporter import DriftReporter

    try:
        trend = DriftReporter(db).mark_trend_resolved(trend_id)
        db.commit()
        db.refresh(trend)
        return DriftTrendRead.model_validate(trend)
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
