from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fleetconf.models.drift_schedule import RunStatus
from fleetconf.schemas.drift import DeviceFilter


class DriftScheduleBase(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    description: str | None = None
    cron_spec: str = Field(min_length=1, max_length=120)
    enabled: bool = True
    device_ids: list[int] | None = None
    device_filter: DeviceFilter | None = None

    @model_validator(mode="after")
    def check_device_selection(self):
        if self.device_ids and self.device_filter is not None:
            raise ValueError("device_ids and device_filter are mutually exclusive")
        return self


class DriftScheduleCreate(DriftScheduleBase):
    pass


class DriftScheduleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    description: str | None = None
    cron_spec: str | None = Field(default=None, min_length=1, max_length=120)
    enabled: bool | None = None
    device_ids: list[int] | None = None
    device_filter: DeviceFilter | None = None

    @model_validator(mode="after")
    def check_device_selection(self):
        if self.device_ids and self.device_filter is not None:
            raise ValueError("device_ids and device_filter are mutually exclusive")
        return self


class DriftScheduleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    cron_spec: str
    enabled: bool
    device_ids: list[int] | None = None
    device_filter: dict[str, Any] | None = None
    last_run: datetime | None = None
    next_run: datetime | None = None
    run_count: int
    created_at: datetime
    updated_at: datetime


class DriftRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    schedule_id: int
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    results: dict[str, Any] | None = None
    error: str | None = None


class SchedulerStatusResponse(BaseModel):
    running: bool
    registered_jobs: int = Field(ge=0)
    next_runs: dict[int, datetime | None] = Field(default_factory=dict)
