"""Drift detection and reporting schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DifferenceType = Literal["added", "removed", "modified"]
Severity = Literal["critical", "warning", "info"]
Category = Literal["security", "network", "device", "system", "metadata"]
DeviceStatus = Literal["synced", "drift", "error"]
RiskLevel = Literal["low", "medium", "high", "critical"]
DriftSeverity = Literal["none", "low", "medium", "high", "critical"]
ReportType = Literal["device", "bulk", "scheduled", "fleet"]


class ConfigDifference(BaseModel):
    path: str
    expected: Any = None
    actual: Any = None
    type: DifferenceType
    severity: Severity = "critical"
    category: Category = "device"
    description: str = ""
    impact: str = ""
    suggestion: str = ""


class CompareResult(BaseModel):
    match: bool
    differences: list[ConfigDifference] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.differences if d.severity == "critical")

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.differences if d.severity == "warning")

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0


class DriftResult(BaseModel):
    device_id: int
    device_name: str | None = None
    device_ip: str | None = None
    status: DeviceStatus
    error: str | None = None
    drift: CompareResult | None = None
    drift_summary: str | None = None
    checked_at: datetime

    @property
    def difference_count(self) -> int:
        return len(self.drift.differences) if self.drift else 0


class BulkDriftResult(BaseModel):
    total: int = 0
    in_sync: int = 0
    drifted: int = 0
    errors: int = 0
    results: list[DriftResult] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int = 0


class CommonDrift(BaseModel):
    path: str
    type: DifferenceType
    count: int = 0
    percentage: float = 0.0
    severity: Severity
    category: Category
    description: str = ""


class DriftSummary(BaseModel):
    total_devices: int = 0
    devices_in_sync: int = 0
    devices_drifted: int = 0
    devices_errored: int = 0
    total_differences: int = 0
    critical_differences: int = 0
    warning_differences: int = 0
    info_differences: int = 0
    categories_affected: dict[str, int] = Field(default_factory=dict)
    security_changes: int = 0
    network_changes: int = 0
    average_health_score: float = 100.0
    most_common_drifts: list[CommonDrift] = Field(default_factory=list)


class DeviceDriftAnalysis(BaseModel):
    device_id: int
    device_name: str | None = None
    device_type: str | None = None
    generation: int | None = None
    status: DeviceStatus
    error: str | None = None
    differences: list[ConfigDifference] = Field(default_factory=list)
    difference_count: int = 0
    critical_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    health_score: int = 100
    risk_level: RiskLevel = "low"
    drift_severity: DriftSeverity = "none"
    last_checked: datetime | None = None


class RecommendedAction(BaseModel):
    type: str
    description: str
    automated: bool = False
    command: str | None = None


class DriftRecommendation(BaseModel):
    priority: Literal["high", "medium", "low"]
    category: str
    title: str
    description: str
    affected_devices: list[int] = Field(default_factory=list)
    actions: list[RecommendedAction] = Field(default_factory=list)
    impact: str = ""


class DriftReportRead(BaseModel):
    id: int
    report_type: ReportType
    device_id: int | None = None
    schedule_id: int | None = None
    generated_at: datetime
    summary: DriftSummary
    devices: list[DeviceDriftAnalysis] = Field(default_factory=list)
    recommendations: list[DriftRecommendation] = Field(default_factory=list)


class DeviceFilter(BaseModel):
    device_type: str | None = Field(default=None, max_length=80)
    generation: int | None = Field(default=None, ge=1)
    enabled: bool | None = None


class ReportCreateRequest(BaseModel):
    report_type: Literal["bulk", "fleet"] = "bulk"
    device_ids: list[int] | None = None
    device_filter: DeviceFilter | None = None


class DriftTrendRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: int
    path: str
    severity: str
    category: str
    first_seen: datetime
    last_seen: datetime
    occurrences: int
    resolved: bool
    resolved_at: datetime | None = None
