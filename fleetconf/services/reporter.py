"""Drift Reporter -- turn per-device drift results into a scored, persisted fleet report.

Every raw difference is re-categorised from its path, each device gets a
0-100 health score with a risk level, the fleet summary keeps the most common
(path, type) patterns, and a DriftTrend row per open (device, path) counts how
often the same drift keeps coming back.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleetconf.config import settings
from fleetconf.metrics import DRIFT_DIFFERENCES_TOTAL, FLEET_HEALTH_SCORE
from fleetconf.models.device import Device
from fleetconf.models.drift_report import DriftReport, DriftTrend
from fleetconf.schemas.drift import (
    BulkDriftResult,
    CommonDrift,
    ConfigDifference,
    DeviceDriftAnalysis,
    DriftRecommendation,
    DriftReportRead,
    DriftResult,
    DriftSummary,
    RecommendedAction,
)
from fleetconf.services.device_client import DeviceClient

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {"critical": 20, "warning": 10, "info": 2}
MAX_PENALTY = 100
SEVERITY_RANK = {"critical": 3, "warning": 2, "info": 1}

_SECURITY_MARKERS = ("auth", "password", "login")
_NETWORK_MARKERS = ("wifi", "network", "mqtt", "cloud")
_DEVICE_MARKERS = ("relay", "switch", "dimmer", "roller", "components")
_SYSTEM_MARKERS = ("sys", "device.name", "timezone", "debug")
_METADATA_MARKERS = ("_metadata", "device_info")
_STATION_SSID_PATHS = ("wifi.ssid", "wifi.sta.ssid", "wifi_sta.ssid")

_devices_adapter = TypeAdapter(list[DeviceDriftAnalysis])
_recommendations_adapter = TypeAdapter(list[DriftRecommendation])
_common_drifts_adapter = TypeAdapter(list[CommonDrift])


def _has_ip_token(path: str) -> bool:
    return "ip" in re.split(r"[._]", path)


def categorize_difference(path: str, diff_type: str) -> tuple[str, str]:
    """Return ``(category, severity)`` for a difference path. First match wins."""
    path = path.lower()
    if any(m in path for m in _SECURITY_MARKERS):
        return "security", "critical"
    if any(m in path for m in _NETWORK_MARKERS) or _has_ip_token(path):
        if _has_ip_token(path) or path in _STATION_SSID_PATHS:
            return "network", "warning"
        return "network", "info"
    if any(m in path for m in _DEVICE_MARKERS):
        return "device", "warning"
    if any(m in path for m in _SYSTEM_MARKERS):
        return "system", "info"
    if any(m in path for m in _METADATA_MARKERS):
        return "metadata", "info"
    if diff_type == "removed":
        return "system", "warning"
    return "system", "info"


def describe_difference(diff: ConfigDifference) -> str:
    if diff.type == "added":
        return f"New configuration added at '{diff.path}'"
    if diff.type == "removed":
        return f"Configuration removed from '{diff.path}'"
    return f"Configuration changed at '{diff.path}'"


def assess_impact(category: str, severity: str) -> str:
    if category == "security":
        return "May affect device security and access control"
    if category == "network":
        if severity == "warning":
            return "May affect device connectivity and network communication"
        return "Minor network configuration change"
    if category == "device":
        return "May affect device functionality and behavior"
    if category == "system":
        if severity == "warning":
            return "May affect system stability or configuration"
        return "Minor system configuration change"
    return "Informational change, no functional impact"


def suggest_action(severity: str) -> str:
    if severity == "critical":
        return "Review immediately and verify if change is authorized"
    if severity == "warning":
        return "Review change and update stored configuration if intended"
    return "Monitor for consistency, update if needed"


def enrich_difference(diff: ConfigDifference) -> ConfigDifference:
    category, severity = categorize_difference(diff.path, diff.type)
    return diff.model_copy(
        update={
            "category": category,
            "severity": severity,
            "description": describe_difference(diff),
            "impact": assess_impact(category, severity),
            "suggestion": suggest_action(severity),
        }
    )


def health_score(critical: int, warning: int, info: int) -> int:
    penalty = (
        critical * SEVERITY_WEIGHTS["critical"]
        + warning * SEVERITY_WEIGHTS["warning"]
        + info * SEVERITY_WEIGHTS["info"]
    )
    return max(0, 100 - min(penalty, MAX_PENALTY))


def risk_level(critical: int, warning: int, score: int) -> str:
    if critical > 0:
        return "critical"
    if score < 50:
        return "high"
    if warning > 0 or score < 80:
        return "medium"
    return "low"


def drift_severity(critical: int, warning: int, info: int) -> str:
    if critical > 0:
        return "critical"
    if warning > 3:
        return "high"
    if warning > 0:
        return "medium"
    if info > 5 or critical + warning + info > 0:
        return "low"
    return "none"


class DriftReporter:
    def __init__(self, db: Session, top_drifts: int | None = None):
        self.db = db
        self.top_drifts = settings.report_top_drifts if top_drifts is None else top_drifts

    # -- generation ---------------------------------------------------------

    def generate_comprehensive_report(
        self,
        report_type: str,
        results: list[DriftResult],
        device_id: int | None = None,
        schedule_id: int | None = None,
    ) -> DriftReportRead:
        """Analyse ``results``, upsert trends and flush one DriftReport row.

        The caller owns the transaction and commits.
        """
        devices, summary = self._analyze(results)
        recommendations = self._recommendations(devices, summary)

        report = DriftReport(
            report_type=report_type,
            device_id=device_id,
            schedule_id=schedule_id,
            generated_at=datetime.now(UTC),
            total_devices=summary.total_devices,
            devices_in_sync=summary.devices_in_sync,
            devices_drifted=summary.devices_drifted,
            devices_errored=summary.devices_errored,
            total_differences=summary.total_differences,
            critical_differences=summary.critical_differences,
            warning_differences=summary.warning_differences,
            info_differences=summary.info_differences,
            security_changes=summary.security_changes,
            network_changes=summary.network_changes,
            average_health_score=summary.average_health_score,
            categories_affected=dict(summary.categories_affected),
            most_common_drifts=[d.model_dump(mode="json") for d in summary.most_common_drifts],
            devices=[d.model_dump(mode="json") for d in devices],
            recommendations=[r.model_dump(mode="json") for r in recommendations],
        )
        self.db.add(report)
        self.db.flush()

        self._update_trends(devices)

        for severity in ("critical", "warning", "info"):
            count = getattr(summary, f"{severity}_differences")
            if count:
                DRIFT_DIFFERENCES_TOTAL.labels(severity=severity).inc(count)
        FLEET_HEALTH_SCORE.set(summary.average_health_score)

        logger.info(
            "Generated %s drift report %s: devices=%d drifted=%d errored=%d differences=%d",
            report_type,
            report.id,
            summary.total_devices,
            summary.devices_drifted,
            summary.devices_errored,
            summary.total_differences,
        )
        return DriftReportRead(
            id=report.id,
            report_type=report_type,
            device_id=device_id,
            schedule_id=schedule_id,
            generated_at=report.generated_at,
            summary=summary,
            devices=devices,
            recommendations=recommendations,
        )

    def report_from_bulk(self, bulk: BulkDriftResult, schedule_id: int | None = None) -> DriftReportRead:
        report_type = "scheduled" if schedule_id is not None else "bulk"
        return self.generate_comprehensive_report(report_type, bulk.results, schedule_id=schedule_id)

    def generate_device_report(self, device_id: int, client: DeviceClient) -> DriftReportRead:
        from fleetconf.services.drift_service import DriftService

        try:
            result = DriftService(self.db).detect_drift(device_id, client)
        except Exception as exc:
            logger.warning("Drift detection failed for device %s: %s", device_id, exc)
            device = self.db.get(Device, device_id)
            result = DriftResult(
                device_id=device_id,
                device_name=device.name if device else None,
                device_ip=device.ip if device else None,
                status="error",
                error=str(exc),
                checked_at=datetime.now(UTC),
            )
        return self.generate_comprehensive_report("device", [result], device_id=device_id)

    def _analyze(self, results: list[DriftResult]) -> tuple[list[DeviceDriftAnalysis], DriftSummary]:
        ids = {r.device_id for r in results}
        known: dict[int, Device] = {}
        if ids:
            known = {d.id: d for d in self.db.scalars(select(Device).where(Device.id.in_(ids))).all()}

        summary = DriftSummary(total_devices=len(results))
        patterns: dict[tuple[str, str], CommonDrift] = {}
        devices: list[DeviceDriftAnalysis] = []

        for result in results:
            analysis = self._analyze_device(result, known.get(result.device_id))
            devices.append(analysis)

            if analysis.status == "synced":
                summary.devices_in_sync += 1
            elif analysis.status == "drift":
                summary.devices_drifted += 1
            else:
                summary.devices_errored += 1

            summary.critical_differences += analysis.critical_count
            summary.warning_differences += analysis.warning_count
            summary.info_differences += analysis.info_count
            summary.total_differences += analysis.difference_count

            for diff in analysis.differences:
                summary.categories_affected[diff.category] = summary.categories_affected.get(diff.category, 0) + 1
                if diff.category == "security":
                    summary.security_changes += 1
                elif diff.category == "network":
                    summary.network_changes += 1
                key = (diff.path, diff.type)
                if key in patterns:
                    patterns[key].count += 1
                else:
                    patterns[key] = CommonDrift(
                        path=diff.path,
                        type=diff.type,
                        count=1,
                        severity=diff.severity,
                        category=diff.category,
                        description=diff.description,
                    )

        if summary.devices_drifted:
            for pattern in patterns.values():
                pattern.percentage = round(pattern.count / summary.devices_drifted * 100, 2)
        ranked = sorted(patterns.values(), key=lambda p: (-p.count, -SEVERITY_RANK.get(p.severity, 0)))
        summary.most_common_drifts = ranked[: self.top_drifts]

        if devices:
            summary.average_health_score = round(sum(d.health_score for d in devices) / len(devices), 2)
        return devices, summary

    @staticmethod
    def _analyze_device(result: DriftResult, device: Device | None) -> DeviceDriftAnalysis:
        analysis = DeviceDriftAnalysis(
            device_id=result.device_id,
            device_name=result.device_name or (device.name if device else None),
            device_type=device.device_type if device else None,
            generation=device.generation if device else None,
            status=result.status,
            error=result.error,
            last_checked=result.checked_at,
        )
        if result.drift is None:
            return analysis

        differences = [enrich_difference(d) for d in result.drift.differences]
        critical = sum(1 for d in differences if d.severity == "critical")
        warning = sum(1 for d in differences if d.severity == "warning")
        info = sum(1 for d in differences if d.severity == "info")
        score = health_score(critical, warning, info) if differences else 100

        analysis.differences = differences
        analysis.difference_count = len(differences)
        analysis.critical_count = critical
        analysis.warning_count = warning
        analysis.info_count = info
        analysis.health_score = score
        analysis.risk_level = risk_level(critical, warning, score)
        analysis.drift_severity = drift_severity(critical, warning, info)
        return analysis

    @staticmethod
    def _recommendations(devices: list[DeviceDriftAnalysis], summary: DriftSummary) -> list[DriftRecommendation]:
        def with_category(category: str) -> list[int]:
            return [d.device_id for d in devices if any(diff.category == category for diff in d.differences)]

        recommendations: list[DriftRecommendation] = []

        security_devices = with_category("security") if summary.security_changes else []
        if security_devices:
            recommendations.append(
                DriftRecommendation(
                    priority="high",
                    category="security",
                    title="Security Configuration Drift Detected",
                    description=(
                        f"Security-related configuration changes detected on {len(security_devices)} device(s). "
                        "These changes may affect device access control and security."
                    ),
                    affected_devices=security_devices,
                    actions=[
                        RecommendedAction(type="manual-review", description="Review authentication and security settings"),
                        RecommendedAction(type="manual-action", description="Verify credentials and access controls"),
                    ],
                    impact="High - Security vulnerabilities may exist",
                )
            )

        network_devices = with_category("network") if summary.network_changes else []
        if network_devices:
            recommendations.append(
                DriftRecommendation(
                    priority="medium",
                    category="network",
                    title="Network Configuration Changes",
                    description=(
                        f"Network configuration changes detected on {len(network_devices)} device(s). "
                        "Verify connectivity settings."
                    ),
                    affected_devices=network_devices,
                    actions=[
                        RecommendedAction(
                            type="auto-fix",
                            description="Synchronize network settings from stored configuration",
                            automated=True,
                        ),
                        RecommendedAction(
                            type="monitor",
                            description="Monitor device connectivity after synchronization",
                            automated=True,
                        ),
                    ],
                    impact="Medium - May affect device connectivity",
                )
            )

        critical_devices = [d.device_id for d in devices if d.risk_level == "critical"]
        if critical_devices:
            recommendations.append(
                DriftRecommendation(
                    priority="high",
                    category="maintenance",
                    title="Critical Configuration Drift",
                    description=(
                        f"{len(critical_devices)} device(s) have critical configuration drift "
                        "requiring immediate attention."
                    ),
                    affected_devices=critical_devices,
                    actions=[
                        RecommendedAction(
                            type="manual-review", description="Immediate review of critical configuration changes"
                        ),
                        RecommendedAction(
                            type="manual-action", description="Restore known-good configuration or validate changes"
                        ),
                    ],
                    impact="Critical - Device functionality may be compromised",
                )
            )

        if summary.devices_drifted > 3:
            recommendations.append(
                DriftRecommendation(
                    priority="medium",
                    category="maintenance",
                    title="Bulk Configuration Synchronization",
                    description=(
                        f"Multiple devices ({summary.devices_drifted}) have configuration drift. "
                        "Consider bulk synchronization."
                    ),
                    affected_devices=[d.device_id for d in devices if d.status == "drift"],
                    actions=[
                        RecommendedAction(
                            type="auto-fix",
                            description="Perform bulk configuration export to synchronize devices",
                            automated=True,
                            command="bulk-export",
                        )
                    ],
                    impact="Medium - Improves overall configuration consistency",
                )
            )
        return recommendations

    def _update_trends(self, devices: list[DeviceDriftAnalysis]) -> None:
        now = datetime.now(UTC)
        for device in devices:
            for diff in device.differences:
                try:
                    with self.db.begin_nested():
                        trend = self.db.scalar(
                            select(DriftTrend).where(
                                DriftTrend.device_id == device.device_id,
                                DriftTrend.path == diff.path,
                                DriftTrend.resolved.is_(False),
                            )
                        )
                        if trend is None:
                            self.db.add(
                                DriftTrend(
                                    device_id=device.device_id,
                                    path=diff.path,
                                    severity=diff.severity,
                                    category=diff.category,
                                    first_seen=now,
                                    last_seen=now,
                                    occurrences=1,
                                )
                            )
                        else:
                            trend.last_seen = now
                            trend.occurrences += 1
                            trend.severity = diff.severity
                            trend.category = diff.category
                except SQLAlchemyError:
                    logger.warning(
                        "Failed to update drift trend for device %s path %s",
                        device.device_id,
                        diff.path,
                        exc_info=True,
                    )

    # -- queries ------------------------------------------------------------

    def get_reports(
        self, report_type: str | None = None, device_id: int | None = None, limit: int = 50
    ) -> list[DriftReportRead]:
        stmt = select(DriftReport)
        if report_type:
            stmt = stmt.where(DriftReport.report_type == report_type)
        if device_id is not None:
            stmt = stmt.where(DriftReport.device_id == device_id)
        stmt = stmt.order_by(DriftReport.generated_at.desc(), DriftReport.id.desc())
        if limit > 0:
            stmt = stmt.limit(limit)
        return [self._to_read(row) for row in self.db.scalars(stmt).all()]

    def get_report(self, report_id: int) -> DriftReportRead:
        row = self.db.get(DriftReport, report_id)
        if not row:
            raise ValueError(f"Drift report {report_id} not found")
        return self._to_read(row)

    def _to_read(self, row: DriftReport) -> DriftReportRead:
        most_common = self._decode(row.id, "most_common_drifts", _common_drifts_adapter, row.most_common_drifts)
        devices = self._decode(row.id, "devices", _devices_adapter, row.devices)
        recommendations = self._decode(row.id, "recommendations", _recommendations_adapter, row.recommendations)
        categories: dict[str, int] = {}
        if isinstance(row.categories_affected, dict):
            categories = {str(k): int(v) for k, v in row.categories_affected.items() if isinstance(v, int)}
        else:
            logger.warning("Report %s has malformed categories_affected", row.id)

        summary = DriftSummary(
            total_devices=row.total_devices,
            devices_in_sync=row.devices_in_sync,
            devices_drifted=row.devices_drifted,
            devices_errored=row.devices_errored,
            total_differences=row.total_differences,
            critical_differences=row.critical_differences,
            warning_differences=row.warning_differences,
            info_differences=row.info_differences,
            categories_affected=categories,
            security_changes=row.security_changes,
            network_changes=row.network_changes,
            average_health_score=row.average_health_score,
            most_common_drifts=most_common,
        )
        return DriftReportRead(
            id=row.id,
            report_type=row.report_type,
            device_id=row.device_id,
            schedule_id=row.schedule_id,
            generated_at=row.generated_at,
            summary=summary,
            devices=devices,
            recommendations=recommendations,
        )

    @staticmethod
    def _decode(report_id: int, field: str, adapter: TypeAdapter, raw: Any) -> list:
        try:
            return adapter.validate_python(raw or [])
        except ValidationError:
            logger.warning("Failed to decode %s of drift report %s", field, report_id, exc_info=True)
            return []

    # -- trends -------------------------------------------------------------

    def get_drift_trends(
        self, device_id: int | None = None, resolved: bool | None = None, limit: int = 100
    ) -> list[DriftTrend]:
        stmt = select(DriftTrend)
        if device_id is not None:
            stmt = stmt.where(DriftTrend.device_id == device_id)
        if resolved is not None:
            stmt = stmt.where(DriftTrend.resolved.is_(resolved))
        stmt = stmt.order_by(DriftTrend.last_seen.desc(), DriftTrend.id.desc())
        if limit > 0:
            stmt = stmt.limit(limit)
        return list(self.db.scalars(stmt).all())

    def mark_trend_resolved(self, trend_id: int) -> DriftTrend:
        trend = self.db.get(DriftTrend, trend_id)
        if not trend:
            raise ValueError(f"Drift trend {trend_id} not found")
        if not trend.resolved:
            trend.resolved = True
            trend.resolved_at = datetime.now(UTC)
            self.db.flush()
        return trend
