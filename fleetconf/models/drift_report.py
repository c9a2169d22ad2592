"""Drift Report -- fleet-wide analysis persisted as one record, plus per-path trends."""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from fleetconf.db import Base


class DriftReport(Base):
    __tablename__ = "drift_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    device_id: Mapped[int | None] = mapped_column(Integer, index=True)
    schedule_id: Mapped[int | None] = mapped_column(Integer, index=True)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    total_devices: Mapped[int] = mapped_column(Integer, default=0)
    devices_in_sync: Mapped[int] = mapped_column(Integer, default=0)
    devices_drifted: Mapped[int] = mapped_column(Integer, default=0)
    devices_errored: Mapped[int] = mapped_column(Integer, default=0)
    total_differences: Mapped[int] = mapped_column(Integer, default=0)
    critical_differences: Mapped[int] = mapped_column(Integer, default=0)
    warning_differences: Mapped[int] = mapped_column(Integer, default=0)
    info_differences: Mapped[int] = mapped_column(Integer, default=0)
    security_changes: Mapped[int] = mapped_column(Integer, default=0)
    network_changes: Mapped[int] = mapped_column(Integer, default=0)
    average_health_score: Mapped[float] = mapped_column(Float, default=100.0)

    categories_affected: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    most_common_drifts: Mapped[list[Any]] = mapped_column(JSON, default=list)
    devices: Mapped[list[Any]] = mapped_column(JSON, default=list)
    recommendations: Mapped[list[Any]] = mapped_column(JSON, default=list)


class DriftTrend(Base):
    __tablename__ = "drift_trends"
    __table_args__ = (
        Index(
            "uq_drift_trends_open_device_path",
            "device_id",
            "path",
            unique=True,
            sqlite_where=text("resolved = 0"),
            postgresql_where=text("NOT resolved"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    path: Mapped[str] = mapped_column(String(255), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    occurrences: Mapped[int] = mapped_column(Integer, default=1)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
