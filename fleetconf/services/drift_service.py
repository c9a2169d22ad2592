"""Config Drift Detection Service -- compare stored desired config vs device config."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from fleetconf.metrics import DRIFT_CHECKS_TOTAL
from fleetconf.models.device import Device, DeviceConfig, SyncStatus
from fleetconf.schemas.drift import BulkDriftResult, DriftResult
from fleetconf.services.compare import ConfigComparator
from fleetconf.services.converter import ConfigConverter, get_converter
from fleetconf.services.device_client import DeviceClient, HttpDeviceClient

logger = logging.getLogger(__name__)

DesiredProvider = Callable[[int], "dict[str, Any] | None"]
ClientFactory = Callable[[int], DeviceClient]


def default_client_factory(db: Session) -> ClientFactory:
    """Build HTTP clients from the device records in ``db``."""

    def factory(device_id: int) -> DeviceClient:
        device = db.get(Device, device_id)
        if not device:
            raise ValueError(f"Device {device_id} not found")
        return HttpDeviceClient(device.ip, generation=device.generation)

    return factory


class DriftService:
    def __init__(
        self,
        db: Session,
        converter: ConfigConverter | None = None,
        comparator: ConfigComparator | None = None,
        desired_provider: DesiredProvider | None = None,
    ):
        self.db = db
        self.converter = converter
        self.comparator = comparator or ConfigComparator()
        self.desired_provider = desired_provider or self._stored_config

    def _stored_config(self, device_id: int) -> dict[str, Any] | None:
        stored = self._get_device_config(device_id)
        return stored.config if stored else None

    def _get_device_config(self, device_id: int) -> DeviceConfig | None:
        return self.db.scalar(select(DeviceConfig).where(DeviceConfig.device_id == device_id))

    def detect_drift(self, device_id: int, client: DeviceClient) -> DriftResult:
        """Fetch the device settings and diff them against the desired document."""
        device = self.db.get(Device, device_id)
        if not device:
            raise ValueError(f"Device {device_id} not found")

        desired = self.desired_provider(device_id)
        if desired is None:
            raise ValueError(f"No desired configuration for device {device_id}")

        converter = self.converter or get_converter(device.generation)
        actual = converter.from_wire(client.get_config(), device.device_type)
        compared = self.comparator.compare(desired, actual)

        now = datetime.now(UTC)
        stored = self._get_device_config(device_id)
        if stored:
            stored.sync_status = SyncStatus.synced if compared.match else SyncStatus.drift
            if compared.match:
                stored.last_synced = now
            self.db.flush()

        if compared.match:
            return DriftResult(
                device_id=device.id,
                device_name=device.name,
                device_ip=device.ip,
                status="synced",
                checked_at=now,
            )
        return DriftResult(
            device_id=device.id,
            device_name=device.name,
            device_ip=device.ip,
            status="drift",
            drift=compared,
            drift_summary=f"{len(compared.differences)} configuration differences detected",
            checked_at=now,
        )

    def bulk_detect_drift(self, device_ids: list[int], client_factory: ClientFactory) -> BulkDriftResult:
        started = datetime.now(UTC)
        logger.info("Starting bulk drift detection for %d devices", len(device_ids))
        results: list[DriftResult] = []
        for device_id in device_ids:
            result = self._detect_one(device_id, client_factory)
            DRIFT_CHECKS_TOTAL.labels(status=result.status).inc()
            results.append(result)

        completed = datetime.now(UTC)
        bulk = BulkDriftResult(
            total=len(device_ids),
            in_sync=sum(1 for r in results if r.status == "synced"),
            drifted=sum(1 for r in results if r.status == "drift"),
            errors=sum(1 for r in results if r.status == "error"),
            results=results,
            started_at=started,
            completed_at=completed,
            duration_ms=int((completed - started).total_seconds() * 1000),
        )
        logger.info(
            "Bulk drift detection completed: total=%d in_sync=%d drifted=%d errors=%d",
            bulk.total,
            bulk.in_sync,
            bulk.drifted,
            bulk.errors,
        )
        return bulk

    def _detect_one(self, device_id: int, client_factory: ClientFactory) -> DriftResult:
        device = self.db.get(Device, device_id)
        if not device:
            return DriftResult(
                device_id=device_id,
                status="error",
                error="Device not found",
                checked_at=datetime.now(UTC),
            )

        try:
            client = client_factory(device_id)
        except Exception as exc:
            return DriftResult(
                device_id=device_id,
                device_name=device.name,
                device_ip=device.ip,
                status="error",
                error=f"Failed to create client: {exc}",
                checked_at=datetime.now(UTC),
            )

        try:
            return self.detect_drift(device_id, client)
        except Exception as exc:
            logger.warning("Failed to detect drift for device %s (%s): %s", device_id, device.ip, exc)
            stored = self._get_device_config(device_id)
            if stored:
                stored.sync_status = SyncStatus.error
                self.db.flush()
            return DriftResult(
                device_id=device_id,
                device_name=device.name,
                device_ip=device.ip,
                status="error",
                error=str(exc),
                checked_at=datetime.now(UTC),
            )
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

    def resolve_devices(
        self, device_ids: list[int] | None = None, device_filter: dict[str, Any] | None = None
    ) -> list[int]:
        """Explicit ids win, then the filter predicate, then every device."""
        if device_ids:
            return list(device_ids)
        stmt = select(Device.id).order_by(Device.id)
        if device_filter:
            if device_filter.get("device_type") is not None:
                stmt = stmt.where(Device.device_type == device_filter["device_type"])
            if device_filter.get("generation") is not None:
                stmt = stmt.where(Device.generation == device_filter["generation"])
            if device_filter.get("enabled") is not None:
                stmt = stmt.where(Device.enabled.is_(bool(device_filter["enabled"])))
        return list(self.db.scalars(stmt).all())
