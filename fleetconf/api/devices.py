"""Device API -- push the stored desired configuration and verify it."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from fleetconf.api.deps import get_client_factory, get_db
from fleetconf.errors import ConfigConversionError
from fleetconf.models.device import Device, DeviceConfig, SyncStatus
from fleetconf.services.drift_service import ClientFactory

router = APIRouter(prefix="/devices", tags=["devices"])


def _load(db: Session, device_id: int) -> tuple[Device, DeviceConfig]:
    device = db.get(Device, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    stored = db.scalar(select(DeviceConfig).where(DeviceConfig.device_id == device_id))
    if not stored or stored.config is None:
        raise HTTPException(status_code=400, detail=f"No desired configuration for device {device_id}")
    return device, stored


def _close(client) -> None:
    close = getattr(client, "close", None)
    if callable(close):
        close()


@router.post("/{device_id}/apply")
def apply_device_config(
    device_id: int,
    verify: bool = Query(default=False),
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    from fleetconf.services.apply_service import ConfigApplier
    from fleetconf.services.converter import get_converter
    from fleetconf.services.verify_service import ConfigVerifier

    device, stored = _load(db, device_id)
    converter = get_converter(device.generation)
    client = client_factory(device_id)
    try:
        if verify:
            outcome = ConfigVerifier(converter).apply_and_verify(client, stored.config, device.device_type)
            if outcome.verify_result is not None:
                _record_sync(stored, outcome.verify_result.match)
        else:
            outcome = ConfigApplier(converter).apply_config(client, stored.config, device.device_type)
            if outcome.success:
                stored.sync_status = SyncStatus.pending
        db.commit()
        return outcome
    except ConfigConversionError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        _close(client)


@router.post("/{device_id}/verify")
def verify_device_config(
    device_id: int,
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    from fleetconf.services.converter import get_converter
    from fleetconf.services.verify_service import ConfigVerifier

    device, stored = _load(db, device_id)
    client = client_factory(device_id)
    try:
        result = ConfigVerifier(get_converter(device.generation)).verify_config(
            client, stored.config, device.device_type
        )
        _record_sync(stored, result.match)
        db.commit()
        return result
    except ConfigConversionError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        _close(client)


def _record_sync(stored: DeviceConfig, match: bool) -> None:
    stored.sync_status = SyncStatus.synced if match else SyncStatus.drift
    if match:
        stored.last_synced = datetime.now(UTC)
