"""Tests for DriftService."""

import uuid

import pytest
from sqlalchemy import select

from fleetconf.models.device import DeviceConfig, SyncStatus
from fleetconf.services.drift_service import DriftService
from tests.fakes import FakeDeviceClient, make_device

DESIRED = {"wifi": {"ssid": "home"}, "system": {"device": {"name": "Kitchen"}}}
IN_SYNC_WIRE = {"wifi_sta": {"ssid": "home"}, "name": "Kitchen"}
DRIFTED_WIRE = {"wifi_sta": {"ssid": "guest"}, "name": "Kitchen"}


def _stored(db_session, device_id):
    db_session.expire_all()
    return db_session.scalar(select(DeviceConfig).where(DeviceConfig.device_id == device_id))


def test_detect_drift_in_sync(db_session):
    device = make_device(db_session, config=DESIRED)
    result = DriftService(db_session).detect_drift(device.id, FakeDeviceClient(dict(IN_SYNC_WIRE)))
    db_session.commit()

    assert result.status == "synced"
    assert result.drift is None
    stored = _stored(db_session, device.id)
    assert stored.sync_status == SyncStatus.synced
    assert stored.last_synced is not None


def test_detect_drift_reports_differences(db_session):
    device = make_device(db_session, config=DESIRED)
    result = DriftService(db_session).detect_drift(device.id, FakeDeviceClient(dict(DRIFTED_WIRE)))
    db_session.commit()

    assert result.status == "drift"
    assert result.difference_count == 1
    assert result.drift.differences[0].path == "wifi.ssid"
    assert result.drift_summary == "1 configuration differences detected"
    stored = _stored(db_session, device.id)
    assert stored.sync_status == SyncStatus.drift
    assert stored.last_synced is None


def test_detect_drift_requires_device_and_desired_config(db_session):
    svc = DriftService(db_session)
    with pytest.raises(ValueError, match="not found"):
        svc.detect_drift(999999, FakeDeviceClient())

    device = make_device(db_session, config=None)
    with pytest.raises(ValueError, match="No desired configuration"):
        svc.detect_drift(device.id, FakeDeviceClient())


def test_desired_provider_overrides_stored_config(db_session):
    device = make_device(db_session, config=None)
    svc = DriftService(db_session, desired_provider=lambda _id: {"wifi": {"ssid": "home"}})
    result = svc.detect_drift(device.id, FakeDeviceClient(dict(IN_SYNC_WIRE)))
    assert result.status == "synced"


def test_bulk_detect_drift_mixes_outcomes(db_session):
    synced = make_device(db_session, config=DESIRED)
    drifted = make_device(db_session, config=DESIRED)
    failing = make_device(db_session, config=DESIRED)
    no_client = make_device(db_session, config=DESIRED)
    clients = {
        synced.id: FakeDeviceClient(dict(IN_SYNC_WIRE)),
        drifted.id: FakeDeviceClient(dict(DRIFTED_WIRE)),
        failing.id: FakeDeviceClient(fail_get=ConnectionError("unreachable")),
    }

    def factory(device_id):
        if device_id not in clients:
            raise RuntimeError("no route to host")
        return clients[device_id]

    bulk = DriftService(db_session).bulk_detect_drift(
        [synced.id, drifted.id, failing.id, no_client.id, 999999], factory
    )
    db_session.commit()

    assert bulk.total == 5
    assert bulk.in_sync == 1
    assert bulk.drifted == 1
    assert bulk.errors == 3
    by_id = {r.device_id: r for r in bulk.results}
    assert by_id[failing.id].error == "unreachable"
    assert by_id[no_client.id].error == "Failed to create client: no route to host"
    assert by_id[999999].error == "Device not found"
    assert all(c.closed for c in clients.values())
    assert _stored(db_session, failing.id).sync_status == SyncStatus.error


def test_resolve_devices(db_session):
    device_type = f"type-{uuid.uuid4().hex[:6]}"
    a = make_device(db_session, device_type=device_type)
    b = make_device(db_session, device_type=device_type, generation=2)
    make_device(db_session, device_type=device_type, enabled=False)
    other = make_device(db_session, device_type="other")
    svc = DriftService(db_session)

    assert svc.resolve_devices([other.id, a.id]) == [other.id, a.id]
    assert svc.resolve_devices(device_filter={"device_type": device_type, "enabled": True}) == [a.id, b.id]
    assert svc.resolve_devices(device_filter={"device_type": device_type, "generation": 2}) == [b.id]
    assert other.id in svc.resolve_devices()
