"""Tests for ConfigApplier."""

import threading
import time

import pytest

from fleetconf.errors import ConfigConversionError, DeviceError, RebootCancelledError, RebootTimeoutError
from fleetconf.services.apply_service import ConfigApplier, count_settings, detect_reboot_required
from tests.fakes import FakeDeviceClient

DESIRED = {
    "wifi": {"enable": True, "ssid": "home", "password": "pw"},
    "mqtt": {"enable": True, "server": "broker:1883"},
    "system": {"device": {"name": "Kitchen"}},
    "location": {"tz": "UTC"},
    "relays": [{"name": "pump"}],
}


class _RebootFails(FakeDeviceClient):
    def reboot(self) -> None:
        raise ConnectionError("refused")


def test_apply_writes_every_group():
    client = FakeDeviceClient(wire={"wifi_sta": {"enabled": True, "ssid": "home"}})
    result = ConfigApplier().apply_config(client, DESIRED, "SHSW-1")

    assert result.success
    assert result.failed_count == 0
    # name + timezone count per key, wifi_sta / mqtt / relays count once each
    assert result.applied_count == 5
    groups = [next(iter(call)) for call in client.set_calls]
    assert groups == ["name", "wifi_sta", "mqtt", "relays"]
    assert client.set_calls[0] == {"name": "Kitchen", "timezone": "UTC"}
    assert result.settings_count == 8


def test_failing_group_does_not_stop_the_rest():
    client = FakeDeviceClient(wire={}, fail_groups=("mqtt",))
    result = ConfigApplier().apply_config(client, DESIRED)

    assert not result.success
    assert result.failed_count == 1
    assert result.failures[0].path == "mqtt"
    assert "mqtt rejected" in result.failures[0].error
    assert any("relays" in call for call in client.set_calls)
    assert result.applied_count == 4


def test_failing_main_group_records_each_key():
    client = FakeDeviceClient(wire={}, fail_groups=("name",))
    result = ConfigApplier().apply_config(client, DESIRED)
    assert sorted(f.path for f in result.failures) == ["name", "timezone"]


def test_wifi_change_requires_reboot():
    client = FakeDeviceClient(wire={"wifi_sta": {"enabled": True, "ssid": "old"}})
    result = ConfigApplier().apply_config(client, DESIRED)
    assert result.requires_reboot
    assert result.warnings


def test_reboot_detection_survives_live_current_document():
    client = FakeDeviceClient(wire={"wifi_sta": {"ssid": "old"}})
    live = client.get_config()

    result = ConfigApplier().apply_config(client, {"wifi": {"enable": True, "ssid": "new"}})

    assert live["wifi_sta"]["ssid"] == "new"
    assert result.requires_reboot


def test_unreadable_current_config_skips_reboot_detection():
    client = FakeDeviceClient(fail_get=ConnectionError("timeout"))
    result = ConfigApplier().apply_config(client, DESIRED)
    assert result.success
    assert not result.requires_reboot


def test_conversion_error_is_raised():
    with pytest.raises(ConfigConversionError):
        ConfigApplier().apply_config(FakeDeviceClient(), {"relays": "pump"})


def test_detect_reboot_required_auth_enable():
    assert detect_reboot_required({}, {}, {"auth": {"enable": True}})
    assert not detect_reboot_required({}, {}, {"auth": {"enable": False}})
    assert not detect_reboot_required(
        {"wifi_sta": {"ssid": "a"}}, {"wifi_sta": {"ssid": "a"}}, {}
    )


def test_reboot_and_wait_returns_when_device_is_back():
    client = FakeDeviceClient(online_after=2)
    applier = ConfigApplier(reboot_grace_seconds=0, reboot_poll_interval_seconds=0.01)
    applier.reboot_and_wait(client, timeout=5)
    assert client.reboots == 1
    assert client.connection_checks == 3


def test_reboot_and_wait_times_out_near_the_deadline():
    client = FakeDeviceClient(online_after=1000)
    applier = ConfigApplier(reboot_grace_seconds=2, reboot_poll_interval_seconds=3)
    started = time.monotonic()
    with pytest.raises(RebootTimeoutError):
        applier.reboot_and_wait(client, timeout=5)
    elapsed = time.monotonic() - started
    assert 4.5 <= elapsed <= 7


def test_reboot_and_wait_cancelled():
    cancel = threading.Event()
    cancel.set()
    client = FakeDeviceClient(online_after=1000)
    applier = ConfigApplier(reboot_grace_seconds=2, reboot_poll_interval_seconds=3)
    started = time.monotonic()
    with pytest.raises(RebootCancelledError):
        applier.reboot_and_wait(client, timeout=60, cancel=cancel)
    assert time.monotonic() - started < 1
    assert client.reboots == 1


def test_reboot_command_failure_raises_device_error():
    with pytest.raises(DeviceError):
        ConfigApplier(reboot_grace_seconds=0).reboot_and_wait(_RebootFails(), timeout=1)


def test_count_settings_counts_group_members():
    assert count_settings({"name": "x", "wifi_sta": {"ssid": "a", "key": "b"}, "relays": [{}, {}]}) == 5
