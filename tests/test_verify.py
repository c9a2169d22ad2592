"""Tests for ConfigVerifier."""

import pytest

from fleetconf.errors import DeviceError
from fleetconf.services.apply_service import ConfigApplier
from fleetconf.services.verify_service import ConfigVerifier, format_diff_report
from tests.fakes import FakeDeviceClient

DESIRED = {"wifi": {"ssid": "home"}, "system": {"device": {"name": "Kitchen"}}}


def _verifier():
    applier = ConfigApplier(reboot_grace_seconds=0, reboot_poll_interval_seconds=0.01)
    return ConfigVerifier(applier=applier, settle_seconds=0)


def test_verify_matching_device():
    client = FakeDeviceClient(wire={"wifi_sta": {"ssid": "home"}, "name": "Kitchen", "mac": "AA"})
    result = _verifier().verify_config(client, DESIRED)
    assert result.match
    assert result.imported == {"wifi": {"ssid": "home"}, "system": {"device": {"name": "Kitchen"}}}
    assert format_diff_report(result) == "Configuration matches device - no differences found."


def test_verify_reports_differences():
    client = FakeDeviceClient(wire={"wifi_sta": {"ssid": "guest"}, "name": "Kitchen"})
    result = _verifier().verify_config(client, DESIRED)
    assert not result.match
    assert [d.path for d in result.differences] == ["wifi.ssid"]
    report = format_diff_report(result)
    assert report.startswith("Found 1 difference(s):")
    assert "Expected: home" in report
    assert "Actual:   guest" in report


def test_import_wraps_unexpected_errors():
    client = FakeDeviceClient(fail_get=ConnectionError("unreachable"))
    with pytest.raises(DeviceError, match="Failed to get device config"):
        _verifier().import_config(client)


def test_apply_and_verify_round_trip():
    client = FakeDeviceClient(wire={"wifi_sta": {"ssid": "old"}})
    outcome = _verifier().apply_and_verify(client, DESIRED)
    assert outcome.apply_result.success
    assert outcome.apply_result.requires_reboot
    assert client.reboots == 1
    assert outcome.verify_result is not None
    assert outcome.config_applied


def test_apply_and_verify_skips_verification_on_failed_apply():
    client = FakeDeviceClient(wire={}, fail_groups=("wifi_sta",))
    outcome = _verifier().apply_and_verify(client, DESIRED)
    assert not outcome.config_applied
    assert outcome.verify_result is None
