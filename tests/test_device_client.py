"""Tests for the HTTP device client."""

import httpx
import pytest

from fleetconf.errors import DeviceError
from fleetconf.services.device_client import HttpDeviceClient


def _client(handler, **kwargs):
    return HttpDeviceClient("192.168.1.50", transport=httpx.MockTransport(handler), **kwargs)


def test_get_config_reads_settings():
    def handler(request: httpx.Request):
        assert request.url.path == "/settings"
        return httpx.Response(200, json={"name": "Kitchen"})

    with _client(handler) as client:
        assert client.get_config() == {"name": "Kitchen"}


def test_set_config_routes_groups_to_endpoints():
    seen = []

    def handler(request: httpx.Request):
        seen.append((request.url.path, dict(request.url.params)))
        return httpx.Response(200, json={})

    with _client(handler) as client:
        client.set_config(
            {
                "name": "Kitchen",
                "led_power_disable": False,
                "wifi_sta": {"enabled": True, "ssid": "home"},
                "mqtt": {"enable": True, "server": "broker:1883"},
                "relays": [{"name": "pump"}, {"auto_off": 30}],
            }
        )

    assert ("/settings/sta", {"enabled": "true", "ssid": "home"}) in seen
    assert ("/settings", {"mqtt_enable": "true", "mqtt_server": "broker:1883"}) in seen
    assert ("/settings/relay/0", {"name": "pump"}) in seen
    assert ("/settings/relay/1", {"auto_off": "30"}) in seen
    assert seen[-1] == ("/settings", {"name": "Kitchen", "led_power_disable": "false"})


def test_http_errors_become_device_errors():
    def handler(request: httpx.Request):
        return httpx.Response(401)

    with _client(handler) as client:
        with pytest.raises(DeviceError):
            client.get_config()


def test_non_object_response_is_rejected():
    def handler(request: httpx.Request):
        return httpx.Response(200, json=["not", "an", "object"])

    with _client(handler) as client:
        with pytest.raises(DeviceError):
            client.get_info()


def test_basic_auth_is_sent_when_configured():
    def handler(request: httpx.Request):
        assert request.headers["authorization"].startswith("Basic ")
        return httpx.Response(200, json={"type": "SHSW-1"})

    with _client(handler, username="admin", password="secret") as client:
        client.test_connection()
