"""Device transport -- the narrow capability the drift and apply services depend on."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from fleetconf.config import settings
from fleetconf.errors import DeviceError

logger = logging.getLogger(__name__)


class DeviceClient(Protocol):
    ip: str
    generation: int

    def get_config(self) -> dict[str, Any]: ...

    def set_config(self, config: dict[str, Any]) -> None: ...

    def get_info(self) -> dict[str, Any]: ...

    def reboot(self) -> None: ...

    def test_connection(self) -> None: ...


# group key -> (endpoint, query parameter prefix)
_GROUP_ENDPOINTS = {
    "wifi_sta": ("/settings/sta", ""),
    "wifi_ap": ("/settings/ap", ""),
    "login": ("/settings/login", ""),
    "cloud": ("/settings/cloud", ""),
    "mqtt": ("/settings", "mqtt_"),
    "coiot": ("/settings", "coiot_"),
}


def _param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class HttpDeviceClient:
    """Gen1 HTTP API client. Every setting is written as a GET query parameter."""

    def __init__(
        self,
        ip: str,
        generation: int = 1,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.ip = ip
        self.generation = generation
        username = username if username is not None else settings.device_username
        password = password if password is not None else settings.device_password
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.Client(
            base_url=f"http://{ip}",
            auth=auth,
            timeout=timeout if timeout is not None else settings.device_http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _get(self, path: str, params: dict[str, str] | None = None) -> httpx.Response:
        try:
            resp = self._client.get(path, params=params)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeviceError(f"{self.ip}{path}: {exc}") from exc
        return resp

    def _get_json(self, path: str) -> dict[str, Any]:
        resp = self._get(path)
        try:
            data = resp.json()
        except ValueError as exc:
            raise DeviceError(f"{self.ip}{path}: invalid JSON response") from exc
        if not isinstance(data, dict):
            raise DeviceError(f"{self.ip}{path}: expected a JSON object")
        return data

    def get_config(self) -> dict[str, Any]:
        return self._get_json("/settings")

    def get_info(self) -> dict[str, Any]:
        return self._get_json("/shelly")

    def reboot(self) -> None:
        self._get("/reboot")

    def test_connection(self) -> None:
        self._get("/shelly")

    def set_config(self, config: dict[str, Any]) -> None:
        main: dict[str, str] = {}
        for key, value in config.items():
            if value is None:
                continue
            if key == "relays":
                for index, relay in enumerate(value):
                    params = {k: _param(v) for k, v in relay.items() if v is not None}
                    if params:
                        self._get(f"/settings/relay/{index}", params)
            elif key in _GROUP_ENDPOINTS and isinstance(value, dict):
                endpoint, prefix = _GROUP_ENDPOINTS[key]
                params = {f"{prefix}{k}": _param(v) for k, v in value.items() if v is not None}
                if params:
                    self._get(endpoint, params)
            else:
                main[key] = _param(value)
        if main:
            self._get("/settings", main)
        logger.debug("Wrote settings to %s: %s", self.ip, sorted(config))
