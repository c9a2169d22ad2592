"""Canonical <-> wire configuration conversion.

Gen1 devices expose a flat ``/settings`` document (``wifi_sta``, ``login``,
``name``, ``led_power_disable`` ...). The canonical document groups the same
settings by concern (``wifi``, ``auth``, ``system``, ``led`` ...). Newer
generations already speak the canonical shape and use the identity converter.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Protocol

from fleetconf.errors import ConfigConversionError

logger = logging.getLogger(__name__)


class ConfigConverter(Protocol):
    def to_wire(self, config: dict[str, Any], device_type: str | None = None) -> dict[str, Any]: ...

    def from_wire(self, wire: dict[str, Any], device_type: str | None = None) -> dict[str, Any]: ...


def _invert(value):
    return not value if isinstance(value, bool) else value


# (canonical path, wire path, canonical -> wire transform)
GEN1_FIELD_MAP: tuple[tuple[str, str, Any], ...] = (
    ("wifi.enable", "wifi_sta.enabled", None),
    ("wifi.ssid", "wifi_sta.ssid", None),
    ("wifi.password", "wifi_sta.key", None),
    ("wifi.static_ip.ip", "wifi_sta.ip", None),
    ("wifi.static_ip.netmask", "wifi_sta.mask", None),
    ("wifi.static_ip.gw", "wifi_sta.gw", None),
    ("wifi.static_ip.nameserver", "wifi_sta.dns", None),
    ("wifi.ap.enable", "wifi_ap.enabled", None),
    ("wifi.ap.ssid", "wifi_ap.ssid", None),
    ("wifi.ap.password", "wifi_ap.key", None),
    ("mqtt.enable", "mqtt.enable", None),
    ("mqtt.server", "mqtt.server", None),
    ("mqtt.user", "mqtt.user", None),
    ("mqtt.password", "mqtt.pass", None),
    ("mqtt.client_id", "mqtt.id", None),
    ("mqtt.clean_session", "mqtt.clean_session", None),
    ("mqtt.keep_alive", "mqtt.keep_alive", None),
    ("auth.enable", "login.enabled", None),
    ("auth.username", "login.username", None),
    ("auth.password", "login.password", None),
    ("cloud.enable", "cloud.enabled", None),
    ("cloud.server", "cloud.server", None),
    ("coiot.enable", "coiot.enabled", None),
    ("coiot.update_period", "coiot.update_period", None),
    ("coiot.peer", "coiot.peer", None),
    ("system.device.name", "name", None),
    ("system.device.eco_mode", "eco_mode_enabled", None),
    ("system.device.discoverable", "discoverable", None),
    ("location.tz", "timezone", None),
    ("location.lat", "lat", None),
    ("location.lng", "lng", None),
    ("power_metering.max_power", "max_power", None),
    # wire flags are "disable" switches
    ("led.power_indication", "led_power_disable", _invert),
    ("led.network_indication", "led_status_disable", _invert),
)

RELAY_FIELDS = ("name", "default_state", "auto_on", "auto_off")


def get_path(doc: dict[str, Any], path: str) -> Any:
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
        if node is None:
            return None
    return node


def set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = doc
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def _copy_relays(relays: Any, source: str) -> list[dict[str, Any]]:
    if not isinstance(relays, list):
        raise ConfigConversionError(f"{source}.relays must be a list")
    out = []
    for relay in relays:
        if not isinstance(relay, dict):
            raise ConfigConversionError(f"{source}.relays entries must be objects")
        out.append({k: copy.deepcopy(relay[k]) for k in RELAY_FIELDS if relay.get(k) is not None})
    return out


class Gen1Converter:
    generation = 1

    def to_wire(self, config: dict[str, Any], device_type: str | None = None) -> dict[str, Any]:
        if not isinstance(config, dict):
            raise ConfigConversionError("Configuration must be a JSON object")
        wire: dict[str, Any] = {}
        for canonical, wire_path, transform in GEN1_FIELD_MAP:
            value = get_path(config, canonical)
            if value is None:
                continue
            set_path(wire, wire_path, transform(value) if transform else copy.deepcopy(value))
        if config.get("relays") is not None:
            wire["relays"] = _copy_relays(config["relays"], "config")
        return wire

    def from_wire(self, wire: dict[str, Any], device_type: str | None = None) -> dict[str, Any]:
        if not isinstance(wire, dict):
            raise ConfigConversionError("Device settings must be a JSON object")
        config: dict[str, Any] = {}
        for canonical, wire_path, transform in GEN1_FIELD_MAP:
            value = get_path(wire, wire_path)
            if value is None:
                continue
            # both transforms are involutions
            set_path(config, canonical, transform(value) if transform else copy.deepcopy(value))
        if wire.get("relays") is not None:
            config["relays"] = _copy_relays(wire["relays"], "settings")
        return config


class IdentityConverter:
    generation = 2

    def to_wire(self, config: dict[str, Any], device_type: str | None = None) -> dict[str, Any]:
        if not isinstance(config, dict):
            raise ConfigConversionError("Configuration must be a JSON object")
        return copy.deepcopy(config)

    def from_wire(self, wire: dict[str, Any], device_type: str | None = None) -> dict[str, Any]:
        if not isinstance(wire, dict):
            raise ConfigConversionError("Device settings must be a JSON object")
        return copy.deepcopy(wire)


def get_converter(generation: int | None) -> ConfigConverter:
    if generation in (None, 1):
        return Gen1Converter()
    return IdentityConverter()
