"""Config Applier -- push a canonical configuration to one device, group by group.

Each settings group is written with its own ``set_config`` call. A failing
group is recorded in the result and the remaining groups are still attempted,
so callers must read ``ApplyResult.success``/``failures`` rather than rely on
an exception.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any

from fleetconf.config import settings
from fleetconf.errors import (
    ConfigConversionError,
    DeviceError,
    RebootCancelledError,
    RebootTimeoutError,
)
from fleetconf.metrics import CONFIG_APPLY_TOTAL
from fleetconf.schemas.apply import ApplyFailure, ApplyResult
from fleetconf.services.converter import ConfigConverter, Gen1Converter
from fleetconf.services.device_client import DeviceClient

logger = logging.getLogger(__name__)

MAIN_SETTINGS_KEYS = (
    "name",
    "timezone",
    "lat",
    "lng",
    "eco_mode_enabled",
    "discoverable",
    "max_power",
    "led_power_disable",
    "led_status_disable",
)

SECTION_GROUPS = ("wifi_sta", "wifi_ap", "mqtt", "cloud", "coiot")

REBOOT_SENSITIVE_SETTINGS = (
    ("wifi_sta", "ssid"),
    ("wifi_sta", "key"),
    ("wifi_sta", "enabled"),
    ("login", "enabled"),
    ("login", "username"),
    ("login", "password"),
)


def count_settings(wire: dict[str, Any]) -> int:
    count = 0
    for value in wire.values():
        if isinstance(value, dict | list):
            count += len(value)
        else:
            count += 1
    return count


def detect_reboot_required(current: dict[str, Any], new: dict[str, Any], desired: dict[str, Any]) -> bool:
    for section, field in REBOOT_SENSITIVE_SETTINGS:
        old_section = current.get(section)
        new_section = new.get(section)
        if not isinstance(old_section, dict) or not isinstance(new_section, dict):
            continue
        new_value = new_section.get(field)
        if new_value is not None and str(old_section.get(field)) != str(new_value):
            return True
    auth = desired.get("auth")
    return isinstance(auth, dict) and bool(auth.get("enable"))


class ConfigApplier:
    def __init__(
        self,
        converter: ConfigConverter | None = None,
        reboot_grace_seconds: float | None = None,
        reboot_poll_interval_seconds: float | None = None,
    ):
        self.converter = converter or Gen1Converter()
        self.reboot_grace_seconds = (
            settings.reboot_grace_seconds if reboot_grace_seconds is None else reboot_grace_seconds
        )
        self.reboot_poll_interval_seconds = (
            settings.reboot_poll_interval_seconds
            if reboot_poll_interval_seconds is None
            else reboot_poll_interval_seconds
        )

    def apply_config(
        self, client: DeviceClient, config: dict[str, Any], device_type: str | None = None
    ) -> ApplyResult:
        start = time.monotonic()

        current: dict[str, Any] | None = None
        try:
            current = copy.deepcopy(client.get_config())
        except Exception:
            logger.warning("Could not read current config from %s for comparison", client.ip, exc_info=True)

        try:
            wire = self.converter.to_wire(config, device_type)
        except ConfigConversionError:
            CONFIG_APPLY_TOTAL.labels(result="conversion_error").inc()
            raise
        except Exception as exc:
            CONFIG_APPLY_TOTAL.labels(result="conversion_error").inc()
            raise ConfigConversionError(f"Failed to convert config to wire format: {exc}") from exc

        failures: list[ApplyFailure] = []
        applied = 0
        for group, payload, per_key in self._groups(wire):
            try:
                client.set_config(payload)
            except Exception as exc:
                logger.warning("Failed to apply %s settings to %s: %s", group, client.ip, exc)
                if per_key:
                    failures.extend(ApplyFailure(path=k, value=v, error=str(exc)) for k, v in payload.items())
                else:
                    failures.append(ApplyFailure(path=group, value=payload[group], error=str(exc)))
                continue
            applied += len(payload) if per_key else 1

        warnings: list[str] = []
        requires_reboot = False
        if current is not None:
            requires_reboot = detect_reboot_required(current, wire, config)
            if requires_reboot:
                warnings.append("Device reboot required for some settings to take effect")

        result = ApplyResult(
            success=not failures,
            settings_count=count_settings(wire),
            applied_count=applied,
            failed_count=len(failures),
            failures=tuple(failures),
            requires_reboot=requires_reboot,
            warnings=tuple(warnings),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        CONFIG_APPLY_TOTAL.labels(result="success" if result.success else "partial").inc()
        logger.info(
            "Configuration apply completed for %s (%s): settings=%d applied=%d failed=%d reboot=%s in %dms",
            client.ip,
            device_type,
            result.settings_count,
            result.applied_count,
            result.failed_count,
            result.requires_reboot,
            result.duration_ms,
        )
        return result

    @staticmethod
    def _groups(wire: dict[str, Any]):
        """Yield (group name, payload, per-key accounting) for every non-empty group."""
        main = {k: wire[k] for k in MAIN_SETTINGS_KEYS if k in wire}
        if main:
            yield "main", main, True
        for section in SECTION_GROUPS:
            value = wire.get(section)
            if isinstance(value, dict) and value:
                yield section, {section: value}, False
        relays = wire.get("relays")
        if isinstance(relays, list) and relays:
            yield "relays", {"relays": relays}, False

    def reboot_and_wait(
        self,
        client: DeviceClient,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        """Reboot the device and block until it answers again.

        Raises ``RebootTimeoutError`` when the device is not back within
        ``timeout`` seconds, ``RebootCancelledError`` as soon as ``cancel`` is set.
        """
        timeout = settings.reboot_timeout_seconds if timeout is None else timeout
        cancel = cancel or threading.Event()
        started = time.monotonic()
        deadline = started + timeout

        logger.info("Rebooting device %s (timeout %.0fs)", client.ip, timeout)
        try:
            client.reboot()
        except Exception as exc:
            raise DeviceError(f"Failed to send reboot command to {client.ip}: {exc}") from exc

        if cancel.wait(min(self.reboot_grace_seconds, max(0.0, deadline - time.monotonic()))):
            raise RebootCancelledError(f"Reboot wait for {client.ip} cancelled")

        while True:
            try:
                client.test_connection()
            except Exception:
                logger.debug("Device %s not reachable yet", client.ip)
            else:
                logger.info("Device %s back online after reboot", client.ip)
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if cancel.wait(min(self.reboot_poll_interval_seconds, remaining)):
                raise RebootCancelledError(f"Reboot wait for {client.ip} cancelled")

        elapsed = time.monotonic() - started
        raise RebootTimeoutError(f"Device {client.ip} did not come back online within {elapsed:.1f}s")
