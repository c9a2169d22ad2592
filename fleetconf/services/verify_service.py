from __future__ import annotations

import logging
import threading
import time
from typing import Any

from fleetconf.config import settings
from fleetconf.errors import DeviceError
from fleetconf.schemas.apply import ApplyVerifyResult, VerifyResult
from fleetconf.services.apply_service import ConfigApplier
from fleetconf.services.compare import ConfigComparator
from fleetconf.services.converter import ConfigConverter, Gen1Converter
from fleetconf.services.device_client import DeviceClient

logger = logging.getLogger(__name__)


class ConfigVerifier:
    def __init__(
        self,
        converter: ConfigConverter | None = None,
        applier: ConfigApplier | None = None,
        comparator: ConfigComparator | None = None,
        settle_seconds: float = 0.5,
    ):
        self.converter = converter or Gen1Converter()
        self.applier = applier or ConfigApplier(self.converter)
        self.comparator = comparator or ConfigComparator()
        self.settle_seconds = settle_seconds

    def import_config(self, client: DeviceClient, device_type: str | None = None) -> dict[str, Any]:
        """Read the device settings and return them as a canonical document."""
        try:
            wire = client.get_config()
        except DeviceError:
            raise
        except Exception as exc:
            raise DeviceError(f"Failed to get device config from {client.ip}: {exc}") from exc
        return self.converter.from_wire(wire, device_type)

    def verify_config(
        self, client: DeviceClient, desired: dict[str, Any], device_type: str | None = None
    ) -> VerifyResult:
        start = time.monotonic()
        imported = self.import_config(client, device_type)
        compared = self.comparator.compare(desired, imported)
        result = VerifyResult(
            match=compared.match,
            differences=compared.differences,
            imported=imported,
            desired=desired,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info(
            "Configuration verification for %s: match=%s differences=%d",
            client.ip,
            result.match,
            len(result.differences),
        )
        return result

    def apply_and_verify(
        self,
        client: DeviceClient,
        config: dict[str, Any],
        device_type: str | None = None,
        cancel: threading.Event | None = None,
    ) -> ApplyVerifyResult:
        start = time.monotonic()
        apply_result = self.applier.apply_config(client, config, device_type)
        if not apply_result.success:
            logger.info("Apply to %s failed for %d settings; skipping verification", client.ip, apply_result.failed_count)
            return ApplyVerifyResult(
                apply_result=apply_result,
                verify_result=None,
                config_applied=False,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        if apply_result.requires_reboot:
            logger.info("Rebooting %s before verification", client.ip)
            self.applier.reboot_and_wait(client, settings.reboot_timeout_seconds, cancel)

        if self.settle_seconds:
            time.sleep(self.settle_seconds)

        verify_result = self.verify_config(client, config, device_type)
        return ApplyVerifyResult(
            apply_result=apply_result,
            verify_result=verify_result,
            config_applied=verify_result.match,
            duration_ms=int((time.monotonic() - start) * 1000),
        )


def format_diff_report(result: VerifyResult) -> str:
    if result.match:
        return "Configuration matches device - no differences found."
    lines = [f"Found {len(result.differences)} difference(s):"]
    for diff in result.differences:
        lines.append("")
        lines.append(f"[{diff.severity}] {diff.path}")
        lines.append(f"  Expected: {diff.expected}")
        lines.append(f"  Actual:   {diff.actual}")
        if diff.description:
            lines.append(f"  Note: {diff.description}")
    return "\n".join(lines)

