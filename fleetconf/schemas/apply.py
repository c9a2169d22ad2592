from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fleetconf.schemas.drift import ConfigDifference


@dataclass(frozen=True)
class ApplyFailure:
    path: str
    value: Any
    error: str


@dataclass(frozen=True)
class ApplyResult:
    success: bool
    settings_count: int
    applied_count: int
    failed_count: int
    failures: tuple[ApplyFailure, ...] = ()
    requires_reboot: bool = False
    warnings: tuple[str, ...] = ()
    duration_ms: int = 0


@dataclass(frozen=True)
class VerifyResult:
    match: bool
    differences: list[ConfigDifference] = field(default_factory=list)
    imported: dict[str, Any] | None = None
    desired: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class ApplyVerifyResult:
    apply_result: ApplyResult
    verify_result: VerifyResult | None
    config_applied: bool
    duration_ms: int = 0
