"""Configuration Diff Engine -- structural comparison of desired vs actual documents.

Documents are trees of dicts, lists and scalars. The walk is driven by the
expected document: a ``None`` value there means "not specified" and is never
compared, whatever the device reports.

Rules are scanned in order and the FIRST matching rule wins. Put specific
patterns before wildcard ones.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from fleetconf.schemas.drift import CompareResult, ConfigDifference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldCompareRule:
    path: str
    skip_compare: bool = False
    tolerance: float = 0.0
    severity: str | None = None
    category: str | None = None
    normalize: Callable[[Any], Any] | None = None


DEFAULT_COMPARE_RULES: tuple[FieldCompareRule, ...] = (
    # read-only fields reported by the device
    FieldCompareRule("system.mac", skip_compare=True),
    FieldCompareRule("system.firmware", skip_compare=True),
    FieldCompareRule("system.fw_id", skip_compare=True),
    # write-only secrets, devices never echo them back
    FieldCompareRule("wifi.password", skip_compare=True),
    FieldCompareRule("wifi.ap.password", skip_compare=True),
    FieldCompareRule("mqtt.password", skip_compare=True),
    FieldCompareRule("auth.password", skip_compare=True),
    # roughly ten metres
    FieldCompareRule("location.latitude", tolerance=0.0001, category="system"),
    FieldCompareRule("location.longitude", tolerance=0.0001, category="system"),
    FieldCompareRule("location.lat", tolerance=0.0001, category="system"),
    FieldCompareRule("location.lng", tolerance=0.0001, category="system"),
    FieldCompareRule("system.device.name", severity="warning", category="metadata"),
    FieldCompareRule("led.*", severity="warning", category="device"),
)

_CATEGORY_PREFIXES = (
    ("wifi", "network"),
    ("mqtt", "network"),
    ("cloud", "network"),
    ("coiot", "network"),
    ("auth", "security"),
    ("system", "system"),
    ("location", "system"),
)


def path_matches(path: str, pattern: str) -> bool:
    """Exact match, or same segment count with ``*`` matching any one segment."""
    if path == pattern:
        return True
    path_parts = path.split(".")
    pattern_parts = pattern.split(".")
    if len(path_parts) != len(pattern_parts):
        return False
    return all(pp == "*" or pp == seg for pp, seg in zip(pattern_parts, path_parts))


def infer_category(path: str) -> str:
    lowered = path.lower()
    for prefix, category in _CATEGORY_PREFIXES:
        if lowered.startswith(prefix):
            return category
    return "device"


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class ConfigComparator:
    def __init__(self, rules: Sequence[FieldCompareRule] | None = None):
        self.rules = tuple(DEFAULT_COMPARE_RULES if rules is None else rules)

    def compare(self, expected: Any, actual: Any) -> CompareResult:
        differences: list[ConfigDifference] = []
        if expected is None and actual is None:
            return CompareResult(match=True, differences=differences)
        if expected is None or actual is None:
            differences.append(
                ConfigDifference(
                    path="",
                    expected=expected,
                    actual=actual,
                    type="modified",
                    severity="critical",
                    category="system",
                    description="Configuration missing on one side",
                )
            )
            return CompareResult(match=False, differences=differences)

        self._compare_value(expected, actual, "", None, differences)
        return CompareResult(match=not differences, differences=differences)

    def find_rule(self, path: str) -> FieldCompareRule | None:
        for rule in self.rules:
            if path_matches(path, rule.path):
                return rule
        return None

    def _compare_value(self, expected, actual, path, rule, out) -> None:
        if expected is None:
            return
        if isinstance(expected, dict):
            if not isinstance(actual, dict):
                self._add(out, path, expected, actual, "modified", rule)
                return
            self._compare_mapping(expected, actual, path, out)
        elif isinstance(expected, list | tuple):
            if not isinstance(actual, list | tuple):
                self._add(out, path, expected, actual, "modified", rule)
                return
            self._compare_sequence(expected, actual, path, rule, out)
        elif not self._values_equal(expected, actual, rule):
            self._add(out, path, expected, actual, "modified", rule)

    def _compare_mapping(self, expected: dict, actual: dict, prefix: str, out) -> None:
        for key, value in expected.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            rule = self.find_rule(path)
            if rule is not None and rule.skip_compare:
                continue
            if value is None:
                continue
            if actual.get(key) is None:
                self._add(out, path, value, None, "removed", rule)
                continue
            self._compare_value(value, actual[key], path, rule, out)

    def _compare_sequence(self, expected, actual, path, rule, out) -> None:
        shared = min(len(expected), len(actual))
        for i in range(shared):
            elem_path = f"{path}.{i}" if path else str(i)
            elem_rule = self.find_rule(elem_path) or rule
            if elem_rule is not None and elem_rule.skip_compare:
                continue
            self._compare_value(expected[i], actual[i], elem_path, elem_rule, out)
        # Extra actual elements are not reported.
        for i in range(len(actual), len(expected)):
            if expected[i] is None:
                continue
            elem_path = f"{path}.{i}" if path else str(i)
            self._add(out, elem_path, expected[i], None, "removed", rule)

    def _values_equal(self, expected, actual, rule: FieldCompareRule | None) -> bool:
        if rule is not None and rule.normalize is not None:
            try:
                expected = rule.normalize(expected)
                actual = rule.normalize(actual)
            except Exception:
                logger.debug("Normalizer for %s failed; comparing raw values", rule.path, exc_info=True)

        if rule is not None and rule.tolerance > 0 and _is_number(expected) and _is_number(actual):
            gap = abs(expected - actual)
            return gap <= rule.tolerance or math.isclose(gap, rule.tolerance)

        if isinstance(expected, str):
            return isinstance(actual, str) and expected == actual

        if isinstance(expected, bool) != isinstance(actual, bool):
            return False
        return expected == actual

    @staticmethod
    def _add(out, path, expected, actual, diff_type, rule) -> None:
        severity = "critical"
        category = None
        if rule is not None:
            severity = rule.severity or severity
            category = rule.category
        out.append(
            ConfigDifference(
                path=path,
                expected=expected,
                actual=actual,
                type=diff_type,
                severity=severity,
                category=category or infer_category(path),
                description=f"Value mismatch at {path}",
            )
        )
