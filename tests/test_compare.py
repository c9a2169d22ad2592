"""Tests for the configuration diff engine."""

from fleetconf.services.compare import (
    ConfigComparator,
    FieldCompareRule,
    infer_category,
    path_matches,
)


def _paths(result):
    return [d.path for d in result.differences]


def test_identical_documents_match():
    doc = {"wifi": {"ssid": "home", "enable": True}, "relays": [{"name": "pump"}]}
    result = ConfigComparator().compare(doc, {"wifi": {"ssid": "home", "enable": True}, "relays": [{"name": "pump"}]})
    assert result.match
    assert result.differences == []


def test_both_none_match_and_one_side_none_is_single_difference():
    comparator = ConfigComparator()
    assert comparator.compare(None, None).match

    result = comparator.compare({"a": 1}, None)
    assert not result.match
    assert len(result.differences) == 1
    assert result.differences[0].path == ""


def test_modified_value_reports_path_and_values():
    result = ConfigComparator().compare({"wifi": {"ssid": "home"}}, {"wifi": {"ssid": "guest"}})
    assert not result.match
    diff = result.differences[0]
    assert diff.path == "wifi.ssid"
    assert diff.expected == "home"
    assert diff.actual == "guest"
    assert diff.type == "modified"
    assert diff.category == "network"
    assert diff.description == "Value mismatch at wifi.ssid"


def test_missing_actual_key_is_removed():
    result = ConfigComparator().compare({"mqtt": {"server": "broker:1883"}}, {"mqtt": {}})
    assert _paths(result) == ["mqtt.server"]
    assert result.differences[0].type == "removed"
    assert result.differences[0].actual is None


def test_none_in_expected_means_not_specified():
    result = ConfigComparator().compare({"wifi": {"ssid": None}, "name": "x"}, {"wifi": {"ssid": "other"}, "name": "x"})
    assert result.match


def test_extra_actual_keys_are_ignored():
    result = ConfigComparator().compare({"a": 1}, {"a": 1, "b": 2})
    assert result.match


def test_skip_rules_hide_read_only_and_secret_fields():
    expected = {"system": {"mac": "AA", "firmware": "1.0"}, "wifi": {"password": "secret"}}
    actual = {"system": {"mac": "BB", "firmware": "2.0"}, "wifi": {}}
    assert ConfigComparator().compare(expected, actual).match


def test_numeric_tolerance_for_location():
    comparator = ConfigComparator()
    assert comparator.compare({"location": {"lat": 42.00001}}, {"location": {"lat": 42.00005}}).match
    result = comparator.compare({"location": {"lat": 42.0}}, {"location": {"lat": 42.01}})
    assert _paths(result) == ["location.lat"]
    assert result.differences[0].category == "system"


def test_tolerance_boundary_is_inclusive():
    comparator = ConfigComparator()
    assert comparator.compare({"location": {"lat": 42.0}}, {"location": {"lat": 42.0001}}).match
    assert not comparator.compare({"location": {"lat": 42.0}}, {"location": {"lat": 42.00011}}).match

    loose = ConfigComparator([FieldCompareRule("power", tolerance=0.5)])
    assert loose.compare({"power": 1.0}, {"power": 1.5}).match
    assert _paths(loose.compare({"power": 1.0}, {"power": 1.5000001})) == ["power"]


def test_bool_and_int_are_not_equal():
    result = ConfigComparator().compare({"flag": True}, {"flag": 1})
    assert _paths(result) == ["flag"]


def test_string_does_not_match_number():
    result = ConfigComparator().compare({"port": "1883"}, {"port": 1883})
    assert _paths(result) == ["port"]


def test_sequences_compare_elementwise():
    expected = {"relays": [{"name": "a"}, {"name": "b"}]}
    actual = {"relays": [{"name": "a"}, {"name": "c"}]}
    result = ConfigComparator().compare(expected, actual)
    assert _paths(result) == ["relays.1.name"]


def test_short_actual_sequence_reports_removed_elements():
    result = ConfigComparator().compare({"relays": [{"name": "a"}, {"name": "b"}]}, {"relays": [{"name": "a"}]})
    assert _paths(result) == ["relays.1"]
    assert result.differences[0].type == "removed"


def test_extra_actual_sequence_elements_are_ignored():
    result = ConfigComparator().compare({"relays": [{"name": "a"}]}, {"relays": [{"name": "a"}, {"name": "b"}]})
    assert result.match


def test_type_mismatch_dict_vs_scalar():
    result = ConfigComparator().compare({"wifi": {"ssid": "x"}}, {"wifi": "off"})
    assert _paths(result) == ["wifi"]
    assert result.differences[0].type == "modified"


def test_wildcard_rule_sets_severity_and_category():
    result = ConfigComparator().compare({"led": {"power_indication": True}}, {"led": {"power_indication": False}})
    diff = result.differences[0]
    assert diff.severity == "warning"
    assert diff.category == "device"


def test_default_severity_is_critical():
    result = ConfigComparator().compare({"auth": {"enable": True}}, {"auth": {"enable": False}})
    assert result.differences[0].severity == "critical"
    assert result.error_count == 1
    assert result.has_errors


def test_first_matching_rule_wins():
    rules = [
        FieldCompareRule("wifi.ssid", severity="info"),
        FieldCompareRule("wifi.*", skip_compare=True),
    ]
    result = ConfigComparator(rules).compare({"wifi": {"ssid": "a", "key": "b"}}, {"wifi": {"ssid": "z", "key": "y"}})
    assert _paths(result) == ["wifi.ssid"]
    assert result.differences[0].severity == "info"


def test_normalizer_is_applied_before_comparison():
    rules = [FieldCompareRule("name", normalize=lambda v: v.strip().lower())]
    assert ConfigComparator(rules).compare({"name": "Kitchen"}, {"name": " kitchen "}).match


def test_failing_normalizer_falls_back_to_raw_values():
    def boom(_value):
        raise RuntimeError("bad normalizer")

    rules = [FieldCompareRule("name", normalize=boom)]
    comparator = ConfigComparator(rules)
    assert comparator.compare({"name": "a"}, {"name": "a"}).match
    assert not comparator.compare({"name": "a"}, {"name": "b"}).match


def test_path_matches():
    assert path_matches("led.power", "led.*")
    assert path_matches("system.mac", "system.mac")
    assert not path_matches("led.power.extra", "led.*")
    assert not path_matches("wifi.ssid", "led.*")


def test_infer_category():
    assert infer_category("wifi.ssid") == "network"
    assert infer_category("mqtt.server") == "network"
    assert infer_category("auth.enable") == "security"
    assert infer_category("system.device.name") == "system"
    assert infer_category("relays.0.name") == "device"
