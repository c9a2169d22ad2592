"""Tests for canonical <-> wire conversion."""

import pytest

from fleetconf.errors import ConfigConversionError
from fleetconf.services.converter import (
    Gen1Converter,
    IdentityConverter,
    get_converter,
    get_path,
    set_path,
)

CANONICAL = {
    "wifi": {"enable": True, "ssid": "home", "password": "pw", "ap": {"enable": False}},
    "mqtt": {"enable": True, "server": "broker:1883", "password": "mq", "client_id": "dev1"},
    "auth": {"enable": True, "username": "admin"},
    "system": {"device": {"name": "Kitchen"}},
    "location": {"tz": "Europe/Berlin", "lat": 52.5},
    "led": {"power_indication": True, "network_indication": False},
    "relays": [{"name": "pump", "default_state": "off", "ignored": 1}],
}


def test_gen1_to_wire_maps_fields():
    wire = Gen1Converter().to_wire(CANONICAL)
    assert wire["wifi_sta"] == {"enabled": True, "ssid": "home", "key": "pw"}
    assert wire["wifi_ap"] == {"enabled": False}
    assert wire["mqtt"]["pass"] == "mq"
    assert wire["mqtt"]["id"] == "dev1"
    assert wire["login"] == {"enabled": True, "username": "admin"}
    assert wire["name"] == "Kitchen"
    assert wire["timezone"] == "Europe/Berlin"
    assert wire["lat"] == 52.5


def test_gen1_led_flags_are_inverted():
    wire = Gen1Converter().to_wire(CANONICAL)
    assert wire["led_power_disable"] is False
    assert wire["led_status_disable"] is True


def test_gen1_relays_keep_known_fields_only():
    wire = Gen1Converter().to_wire(CANONICAL)
    assert wire["relays"] == [{"name": "pump", "default_state": "off"}]


def test_gen1_from_wire_restores_canonical_shape():
    wire = {
        "wifi_sta": {"enabled": True, "ssid": "home"},
        "login": {"enabled": False},
        "name": "Hall",
        "led_power_disable": True,
        "mac": "AABBCC",
    }
    config = Gen1Converter().from_wire(wire)
    assert config == {
        "wifi": {"enable": True, "ssid": "home"},
        "auth": {"enable": False},
        "system": {"device": {"name": "Hall"}},
        "led": {"power_indication": False},
    }


def test_gen1_skips_unset_values():
    assert Gen1Converter().to_wire({"wifi": {"ssid": None}}) == {}


def test_non_dict_input_raises():
    with pytest.raises(ConfigConversionError):
        Gen1Converter().to_wire(["not", "a", "dict"])
    with pytest.raises(ConfigConversionError):
        Gen1Converter().from_wire("nope")
    with pytest.raises(ConfigConversionError):
        Gen1Converter().to_wire({"relays": "pump"})
    with pytest.raises(ConfigConversionError):
        IdentityConverter().from_wire(None)


def test_identity_converter_copies():
    doc = {"a": {"b": 1}}
    out = IdentityConverter().to_wire(doc)
    assert out == doc
    out["a"]["b"] = 2
    assert doc["a"]["b"] == 1


def test_get_converter_by_generation():
    assert isinstance(get_converter(1), Gen1Converter)
    assert isinstance(get_converter(None), Gen1Converter)
    assert isinstance(get_converter(2), IdentityConverter)


def test_path_helpers():
    doc = {}
    set_path(doc, "a.b.c", 3)
    assert doc == {"a": {"b": {"c": 3}}}
    assert get_path(doc, "a.b.c") == 3
    assert get_path(doc, "a.x.c") is None
    assert get_path({"a": 5}, "a.b") is None
