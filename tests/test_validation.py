"""Event name and property validation."""

import pytest

from mostly_good_metrics.validation import (
    MAX_EVENT_NAME_LENGTH,
    validate_event_name,
    validate_properties,
)


@pytest.mark.parametrize("name", [
    "button_clicked",
    "a",
    "Signup2",
    "$app_opened",
    "x" * MAX_EVENT_NAME_LENGTH,
])
def test_valid_event_names(name):
    assert validate_event_name(name) is None


@pytest.mark.parametrize("name", [
    "",
    "1abc",
    "_private",
    "has space",
    "dash-name",
    "$",
    "$$double",
    "signup\n",
    "\nsignup",
    "x" * (MAX_EVENT_NAME_LENGTH + 1),
])
def test_invalid_event_names(name):
    assert validate_event_name(name) is not None


def test_empty_name_message():
    assert validate_event_name("") == "Event name cannot be empty"


def test_too_long_message():
    assert "maximum length" in validate_event_name("a" * 256)


def test_none_and_flat_properties_are_valid():
    assert validate_properties(None) is None
    assert validate_properties({}) is None
    assert validate_properties({"s": "x", "i": 1, "f": 1.5, "b": True, "n": None}) is None


def test_three_levels_of_maps_allowed():
    props = {"a": {"b": {"c": 1}}}
    assert validate_properties(props) is None


def test_fourth_level_map_rejected():
    props = {"a": {"b": {"c": {"d": 1}}}}
    assert "depth" in validate_properties(props)


def test_map_inside_list_counts_as_a_level():
    assert validate_properties({"items": [{"a": {"b": 1}}]}) is None
    assert validate_properties({"items": [{"a": {"b": {"c": 1}}}]}) is not None


def test_nested_lists_of_scalars_allowed():
    assert validate_properties({"matrix": [[1, 2], [3, 4]]}) is None


def test_non_json_values_rejected():
    assert validate_properties({"obj": object()}) is not None
    assert validate_properties({"items": [1, object()]}) is not None
    assert validate_properties({"set": {1, 2}}) is not None


def test_non_string_keys_rejected():
    assert "keys must be strings" in validate_properties({1: "x"})


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_numbers_rejected(value):
    assert "non-finite" in validate_properties({"v": value})
    assert "non-finite" in validate_properties({"outer": {"inner": value}})
    assert "non-finite" in validate_properties({"items": [1.5, value]})
    assert "non-finite" in validate_properties({"matrix": [[value]]})


def test_finite_floats_allowed():
    assert validate_properties({"price": 9.99, "ratio": -0.0, "big": 1e300}) is None
