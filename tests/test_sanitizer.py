"""Unit tests for bad-data filtering."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from models.records import Measurement
from rules.loader import load_rules
from services.sanitizer import Sanitizer

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _measurement(**overrides) -> Measurement:
    base = Measurement(
        id=1,
        user_id=1,
        device_id=None,
        unit="cpm",
        value=40.0,
        latitude=37.42,
        longitude=141.03,
        captured_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    return replace(base, **overrides)


@pytest.fixture()
def sanitizer() -> Sanitizer:
    return Sanitizer(load_rules(), clock=lambda: NOW)


def test_accepts_plain_bgeigie_reading(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement()) is None


def test_cpm_floor_is_inclusive(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement(value=5.0)) == "cpm out of range"
    assert sanitizer.accepts(_measurement(value=10.0))


def test_cpm_ceiling_depends_on_device(sanitizer: Sanitizer) -> None:
    assert sanitizer.accepts(_measurement(value=350000.0))
    assert not sanitizer.accepts(_measurement(value=350000.1))
    assert sanitizer.accepts(_measurement(device_id=24, value=30000.0))
    assert sanitizer.rejection_reason(_measurement(device_id=5, value=30001.0)) == "cpm out of range"


def test_devices_above_known_range_are_rejected(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement(device_id=25, value=40.0)) == "unknown device"


def test_dose_rate_units_and_alias(sanitizer: Sanitizer) -> None:
    assert sanitizer.accepts(_measurement(unit="microsievert", value=0.02))
    assert sanitizer.accepts(_measurement(unit="usv", value=5.0))
    assert sanitizer.rejection_reason(_measurement(unit="microsievert", value=0.01)) == (
        "dose rate out of range"
    )
    assert sanitizer.rejection_reason(_measurement(unit="bq", value=1.0)) == "unsupported unit"


def test_excluded_ids_and_ranges(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement(id=13194822)) == "excluded id"
    assert sanitizer.rejection_reason(_measurement(id=23181608)) == "excluded id"
    assert sanitizer.rejection_reason(_measurement(id=23182462)) == "excluded id"
    assert sanitizer.accepts(_measurement(id=23182463))


def test_banned_user_is_dropped_everywhere(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement(user_id=345)) == "banned user"


def test_capture_time_window(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement(captured_at=None)) == "missing captured_at"
    assert not sanitizer.accepts(_measurement(captured_at=datetime(2011, 2, 28, tzinfo=timezone.utc)))
    assert sanitizer.accepts(_measurement(captured_at=datetime(2011, 3, 1, tzinfo=timezone.utc)))
    assert sanitizer.accepts(_measurement(captured_at=NOW + timedelta(hours=47)))
    assert sanitizer.rejection_reason(_measurement(captured_at=NOW + timedelta(hours=49))) == (
        "captured_at out of range"
    )


def test_naive_capture_time_is_treated_as_utc(sanitizer: Sanitizer) -> None:
    assert sanitizer.accepts(_measurement(captured_at=datetime(2020, 5, 5, 10, 0)))


def test_missing_value_or_location(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement(value=None)) == "missing value"
    assert sanitizer.rejection_reason(_measurement(latitude=None)) == "missing location"
    assert sanitizer.rejection_reason(_measurement(longitude=None)) == "missing location"


def test_coordinate_bounds(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(_measurement(latitude=0.0, longitude=0.0)) == "zero location"
    assert sanitizer.accepts(_measurement(latitude=0.0, longitude=10.0))
    assert sanitizer.accepts(_measurement(latitude=85.05))
    assert sanitizer.rejection_reason(_measurement(latitude=85.06)) == "latitude out of range"
    assert sanitizer.rejection_reason(_measurement(longitude=-180.5)) == "longitude out of range"


def test_tokyo_geofence_for_test_users(sanitizer: Sanitizer) -> None:
    in_tokyo = {"latitude": 35.6, "longitude": 139.7}

    assert sanitizer.rejection_reason(_measurement(user_id=9, value=40.0, **in_tokyo)) == (
        "geofence tokyo_test_user_9"
    )
    assert sanitizer.rejection_reason(_measurement(user_id=442, value=35.0, **in_tokyo)) == (
        "geofence tokyo_test_user_442"
    )
    assert sanitizer.accepts(_measurement(user_id=9, value=34.9, **in_tokyo))
    assert sanitizer.accepts(_measurement(user_id=9, value=40.0))
    assert sanitizer.accepts(_measurement(user_id=10, value=40.0, **in_tokyo))


def test_australia_geofence_for_flight_user(sanitizer: Sanitizer) -> None:
    assert sanitizer.rejection_reason(
        _measurement(user_id=366, value=100.0, latitude=-25.0, longitude=135.0)
    ) == "geofence australia_flight_366"
    assert sanitizer.accepts(_measurement(user_id=366, value=100.0, latitude=-25.0, longitude=110.0))
    assert sanitizer.accepts(_measurement(user_id=366, value=20.0, latitude=-25.0, longitude=135.0))


def test_unmapped_device_is_kept_unless_configured() -> None:
    rules = load_rules()
    reading = _measurement(device_id=8, value=40.0)

    assert Sanitizer(rules, clock=lambda: NOW).accepts(reading)

    strict = Sanitizer(rules.model_copy(update={"reject_unmapped_devices": True}), clock=lambda: NOW)
    assert strict.rejection_reason(reading) == "unmapped device"
    assert strict.accepts(_measurement(device_id=21, value=40.0))


def test_filter_drops_silently_and_tallies_reasons(sanitizer: Sanitizer) -> None:
    rows = [
        _measurement(id=1),
        _measurement(id=2, value=5.0),
        _measurement(id=3, user_id=345),
        _measurement(id=4, value=6.0),
    ]

    kept = list(sanitizer.filter(rows))

    assert [row.id for row in kept] == [1]
    assert sanitizer.rejections == {"cpm out of range": 2, "banned user": 1}
