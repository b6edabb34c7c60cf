from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from backend.utils import (
    compute_weights,
    day_bounds,
    is_manual_ticket_no,
    next_manual_ticket_no,
    normalize_phone_numbers,
    normalize_regime,
    normalize_sad_status,
    normalize_ticket_status,
    out_of_range_fields,
    parse_timestamp,
    parse_weight,
    to_naive_utc,
    to_number,
    validate_weights,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("12,340 kg", 12340.0),
        (" 900KG ", 900.0),
        (150, 150.0),
        ("", None),
        ("heavy", None),
        (None, None),
        ("nan", None),
        ("inf", None),
        ("-Infinity kg", None),
        (float("nan"), None),
    ],
)
def test_parse_weight(raw, expected) -> None:
    assert parse_weight(raw) == expected


def test_to_number_is_lenient() -> None:
    assert to_number("1,250.5 t") == 1250.5
    assert to_number("n/a") == 0.0
    assert to_number(None) == 0.0
    assert to_number(float("inf")) == 0.0


def test_compute_weights_fills_the_missing_value() -> None:
    assert compute_weights(gross=30000, tare=10000).net == 20000
    assert compute_weights(gross=30000, net=18000).tare == 12000
    assert compute_weights(tare="2,000", net="8,000").gross == 10000

    # supplied values are kept even when inconsistent
    weights = compute_weights(gross=100, tare=40, net=10)
    assert (weights.gross, weights.tare, weights.net) == (100, 40, 10)


def test_validate_weights() -> None:
    assert validate_weights(gross=30000, tare=10000) == {}
    assert validate_weights(gross=30000) == {
        "tare": "Invalid or missing tare",
        "net": "Invalid or missing net",
    }
    assert validate_weights(gross=100, tare=100)["gross"] == "Gross must be greater than Tare"
    assert validate_weights(gross=100, tare=40, net=10) == {"net": "Net must equal Gross minus Tare"}


def test_out_of_range_fields() -> None:
    assert out_of_range_fields(compute_weights(gross=120000, tare=15000)) == ["gross", "net"]
    assert out_of_range_fields(compute_weights(gross=30000, tare=10000)) == []


def test_manual_ticket_numbers() -> None:
    assert is_manual_ticket_no("m-0003")
    assert not is_manual_ticket_no("WB-0003")
    assert not is_manual_ticket_no(None)
    assert next_manual_ticket_no([]) == "M-0001"
    assert next_manual_ticket_no(["M-0009", None, "WB-88", "M-0012", "M-abc"]) == "M-0013"
    assert next_manual_ticket_no(["M-12345"]) == "M-12346"


def test_status_and_regime_normalization() -> None:
    assert normalize_ticket_status(" exited ") == "Exited"
    assert normalize_sad_status("in_progress") == "In Progress"
    assert normalize_sad_status("ON  HOLD") == "On Hold"
    assert normalize_regime("im4") == "IM4"
    assert normalize_regime("") is None
    with pytest.raises(ValueError):
        normalize_ticket_status("parked")
    with pytest.raises(ValueError):
        normalize_regime("ZZ1")


def test_phone_numbers_are_normalized() -> None:
    assert normalize_phone_numbers("+220 700-1234, 00220 7005555,, ") == "2207001234,2207005555"
    assert normalize_phone_numbers(None) == ""


def test_parse_timestamp_formats() -> None:
    assert parse_timestamp("2025-03-01T08:30:00Z") == datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert parse_timestamp("01/03/2025 08:30") == datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert parse_timestamp("2025-03-01T10:30:00+02:00").hour == 8
    assert parse_timestamp(datetime(2025, 3, 1)).tzinfo is timezone.utc
    assert parse_timestamp("").tzinfo is timezone.utc


def test_naive_utc_and_day_bounds() -> None:
    aware = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert to_naive_utc(aware) == datetime(2025, 3, 1, 10, 0)

    start, end = day_bounds(date(2025, 3, 1), date(2025, 3, 2))
    assert start == datetime(2025, 3, 1)
    assert end == datetime(2025, 3, 3)
    assert day_bounds(None, None) == (None, None)
