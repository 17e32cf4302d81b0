"""Tests for input parsers and calendar helpers."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from pallet_ledger import dates, validators
from pallet_ledger.data_manager import FlatService, PalletEntry


@pytest.mark.parametrize("raw, expected", [("0", 0), (" 12 ", 12)])
def test_parse_quantity_accepts_whole_numbers(raw, expected):
    assert validators.parse_quantity(raw) == expected


@pytest.mark.parametrize("raw", ["-1", "2.5", "ten", ""])
def test_parse_quantity_rejects_malformed_input(raw):
    """Negative, fractional and non-numeric quantities are refused."""

    with pytest.raises(ValueError):
        validators.parse_quantity(raw)


def test_parse_price_keeps_decimal_precision():
    assert validators.parse_price("0.125") == Decimal("0.125")


@pytest.mark.parametrize("raw", ["-0.01", "abc", "NaN", "Infinity"])
def test_parse_price_rejects_negative_and_non_finite(raw):
    with pytest.raises(ValueError):
        validators.parse_price(raw)


def test_parse_day_and_month():
    """Days are ISO dates; months are zero-padded YYYY-MM."""

    assert validators.parse_day("2026-03-02") == date(2026, 3, 2)
    assert validators.parse_month_arg("2026-3") == "2026-03"
    with pytest.raises(ValueError):
        validators.parse_day("02/03/2026")
    with pytest.raises(ValueError):
        validators.parse_month_arg("2026-13")


def test_parse_direction_is_case_insensitive():
    assert validators.parse_direction(" OUT ") == "out"
    with pytest.raises(ValueError):
        validators.parse_direction("up")


def test_parse_pallet_entry_with_and_without_note():
    """Entries are ID=QTY with an optional :note suffix."""

    assert validators.parse_pallet_entry("plt-euro=10") == PalletEntry("plt-euro", 10)
    assert validators.parse_pallet_entry("plt-ind=0:damaged: returned") == PalletEntry(
        "plt-ind", 0, note="damaged: returned")


def test_parse_flat_service_rejects_missing_parts():
    assert validators.parse_flat_service("transport=42") == FlatService("transport", 42)
    with pytest.raises(ValueError):
        validators.parse_flat_service("transport")
    with pytest.raises(ValueError):
        validators.parse_flat_service("=3")
    with pytest.raises(ValueError):
        validators.parse_flat_service("transport=-3")


def test_month_helpers():
    """Month arithmetic handles year boundaries and month lengths."""

    assert dates.previous_month("2026-01") == "2025-12"
    assert dates.month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
    assert dates.month_of(date(2026, 3, 9)) == "2026-03"
    assert len(dates.days_in_month("2026-04")) == 30


def test_windows_and_ranges_are_inclusive():
    assert dates.window_ending(date(2026, 3, 15), 15) == (date(2026, 3, 1), date(2026, 3, 15))
    assert dates.date_range(date(2026, 3, 1), date(2026, 3, 3)) == [
        date(2026, 3, 1),
        date(2026, 3, 2),
        date(2026, 3, 3),
    ]
    assert dates.date_range(date(2026, 3, 3), date(2026, 3, 1)) == []


@pytest.mark.parametrize("raw", ["pallets-in=5", "pallets-out=5", "storage=2:monthly"])
def test_parse_flat_service_refuses_builtin_services(raw):
    """Movements and storage are never entered as flat quantities."""

    with pytest.raises(ValueError, match="not a flat service"):
        validators.parse_flat_service(raw)
