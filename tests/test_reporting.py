"""Tests for the monthly reporting views."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from builders import pallets_in, record_day, set_price
from pallet_ledger import constants, core_logic, data_manager, reporting

IN = constants.ServiceId.PALLETS_IN.value
OUT = constants.ServiceId.PALLETS_OUT.value


@pytest.fixture
def march_context(seeded_context):
    """Seeded context with March activity for ctrA and ctrB in wh1."""

    core_logic.set_service_enabled(seeded_context, "ctrA", "transport")
    set_price(seeded_context, IN, "1.00")
    set_price(seeded_context, "transport", "2.00")
    set_price(seeded_context, IN, "1.00", contractor_id="ctrB")
    record_day(seeded_context, date(2026, 3, 2), pallets_in(("plt-euro", 10)))
    record_day(seeded_context, date(2026, 3, 5), data_manager.FlatService("transport", 5))
    record_day(seeded_context, date(2026, 3, 9), pallets_in(("plt-ind", 5)), contractor_id="ctrB")
    return seeded_context


def test_monthly_summary_lists_enabled_services(march_context):
    """Each enabled service reports its quantity and revenue for the month; unknown ids are skipped."""

    summaries = reporting.monthly_summary(march_context, "2026-03", ["ctrA", "ghost"], "wh1")

    assert [summary.contractor_id for summary in summaries] == ["ctrA"]
    summary = summaries[0]
    assert summary.name == "Alpha Foods"
    assert [(s.service_id, s.quantity, s.revenue) for s in summary.services] == [
        (IN, 10, Decimal("10.00")),
        (OUT, 0, Decimal("0.00")),
        ("transport", 5, Decimal("10.00")),
    ]
    assert summary.breakdown.movement == Decimal("10.00")
    assert summary.breakdown.additional == Decimal("10.00")
    assert summary.breakdown.total == Decimal("20.00")


def test_daily_series_covers_every_day_of_the_month(march_context):
    """The chart series has one point per day, summed over the selected contractors."""

    series = reporting.daily_series(march_context, "2026-03", ["ctrA", "ctrB"])
    by_day = {point.day: point.breakdown.total for point in series}

    assert len(series) == 31
    assert series[0].day == date(2026, 3, 1)
    assert by_day[date(2026, 3, 2)] == Decimal("10.00")
    assert by_day[date(2026, 3, 5)] == Decimal("10.00")
    assert by_day[date(2026, 3, 9)] == Decimal("5.00")
    assert by_day[date(2026, 3, 10)] == Decimal("0.00")


def test_top_by_revenue_orders_and_limits(march_context):
    """Contractors are ranked by monthly total and cut at the limit."""

    rankings = reporting.top_by_revenue(march_context, "2026-03")
    top_one = reporting.top_by_revenue(march_context, "2026-03", limit=1)

    assert [(r.contractor_id, r.breakdown.total) for r in rankings] == [
        ("ctrA", Decimal("20.00")),
        ("ctrB", Decimal("5.00")),
    ]
    assert [r.contractor_id for r in top_one] == ["ctrA"]


def test_top_by_growth_ranks_new_contractors_first(seeded_context):
    """New contractors lead by current revenue, then growth percentages follow highest first."""

    for contractor_id, name in (("ctrC", "Gamma Retail"), ("ctrD", "Delta Tools"), ("ctrE", "Epsilon Drinks")):
        core_logic.add_contractor(seeded_context, contractor_id=contractor_id, name=name)
    for contractor_id in ("ctrA", "ctrB", "ctrC", "ctrE"):
        set_price(seeded_context, IN, "1.00", contractor_id=contractor_id)

    record_day(seeded_context, date(2026, 2, 10), pallets_in(("plt-euro", 10)), contractor_id="ctrA")
    record_day(seeded_context, date(2026, 3, 10), pallets_in(("plt-euro", 20)), contractor_id="ctrA")
    record_day(seeded_context, date(2026, 3, 10), pallets_in(("plt-euro", 5)), contractor_id="ctrB")
    record_day(seeded_context, date(2026, 2, 10), pallets_in(("plt-euro", 10)), contractor_id="ctrC")
    record_day(seeded_context, date(2026, 3, 10), pallets_in(("plt-euro", 5)), contractor_id="ctrC")
    record_day(seeded_context, date(2026, 3, 10), pallets_in(("plt-euro", 8)), contractor_id="ctrE")

    rankings = reporting.top_by_growth(seeded_context, "2026-03", limit=10)

    assert [r.contractor_id for r in rankings] == ["ctrE", "ctrB", "ctrA", "ctrD", "ctrC"]
    by_id = {r.contractor_id: r for r in rankings}
    assert by_id["ctrE"].is_new is True
    assert by_id["ctrE"].growth_percent is None
    assert by_id["ctrA"].growth_percent == 100.0
    assert by_id["ctrA"].previous == Decimal("10.00")
    assert by_id["ctrC"].growth_percent == -50.0
    assert by_id["ctrD"].growth_percent == 0.0
    assert by_id["ctrD"].is_new is False


def test_top_rankings_include_inactive_contractors(seeded_context):
    """Historical revenue of an inactive contractor still ranks."""

    core_logic.add_contractor(seeded_context, contractor_id="ctrX", name="Former Client", is_active=False)
    set_price(seeded_context, IN, "3.00", contractor_id="ctrX")
    record_day(seeded_context, date(2026, 3, 4), pallets_in(("plt-euro", 1)), contractor_id="ctrX")

    assert reporting.top_by_revenue(seeded_context, "2026-03", limit=1)[0].contractor_id == "ctrX"


def test_contractor_daily_report_rounds_subtotals_and_total_separately(seeded_context):
    """Day subtotals are rounded per day while the grand total is rounded once."""

    set_price(seeded_context, "wrapping", "0.125")
    record_day(seeded_context, date(2026, 3, 1), data_manager.FlatService("wrapping", 1))
    record_day(seeded_context, date(2026, 3, 2), data_manager.FlatService("wrapping", 1))

    report = reporting.contractor_daily_report(seeded_context, "ctrA", "2026-03")

    assert report.name == "Alpha Foods"
    assert report.warehouse_id == constants.ALL_WAREHOUSES
    assert len(report.days) == 31
    assert [day.subtotal for day in report.days[:3]] == [Decimal("0.13"), Decimal("0.13"), Decimal("0.00")]
    assert report.days[0].items[0].name == "Stretch wrapping"
    assert report.grand_total == Decimal("0.25")


def test_contractor_daily_report_requires_known_contractor(seeded_context):
    """Reports for unknown contractors raise a missing reference error."""

    with pytest.raises(core_logic.MissingReferenceError):
        reporting.contractor_daily_report(seeded_context, "ghost", "2026-03")
