"""Reporting aggregator.

Read-only views assembled from the revenue calculator. Nothing here keeps
state of its own: every report is recomputed from the ledger and price
histories on each call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from . import log
from .constants import ALL_WAREHOUSES, TOP_N
from .core_logic import RuntimeContext, enabled_services, find_contractor, get_contractor, list_contractors
from .dates import days_in_month, previous_month
from .revenue import (
    ContractorIds,
    LineItem,
    RevenueBreakdown,
    breakdown_of,
    contractor_id_list,
    day_line_items,
    money,
    month_revenue,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class ServiceSummary:
    service_id: str
    name: str
    quantity: int
    revenue: Decimal


@dataclass(frozen=True)
class ContractorSummary:
    contractor_id: str
    name: str
    services: List[ServiceSummary]
    breakdown: RevenueBreakdown


@dataclass(frozen=True)
class DailyRevenue:
    day: date
    breakdown: RevenueBreakdown


@dataclass(frozen=True)
class RevenueRanking:
    contractor_id: str
    name: str
    breakdown: RevenueBreakdown


@dataclass(frozen=True)
class GrowthRanking:
    """Month-over-month growth of one contractor.

    ``growth_percent`` is ``None`` for new contractors (no revenue last month,
    some this month).
    """

    contractor_id: str
    name: str
    current: Decimal
    previous: Decimal
    growth_percent: Optional[float]
    is_new: bool


@dataclass(frozen=True)
class ReportDay:
    day: date
    items: List[LineItem]
    subtotal: Decimal


@dataclass(frozen=True)
class ContractorReport:
    contractor_id: str
    name: str
    month: str
    warehouse_id: str
    days: List[ReportDay]
    grand_total: Decimal


def _month_items(context: RuntimeContext, contractor_id: str, month: str, warehouse_id: str) -> List[LineItem]:
    items: List[LineItem] = []
    for day in days_in_month(month):
        items.extend(day_line_items(context, contractor_id, warehouse_id, day))
    return items


def monthly_summary(
    context: RuntimeContext,
    month: str,
    contractor_ids: ContractorIds,
    warehouse_id: str = ALL_WAREHOUSES,
) -> List[ContractorSummary]:
    """Per contractor and enabled service: quantity and revenue over ``month``.

    Storage lines count pallet-days. Unknown contractor ids are skipped.
    """

    summaries: List[ContractorSummary] = []
    for contractor_id in contractor_id_list(contractor_ids):
        contractor = find_contractor(context, contractor_id)
        if contractor is None:
            log.warning("Skipping unknown contractor '%s' in monthly summary", contractor_id)
            continue

        items = _month_items(context, contractor_id, month, warehouse_id)
        quantities: Dict[str, int] = {}
        amounts: Dict[str, Decimal] = {}
        for item in items:
            quantities[item.service_id] = quantities.get(item.service_id, 0) + item.quantity
            amounts[item.service_id] = amounts.get(item.service_id, ZERO) + item.total

        services = [
            ServiceSummary(
                service_id=definition.service_id,
                name=definition.name,
                quantity=quantities.get(definition.service_id, 0),
                revenue=money(amounts.get(definition.service_id, ZERO)),
            )
            for definition in enabled_services(context, contractor_id)
        ]
        summaries.append(ContractorSummary(
            contractor_id=contractor_id,
            name=contractor.name,
            services=services,
            breakdown=breakdown_of(items),
        ))
    return summaries


def daily_series(
    context: RuntimeContext,
    month: str,
    contractor_ids: ContractorIds,
    warehouse_id: str = ALL_WAREHOUSES,
) -> List[DailyRevenue]:
    """Revenue per day of ``month`` summed over the contractor set, for charting."""

    contractor_ids = contractor_id_list(contractor_ids)
    series: List[DailyRevenue] = []
    for day in days_in_month(month):
        items: List[LineItem] = []
        for contractor_id in contractor_ids:
            items.extend(day_line_items(context, contractor_id, warehouse_id, day))
        series.append(DailyRevenue(day=day, breakdown=breakdown_of(items)))
    return series


def top_by_revenue(
    context: RuntimeContext,
    month: str,
    warehouse_id: str = ALL_WAREHOUSES,
    limit: int = TOP_N,
) -> List[RevenueRanking]:
    """Contractors ranked by month total, highest first."""

    rankings = [
        RevenueRanking(
            contractor_id=contractor.contractor_id,
            name=contractor.name,
            breakdown=month_revenue(context, contractor.contractor_id, warehouse_id, month),
        )
        for contractor in list_contractors(context, include_inactive=True)
    ]
    rankings.sort(key=lambda ranking: ranking.breakdown.total, reverse=True)
    return rankings[:limit]


def _growth(current: Decimal, previous: Decimal) -> Optional[float]:
    if previous == 0:
        return None if current > 0 else 0.0
    return round(float((current - previous) / previous * 100), 1)


def top_by_growth(
    context: RuntimeContext,
    month: str,
    warehouse_id: str = ALL_WAREHOUSES,
    limit: int = TOP_N,
) -> List[GrowthRanking]:
    """Contractors ranked by month-over-month revenue growth.

    New contractors come first, ordered by current revenue; everyone else
    follows by growth percentage, highest first.
    """

    last_month = previous_month(month)
    rankings: List[GrowthRanking] = []
    for contractor in list_contractors(context, include_inactive=True):
        current = month_revenue(context, contractor.contractor_id, warehouse_id, month).total
        previous = month_revenue(context, contractor.contractor_id, warehouse_id, last_month).total
        growth = _growth(current, previous)
        rankings.append(GrowthRanking(
            contractor_id=contractor.contractor_id,
            name=contractor.name,
            current=current,
            previous=previous,
            growth_percent=growth,
            is_new=growth is None,
        ))

    new = sorted((r for r in rankings if r.is_new), key=lambda r: r.current, reverse=True)
    established = sorted((r for r in rankings if not r.is_new), key=lambda r: r.growth_percent, reverse=True)
    return (new + established)[:limit]


def contractor_daily_report(
    context: RuntimeContext,
    contractor_id: str,
    month: str,
    warehouse_id: str = ALL_WAREHOUSES,
) -> ContractorReport:
    """Itemised revenue of one contractor for every day of ``month``.

    Raises:
        MissingReferenceError: If ``contractor_id`` is unknown.
    """

    contractor = get_contractor(context, contractor_id)
    days: List[ReportDay] = []
    raw_total = ZERO
    for day in days_in_month(month):
        items = day_line_items(context, contractor_id, warehouse_id, day)
        raw_day = sum((item.total for item in items), ZERO)
        raw_total += raw_day
        days.append(ReportDay(day=day, items=items, subtotal=money(raw_day)))

    return ContractorReport(
        contractor_id=contractor_id,
        name=contractor.name,
        month=month,
        warehouse_id=warehouse_id,
        days=days,
        grand_total=money(raw_total),
    )
