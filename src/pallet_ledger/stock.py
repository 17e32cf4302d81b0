"""Stock accumulator.

Stock is never stored. It is replayed from the ledger: every ``pallets-in``
entry adds to the running stock of its pallet type, every ``pallets-out``
entry subtracts. Replaying the same records always yields the same stock, and
negative stock is reported as-is rather than clamped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable

from . import data_manager
from .constants import AVERAGE_STOCK_WINDOW_DAYS, TREND_DEAD_BAND, TREND_WINDOW_DAYS, ServiceId, TrendDirection
from .core_logic import RuntimeContext
from .dates import date_range, window_ending
from .ledger import record_for, records_up_to


@dataclass(frozen=True)
class StockTrend:
    direction: str
    percent_change: float
    current_average: float
    previous_average: float


def _movement_sign(service_id: str) -> int:
    if service_id == ServiceId.PALLETS_IN.value:
        return 1
    if service_id == ServiceId.PALLETS_OUT.value:
        return -1
    return 0


def _apply_record(levels: Dict[str, int], record: data_manager.DailyRecordRow) -> None:
    for entry in record.services:
        if not isinstance(entry, data_manager.PalletMovement):
            continue
        sign = _movement_sign(entry.service_id)
        for pallet_entry in entry.pallet_entries:
            levels[pallet_entry.pallet_type_id] = levels.get(pallet_entry.pallet_type_id, 0) + sign * pallet_entry.qty


def _net_movement(record: data_manager.DailyRecordRow) -> int:
    delta: Dict[str, int] = {}
    _apply_record(delta, record)
    return sum(delta.values())


def replay(records: Iterable[data_manager.DailyRecordRow]) -> Dict[str, int]:
    """Accumulate per-pallet-type stock over ``records`` in the given order."""

    levels: Dict[str, int] = {}
    for record in records:
        _apply_record(levels, record)
    return levels


def stock_by_pallet_type(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date) -> Dict[str, int]:
    """Stock per pallet type at the end of ``day``."""

    return replay(records_up_to(context, contractor_id, warehouse_id, day))


def total_stock(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date) -> int:
    return sum(stock_by_pallet_type(context, contractor_id, warehouse_id, day).values())


def day_balance(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date) -> int:
    """Pallets received minus pallets released on ``day`` alone."""

    record = record_for(context, contractor_id, warehouse_id, day)
    return _net_movement(record) if record is not None else 0


def daily_stock_levels(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    start: date,
    end: date,
) -> Dict[date, int]:
    """Running total stock at the end of each day from ``start`` to ``end`` inclusive."""

    net_by_day: Dict[date, int] = {}
    running = 0
    for record in records_up_to(context, contractor_id, warehouse_id, end):
        if record.day < start:
            running += _net_movement(record)
        else:
            net_by_day[record.day] = _net_movement(record)

    levels: Dict[date, int] = {}
    for day in date_range(start, end):
        running += net_by_day.get(day, 0)
        levels[day] = running
    return levels


def _window_mean(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date, length: int) -> float:
    start, end = window_ending(day, length)
    levels = daily_stock_levels(context, contractor_id, warehouse_id, start, end)
    return sum(levels.values()) / length


def average_stock(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    day: date,
    window_days: int = AVERAGE_STOCK_WINDOW_DAYS,
) -> float:
    """Mean daily stock over the ``window_days`` days ending at ``day``.

    Raises:
        ValueError: If ``window_days`` is not positive.
    """

    if window_days < 1:
        raise ValueError("window_days must be at least 1")
    return _window_mean(context, contractor_id, warehouse_id, day, window_days)


def stock_trend(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date) -> StockTrend:
    """Compare mean stock of the last 15 days with the 15 days before them.

    Changes within two percent either way count as stable.
    """

    current = _window_mean(context, contractor_id, warehouse_id, day, TREND_WINDOW_DAYS)
    previous = _window_mean(
        context, contractor_id, warehouse_id, day - timedelta(days=TREND_WINDOW_DAYS), TREND_WINDOW_DAYS)

    if previous == 0:
        if current > 0:
            percent = 100.0
        elif current < 0:
            percent = -100.0
        else:
            percent = 0.0
    else:
        percent = (current - previous) / abs(previous) * 100

    if percent > TREND_DEAD_BAND:
        direction = TrendDirection.UP
    elif percent < -TREND_DEAD_BAND:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.STABLE

    return StockTrend(
        direction=direction.value,
        percent_change=percent,
        current_average=current,
        previous_average=previous,
    )
