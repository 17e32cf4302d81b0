"""Revenue calculator.

Every figure is derived from the itemised line items of a day:

* movement: each pallet moved in or out, priced per pallet type;
* additional: flat services other than the built-in movement and storage
  services (``transport`` lines are additional revenue too);
* storage: positive stock per pallet type, billed only on days without any
  pallet movement for the contractor in that warehouse.

Amounts are summed unrounded and rounded to cents once, at the end.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Union

from . import data_manager
from .constants import ALL_WAREHOUSES, BUILTIN_SERVICE_IDS, LineCategory, ServiceId
from .core_logic import RuntimeContext, find_pallet_type, find_service_definition
from .dates import date_range, month_bounds
from .ledger import record_for, warehouses_for_contractor
from .pricing import effective_price, movement_unit_price, storage_unit_price
from .stock import stock_by_pallet_type

CENT = Decimal("0.01")
ZERO = Decimal("0")

ContractorIds = Union[str, Iterable[str]]


@dataclass(frozen=True)
class LineItem:
    category: str
    service_id: str
    pallet_type_id: Optional[str]
    name: str
    quantity: int
    unit_price: Decimal
    total: Decimal
    warehouse_id: str


@dataclass(frozen=True)
class RevenueBreakdown:
    movement: Decimal
    additional: Decimal
    storage: Decimal
    total: Decimal


def money(value: Decimal) -> Decimal:
    """Round to cents, halves away from zero."""

    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_warehouses(context: RuntimeContext, contractor_id: str, warehouse_id: str) -> List[str]:
    """Expand the ``"all"`` filter to the warehouses the contractor has records in."""

    if warehouse_id == ALL_WAREHOUSES:
        return warehouses_for_contractor(context, contractor_id)
    return [warehouse_id]


def contractor_id_list(contractor_ids: ContractorIds) -> List[str]:
    if isinstance(contractor_ids, str):
        return [contractor_ids]
    return list(contractor_ids)


def _pallet_name(context: RuntimeContext, pallet_type_id: str) -> str:
    pallet_type = find_pallet_type(context, pallet_type_id)
    return pallet_type.name if pallet_type is not None else pallet_type_id


def _warehouse_line_items(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    day: date,
) -> List[LineItem]:
    items: List[LineItem] = []
    moved = False

    record = record_for(context, contractor_id, warehouse_id, day)
    for entry in record.services if record is not None else ():
        if isinstance(entry, data_manager.PalletMovement):
            for pallet_entry in entry.pallet_entries:
                if pallet_entry.qty > 0:
                    moved = True
                price = movement_unit_price(context, contractor_id, entry.service_id, pallet_entry.pallet_type_id, day)
                items.append(LineItem(
                    category=LineCategory.MOVEMENT.value,
                    service_id=entry.service_id,
                    pallet_type_id=pallet_entry.pallet_type_id,
                    name=_pallet_name(context, pallet_entry.pallet_type_id),
                    quantity=pallet_entry.qty,
                    unit_price=price,
                    total=price * pallet_entry.qty,
                    warehouse_id=warehouse_id,
                ))
            continue

        if entry.service_id in BUILTIN_SERVICE_IDS:
            continue
        definition = find_service_definition(context, entry.service_id)
        name = definition.name if definition is not None else entry.service_id
        category = LineCategory.TRANSPORT if "transport" in name.casefold() else LineCategory.ADDITIONAL
        price = effective_price(context, contractor_id, entry.service_id, day)
        items.append(LineItem(
            category=category.value,
            service_id=entry.service_id,
            pallet_type_id=None,
            name=name,
            quantity=entry.qty,
            unit_price=price,
            total=price * entry.qty,
            warehouse_id=warehouse_id,
        ))

    if moved:
        return items

    stock = stock_by_pallet_type(context, contractor_id, warehouse_id, day)
    for pallet_type_id, qty in stock.items():
        if qty <= 0:
            continue
        price = storage_unit_price(context, contractor_id, pallet_type_id, day)
        items.append(LineItem(
            category=LineCategory.STORAGE.value,
            service_id=ServiceId.STORAGE.value,
            pallet_type_id=pallet_type_id,
            name=_pallet_name(context, pallet_type_id),
            quantity=qty,
            unit_price=price,
            total=price * qty,
            warehouse_id=warehouse_id,
        ))
    return items


def day_line_items(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date) -> List[LineItem]:
    """Itemise one contractor's revenue for ``day`` in one warehouse or ``"all"``."""

    items: List[LineItem] = []
    for resolved in resolve_warehouses(context, contractor_id, warehouse_id):
        items.extend(_warehouse_line_items(context, contractor_id, resolved, day))
    return items


def _accumulate(totals: Dict[str, Decimal], items: Iterable[LineItem]) -> None:
    for item in items:
        if item.category == LineCategory.MOVEMENT.value:
            totals["movement"] += item.total
        elif item.category == LineCategory.STORAGE.value:
            totals["storage"] += item.total
        else:
            totals["additional"] += item.total


def _new_totals() -> Dict[str, Decimal]:
    return {"movement": ZERO, "additional": ZERO, "storage": ZERO}


def _breakdown(totals: Dict[str, Decimal]) -> RevenueBreakdown:
    movement = money(totals["movement"])
    additional = money(totals["additional"])
    storage = money(totals["storage"])
    return RevenueBreakdown(
        movement=movement,
        additional=additional,
        storage=storage,
        total=money(totals["movement"] + totals["additional"] + totals["storage"]),
    )


def breakdown_of(items: Iterable[LineItem]) -> RevenueBreakdown:
    """Sum line items into a rounded breakdown."""

    totals = _new_totals()
    _accumulate(totals, items)
    return _breakdown(totals)


def day_revenue(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date) -> RevenueBreakdown:
    return breakdown_of(day_line_items(context, contractor_id, warehouse_id, day))


def range_revenue(
    context: RuntimeContext,
    contractor_ids: ContractorIds,
    warehouse_id: str,
    start: date,
    end: date,
) -> RevenueBreakdown:
    """Revenue of one or more contractors over ``start``..``end`` inclusive."""

    totals = _new_totals()
    for contractor_id in contractor_id_list(contractor_ids):
        for day in date_range(start, end):
            _accumulate(totals, day_line_items(context, contractor_id, warehouse_id, day))
    return _breakdown(totals)


def month_revenue(
    context: RuntimeContext,
    contractor_ids: ContractorIds,
    warehouse_id: str,
    month: str,
) -> RevenueBreakdown:
    start, end = month_bounds(month)
    return range_revenue(context, contractor_ids, warehouse_id, start, end)
