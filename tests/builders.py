"""Row builders shared by the test modules."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

from pallet_ledger import constants, data_manager, ledger, pricing


def movement(service_id: str, *entries: tuple[str, int]) -> data_manager.PalletMovement:
    """Build a pallet movement from ``(pallet_type_id, qty)`` pairs."""

    return data_manager.PalletMovement(
        service_id=service_id,
        pallet_entries=tuple(data_manager.PalletEntry(pallet_type_id=p, qty=q) for p, q in entries),
    )


def pallets_in(*entries: tuple[str, int]) -> data_manager.PalletMovement:
    return movement(constants.ServiceId.PALLETS_IN.value, *entries)


def pallets_out(*entries: tuple[str, int]) -> data_manager.PalletMovement:
    return movement(constants.ServiceId.PALLETS_OUT.value, *entries)


def daily_record(
    contractor_id: str,
    warehouse_id: str,
    day: date,
    *services: data_manager.ServiceEntry,
    record_id: str | None = None,
) -> data_manager.DailyRecordRow:
    """Build a ledger row directly, bypassing ``save_inventory``."""

    stamp = datetime(day.year, day.month, day.day, 9, 0, tzinfo=UTC)
    return data_manager.DailyRecordRow(
        record_id=record_id or f"R-{contractor_id}-{warehouse_id}-{day.isoformat()}",
        contractor_id=contractor_id,
        warehouse_id=warehouse_id,
        day=day,
        services=tuple(services),
        manually_completed=True,
        created_at=stamp,
        updated_at=stamp,
        version=1,
    )


def price_row(
    contractor_id: str,
    item_id: str,
    effective_from: date,
    price: str,
    *,
    direction: str | None = None,
    price_id: str | None = None,
) -> data_manager.PriceRow:
    stamp = datetime(2025, 1, 1, tzinfo=UTC)
    return data_manager.PriceRow(
        price_id=price_id or f"P-{contractor_id}-{item_id}-{direction}-{effective_from.isoformat()}",
        contractor_id=contractor_id,
        item_id=item_id,
        direction=direction,
        effective_from=effective_from,
        price_per_unit=Decimal(price),
        created_at=stamp,
        updated_at=stamp,
    )


def record_day(context, day: date, *services, contractor_id: str = "ctrA", warehouse_id: str = "wh1"):
    """Save a day through the ledger, as the entry screen would."""

    return ledger.save_inventory(
        context,
        ledger.SaveInventoryCommand(
            contractor_id=contractor_id,
            warehouse_id=warehouse_id,
            day=day,
            services=list(services),
        ),
    )


def set_price(
    context,
    item_id: str,
    price: str,
    direction: str | None = None,
    *,
    effective_from: date = date(2026, 1, 1),
    contractor_id: str = "ctrA",
):
    """Add a price entry through the pricing commands."""

    return pricing.add_price(
        context,
        pricing.AddPriceCommand(
            contractor_id=contractor_id,
            item_id=item_id,
            effective_from=effective_from,
            price_per_unit=Decimal(price),
            direction=direction,
        ),
    )
