"""Temporal price index.

Prices are kept per contractor as effective-dated histories, either per
service (flat prices) or per pallet type and direction. The price in force on
a day is the entry with the latest ``effective_from`` on or before that day.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from . import data_manager, log
from .audit import entity_key, record_change
from .constants import AuditAction, Direction, EntityType, ServiceId
from .core_logic import (
    PALLET_PRICES,
    SERVICE_PRICES,
    BusinessRuleViolation,
    MissingReferenceError,
    RuntimeContext,
    cache_bucket,
    commit_record,
    generate_id,
    get_contractor,
    get_pallet_type,
    get_service_definition,
    resolve_timestamp,
)

ZERO = Decimal("0")

PriceKey = Tuple[str, str, Optional[str]]


@dataclass(frozen=True)
class AddPriceCommand:
    """Add a point to a price history.

    ``direction`` is ``None`` for a service price and ``"in"``/``"out"`` for a
    pallet type price, in which case ``item_id`` is the pallet type id.
    """

    contractor_id: str
    item_id: str
    effective_from: date
    price_per_unit: Decimal
    direction: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class UpdatePriceCommand:
    """Edit an existing price entry in place; omitted fields keep their value."""

    price_id: str
    price_per_unit: Optional[Decimal] = None
    effective_from: Optional[date] = None
    user_id: Optional[str] = None
    timestamp: Optional[datetime] = None


def _price_key(row: data_manager.PriceRow) -> PriceKey:
    return (row.contractor_id, row.item_id, row.direction)


def _build_price_bucket(bucket: Dict[str, Any], rows: List[data_manager.PriceRow]) -> None:
    by_key: Dict[PriceKey, List[data_manager.PriceRow]] = {}
    for row in rows:
        by_key.setdefault(_price_key(row), []).append(row)
    for history in by_key.values():
        # list.sort is stable: entries sharing a date stay in insertion order
        history.sort(key=lambda row: row.effective_from)
    bucket["all"] = rows
    bucket["by_key"] = by_key
    bucket["by_id"] = {row.price_id: row for row in rows}


def _ensure_service_prices_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = cache_bucket(context, SERVICE_PRICES)
    if "all" not in bucket:
        rows = list(data_manager.iter_service_prices(context.workbook))
        _build_price_bucket(bucket, rows)
        log.debug("Populated service prices cache with %d entries", len(rows))
    return bucket


def _ensure_pallet_prices_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = cache_bucket(context, PALLET_PRICES)
    if "all" not in bucket:
        rows = list(data_manager.iter_pallet_prices(context.workbook))
        _build_price_bucket(bucket, rows)
        log.debug("Populated pallet prices cache with %d entries", len(rows))
    return bucket


def _normalize_direction(direction: Optional[str]) -> Optional[str]:
    if direction is None:
        return None
    value = str(getattr(direction, "value", direction))
    if value not in (Direction.IN.value, Direction.OUT.value):
        raise BusinessRuleViolation(f"Unknown price direction: {value}")
    return value


def price_history(
    context: RuntimeContext,
    contractor_id: str,
    item_id: str,
    direction: Optional[str] = None,
) -> List[data_manager.PriceRow]:
    """Return the price history for one series, oldest ``effective_from`` first."""

    direction = _normalize_direction(direction)
    cache = _ensure_service_prices_cache(context) if direction is None else _ensure_pallet_prices_cache(context)
    return list(cache["by_key"].get((contractor_id, item_id, direction), []))


def effective_price(
    context: RuntimeContext,
    contractor_id: str,
    item_id: str,
    day: date,
    direction: Optional[str] = None,
) -> Decimal:
    """Return the unit price in force on ``day``.

    When several entries share the winning ``effective_from`` the one inserted
    last wins. Returns ``Decimal("0")`` when no entry is in force yet, which
    callers treat as "unpriced".
    """

    price = ZERO
    for entry in price_history(context, contractor_id, item_id, direction):
        if entry.effective_from > day:
            break
        price = entry.price_per_unit
    return price


def movement_unit_price(
    context: RuntimeContext,
    contractor_id: str,
    service_id: str,
    pallet_type_id: str,
    day: date,
) -> Decimal:
    """Unit price of one moved pallet.

    Both movement directions are billed from the pallet type's ``in`` price;
    a missing or zero pallet price falls back to the flat price of the
    movement service itself.
    """

    pallet_price = effective_price(context, contractor_id, pallet_type_id, day, Direction.IN.value)
    if pallet_price > 0:
        return pallet_price

    flat_price = effective_price(context, contractor_id, service_id, day)
    if flat_price == 0:
        log.debug(
            "No movement price for contractor '%s', pallet type '%s' on %s",
            contractor_id,
            pallet_type_id,
            day,
        )
    return flat_price


def storage_unit_price(
    context: RuntimeContext,
    contractor_id: str,
    pallet_type_id: str,
    day: date,
) -> Decimal:
    """Daily storage price per pallet: the ``out`` pallet price, else the flat storage price."""

    pallet_price = effective_price(context, contractor_id, pallet_type_id, day, Direction.OUT.value)
    if pallet_price > 0:
        return pallet_price

    flat_price = effective_price(context, contractor_id, ServiceId.STORAGE.value, day)
    if flat_price == 0:
        log.debug(
            "No storage price for contractor '%s', pallet type '%s' on %s",
            contractor_id,
            pallet_type_id,
            day,
        )
    return flat_price


def get_price(context: RuntimeContext, price_id: str) -> data_manager.PriceRow:
    """Resolve a price entry by id across service and pallet histories.

    Raises:
        MissingReferenceError: If ``price_id`` is unknown.
    """

    for cache in (_ensure_service_prices_cache(context), _ensure_pallet_prices_cache(context)):
        row = cache["by_id"].get(price_id)
        if row is not None:
            return row
    log.warning("Price lookup failed for id '%s'", price_id)
    raise MissingReferenceError(f"Unknown price id: {price_id}")


def _audit_target(row: data_manager.PriceRow) -> Tuple[EntityType, str]:
    if row.direction is None:
        return EntityType.SERVICE_PRICE, entity_key(row.contractor_id, row.item_id)
    return EntityType.PALLET_PRICE, entity_key(row.contractor_id, row.item_id, row.direction)


def _price_snapshot(row: data_manager.PriceRow) -> Dict[str, str]:
    return {
        "effectiveFrom": row.effective_from.isoformat(),
        "pricePerUnit": str(row.price_per_unit),
    }


def add_price(context: RuntimeContext, command: AddPriceCommand) -> data_manager.PriceRow:
    """Append a new entry to a price history and audit it.

    Raises:
        MissingReferenceError: If the contractor, service or pallet type is
            unknown.
        BusinessRuleViolation: If the price is negative or the series already
            has an entry with the same ``effective_from``.
    """

    direction = _normalize_direction(command.direction)
    get_contractor(context, command.contractor_id)
    if direction is None:
        get_service_definition(context, command.item_id)
    else:
        get_pallet_type(context, command.item_id)

    if command.price_per_unit < 0:
        raise BusinessRuleViolation("Price per unit must not be negative")

    history = price_history(context, command.contractor_id, command.item_id, direction)
    if any(entry.effective_from == command.effective_from for entry in history):
        raise BusinessRuleViolation(
            f"A price effective from {command.effective_from.isoformat()} already exists"
        )

    timestamp = resolve_timestamp(command.timestamp)
    record = data_manager.PriceRow(
        price_id=generate_id("P", when=timestamp),
        contractor_id=command.contractor_id,
        item_id=command.item_id,
        direction=direction,
        effective_from=command.effective_from,
        price_per_unit=command.price_per_unit,
        created_at=timestamp,
        updated_at=timestamp,
    )

    bucket = SERVICE_PRICES if direction is None else PALLET_PRICES
    commit_record(context, record, bucket=bucket, key=record.price_id, action="create")

    entity_type, key = _audit_target(record)
    action = AuditAction.ADD_PRICE if direction is None else AuditAction.ADD_PALLET_PRICE
    record_change(
        context, action, entity_type, key, _price_snapshot(record), user_id=command.user_id, when=timestamp)

    log.info(
        "Added price %s for contractor '%s' item '%s'%s from %s",
        record.price_per_unit,
        record.contractor_id,
        record.item_id,
        f" ({direction})" if direction else "",
        record.effective_from,
    )
    return record


def update_price(context: RuntimeContext, command: UpdatePriceCommand) -> data_manager.PriceRow:
    """Edit a price entry in place, keeping ``created_at``, and audit the change.

    No new history point is created, so a price edited today also changes
    every past day that entry covers.

    Raises:
        MissingReferenceError: If ``price_id`` is unknown.
        BusinessRuleViolation: If the new price is negative or the new
            ``effective_from`` collides with another entry of the series.
    """

    before = get_price(context, command.price_id)
    new_price = command.price_per_unit if command.price_per_unit is not None else before.price_per_unit
    new_effective = command.effective_from if command.effective_from is not None else before.effective_from

    if new_price < 0:
        raise BusinessRuleViolation("Price per unit must not be negative")

    if new_effective != before.effective_from:
        siblings = price_history(context, before.contractor_id, before.item_id, before.direction)
        if any(entry.effective_from == new_effective and entry.price_id != before.price_id for entry in siblings):
            raise BusinessRuleViolation(
                f"A price effective from {new_effective.isoformat()} already exists"
            )

    timestamp = resolve_timestamp(command.timestamp)
    after = replace(before, price_per_unit=new_price, effective_from=new_effective, updated_at=timestamp)

    bucket = SERVICE_PRICES if before.direction is None else PALLET_PRICES
    commit_record(context, after, bucket=bucket, key=after.price_id, action="update", replace=True)

    entity_type, key = _audit_target(after)
    action = AuditAction.UPDATE_PRICE if before.direction is None else AuditAction.UPDATE_PALLET_PRICE
    record_change(
        context,
        action,
        entity_type,
        key,
        {"before": _price_snapshot(before), "after": _price_snapshot(after)},
        user_id=command.user_id,
        when=timestamp,
    )

    log.info(
        "Updated price '%s': %s from %s -> %s from %s",
        after.price_id,
        before.price_per_unit,
        before.effective_from,
        after.price_per_unit,
        after.effective_from,
    )
    return after
