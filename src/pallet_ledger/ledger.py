"""Daily ledger: one record per contractor, warehouse and day.

A record holds every service entry of that day. Saving a day replaces the
whole service list, bumps the record version and writes the before/after
snapshot to the audit trail.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from . import data_manager, log
from .audit import entity_key, history_for, record_change
from .constants import BUILTIN_SERVICE_IDS, MOVEMENT_SERVICE_IDS, AuditAction, EntityType
from .core_logic import (
    DAILY_RECORDS,
    BusinessRuleViolation,
    RuntimeContext,
    cache_bucket,
    commit_record,
    generate_id,
    get_contractor,
    get_warehouse,
    resolve_timestamp,
)

RecordKey = Tuple[str, str, date]


@dataclass(frozen=True)
class SaveInventoryCommand:
    """Replace the service entries of one ledger day."""

    contractor_id: str
    warehouse_id: str
    day: date
    services: Sequence[data_manager.ServiceEntry]
    user_id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class EntryInfo:
    """When a day was first entered, relative to its entry deadline."""

    created_at: datetime
    deadline: datetime
    on_time: bool
    hours_over: int


def _ensure_records_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the ledger bucket.

    ``by_pair`` holds each contractor/warehouse history sorted by day, which
    is what stock replay and revenue iterate over.
    """

    bucket = cache_bucket(context, DAILY_RECORDS)
    if "all" not in bucket:
        rows = list(data_manager.iter_daily_records(context.workbook))
        by_key: Dict[RecordKey, data_manager.DailyRecordRow] = {}
        by_pair: Dict[Tuple[str, str], List[data_manager.DailyRecordRow]] = {}
        by_warehouse: Dict[str, List[data_manager.DailyRecordRow]] = {}
        by_day: Dict[date, List[data_manager.DailyRecordRow]] = {}
        by_contractor: Dict[str, List[data_manager.DailyRecordRow]] = {}
        for row in rows:
            by_key[(row.contractor_id, row.warehouse_id, row.day)] = row
            by_pair.setdefault((row.contractor_id, row.warehouse_id), []).append(row)
            by_warehouse.setdefault(row.warehouse_id, []).append(row)
            by_day.setdefault(row.day, []).append(row)
            by_contractor.setdefault(row.contractor_id, []).append(row)
        for history in by_pair.values():
            history.sort(key=lambda row: row.day)
        bucket["all"] = rows
        bucket["by_key"] = by_key
        bucket["by_pair"] = by_pair
        bucket["by_warehouse"] = by_warehouse
        bucket["by_day"] = by_day
        bucket["by_contractor"] = by_contractor
        log.debug("Populated daily records cache with %d entries", len(rows))
    return bucket


def record_for(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    day: date,
) -> Optional[data_manager.DailyRecordRow]:
    return _ensure_records_cache(context)["by_key"].get((contractor_id, warehouse_id, day))


def records_up_to(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    day: date,
) -> List[data_manager.DailyRecordRow]:
    """Return the pair's records dated on or before ``day``, oldest first."""

    history = _ensure_records_cache(context)["by_pair"].get((contractor_id, warehouse_id), [])
    return [row for row in history if row.day <= day]


def records_for_warehouse(context: RuntimeContext, warehouse_id: str) -> List[data_manager.DailyRecordRow]:
    return list(_ensure_records_cache(context)["by_warehouse"].get(warehouse_id, []))


def records_for_day(context: RuntimeContext, day: date) -> List[data_manager.DailyRecordRow]:
    return list(_ensure_records_cache(context)["by_day"].get(day, []))


def warehouses_for_contractor(context: RuntimeContext, contractor_id: str) -> List[str]:
    """Warehouse ids in which ``contractor_id`` has at least one record, in first-seen order."""

    seen: Dict[str, None] = {}
    for row in _ensure_records_cache(context)["by_contractor"].get(contractor_id, []):
        seen.setdefault(row.warehouse_id, None)
    return list(seen)


def _keep_entry(qty: int, note: str) -> bool:
    return qty != 0 or bool(note.strip())


def clean_services(services: Iterable[data_manager.ServiceEntry]) -> Tuple[data_manager.ServiceEntry, ...]:
    """Drop zero-quantity entries without a note, and movements left empty.

    Raises:
        BusinessRuleViolation: If any quantity is negative, or if a service id
            does not match its entry shape (pallet movements only under the
            movement services, flat quantities only under the other ones).
    """

    cleaned: List[data_manager.ServiceEntry] = []
    for entry in services:
        if isinstance(entry, data_manager.PalletMovement):
            if entry.service_id not in MOVEMENT_SERVICE_IDS:
                raise BusinessRuleViolation(f"{entry.service_id} does not take pallet entries")
            kept = []
            for pallet_entry in entry.pallet_entries:
                if pallet_entry.qty < 0:
                    raise BusinessRuleViolation(
                        f"Quantity must not be negative ({entry.service_id}/{pallet_entry.pallet_type_id})"
                    )
                if _keep_entry(pallet_entry.qty, pallet_entry.note):
                    kept.append(pallet_entry)
            if kept:
                cleaned.append(replace(entry, pallet_entries=tuple(kept)))
        else:
            if entry.service_id in BUILTIN_SERVICE_IDS:
                raise BusinessRuleViolation(f"{entry.service_id} is not a flat service")
            if entry.qty < 0:
                raise BusinessRuleViolation(f"Quantity must not be negative ({entry.service_id})")
            if _keep_entry(entry.qty, entry.note):
                cleaned.append(entry)
    return tuple(cleaned)


def save_inventory(context: RuntimeContext, command: SaveInventoryCommand) -> data_manager.DailyRecordRow:
    """Create or replace the ledger record of one day and audit the change.

    The submitted services fully replace the stored ones. ``created_at`` of an
    existing record is kept; its ``version`` is incremented.

    Raises:
        MissingReferenceError: If the contractor or warehouse is unknown.
        BusinessRuleViolation: If a quantity is negative.
    """

    get_contractor(context, command.contractor_id)
    get_warehouse(context, command.warehouse_id)
    services = clean_services(command.services)
    timestamp = resolve_timestamp(command.timestamp)

    existing = record_for(context, command.contractor_id, command.warehouse_id, command.day)
    if existing is not None:
        record = replace(
            existing,
            services=services,
            manually_completed=True,
            updated_at=timestamp,
            version=existing.version + 1,
        )
        commit_record(context, record, bucket=DAILY_RECORDS, key=record.record_id, action="update", replace=True)
        action = AuditAction.UPDATE_INVENTORY
        services_before = data_manager.services_to_payload(existing.services)
    else:
        record = data_manager.DailyRecordRow(
            record_id=generate_id("R", when=timestamp),
            contractor_id=command.contractor_id,
            warehouse_id=command.warehouse_id,
            day=command.day,
            services=services,
            manually_completed=True,
            created_at=timestamp,
            updated_at=timestamp,
            version=1,
        )
        commit_record(context, record, bucket=DAILY_RECORDS, key=record.record_id, action="create")
        action = AuditAction.CREATE_INVENTORY
        services_before = []

    record_change(
        context,
        action,
        EntityType.DAILY_INVENTORY,
        entity_key(record.contractor_id, record.warehouse_id, record.day),
        {
            "servicesBefore": services_before,
            "servicesAfter": data_manager.services_to_payload(record.services),
        },
        user_id=command.user_id,
        when=timestamp,
    )

    log.info(
        "Saved inventory for contractor '%s' in warehouse '%s' on %s (version %d, %d services)",
        record.contractor_id,
        record.warehouse_id,
        record.day,
        record.version,
        len(record.services),
    )
    return record


def mark_day_completed(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    day: date,
    *,
    user_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.DailyRecordRow:
    """Flag a day without movement as entered, creating an empty record if needed."""

    get_contractor(context, contractor_id)
    get_warehouse(context, warehouse_id)
    timestamp = resolve_timestamp(when)

    existing = record_for(context, contractor_id, warehouse_id, day)
    if existing is not None:
        record = replace(existing, manually_completed=True, updated_at=timestamp)
        commit_record(context, record, bucket=DAILY_RECORDS, key=record.record_id, action="update", replace=True)
    else:
        record = data_manager.DailyRecordRow(
            record_id=generate_id("R", when=timestamp),
            contractor_id=contractor_id,
            warehouse_id=warehouse_id,
            day=day,
            services=(),
            manually_completed=True,
            created_at=timestamp,
            updated_at=timestamp,
            version=1,
        )
        commit_record(context, record, bucket=DAILY_RECORDS, key=record.record_id, action="create")

    record_change(
        context,
        AuditAction.MARK_DAY_COMPLETED,
        EntityType.DAILY_INVENTORY,
        entity_key(contractor_id, warehouse_id, day),
        {"manuallyCompleted": True},
        user_id=user_id,
        when=timestamp,
    )
    log.info("Marked %s completed for contractor '%s' in warehouse '%s'", day, contractor_id, warehouse_id)
    return record


def is_day_completed(context: RuntimeContext, contractor_id: str, warehouse_id: str, day: date) -> bool:
    record = record_for(context, contractor_id, warehouse_id, day)
    if record is None:
        return False
    return record.manually_completed or bool(record.services)


def record_history(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    day: date,
) -> List[data_manager.AuditRow]:
    """Audit entries of one ledger day, newest first."""

    return history_for(context, EntityType.DAILY_INVENTORY, entity_key(contractor_id, warehouse_id, day))


def entry_deadline(context: RuntimeContext, day: date) -> datetime:
    """Data for ``day`` is due the next day at ``EntryDeadlineHour`` UTC."""

    return datetime.combine(day + timedelta(days=1), time(hour=context.settings.entry_deadline_hour), tzinfo=UTC)


def first_entry_info(
    context: RuntimeContext,
    contractor_id: str,
    warehouse_id: str,
    day: date,
) -> Optional[EntryInfo]:
    """Compare the record's first entry time with the entry deadline.

    ``hours_over`` is rounded up to whole hours and is ``0`` when on time.
    Returns ``None`` when the day has no record.
    """

    record = record_for(context, contractor_id, warehouse_id, day)
    if record is None:
        return None

    deadline = entry_deadline(context, day)
    late_by = (record.created_at - deadline).total_seconds()
    on_time = late_by <= 0
    return EntryInfo(
        created_at=record.created_at,
        deadline=deadline,
        on_time=on_time,
        hours_over=0 if on_time else math.ceil(late_by / 3600),
    )
