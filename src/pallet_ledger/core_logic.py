"""Runtime context and reference data for the pallet ledger.

This module owns the :class:`RuntimeContext` every other business module
receives: configuration, the live workbook, memoized query caches and the
change listeners. It also exposes the reference collections (warehouses,
contractors, service definitions, pallet types, per-contractor service flags)
that the pricing and revenue engine read but never own.

All writes follow the same order: the data access layer is updated first, then
affected caches are invalidated, then listeners are notified. A failing write
therefore leaves every in-memory view unchanged.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, MOVEMENT_SERVICE_IDS, ServiceId


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced contractor, warehouse, service, price or pallet type is unknown."""


@dataclass(frozen=True)
class ChangeEvent:
    """Notification sent to subscribers after a successful write."""

    collection: str
    key: str
    action: str


Listener = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook, caches and change listeners."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _listeners: List[Listener] = field(default_factory=list, repr=False, compare=False)


# Cache bucket names, one per workbook collection.
WAREHOUSES = "warehouses"
CONTRACTORS = "contractors"
SERVICE_DEFINITIONS = "service_definitions"
CONTRACTOR_SERVICES = "contractor_services"
PALLET_TYPES = "pallet_types"
SERVICE_PRICES = "service_prices"
PALLET_PRICES = "pallet_prices"
DAILY_RECORDS = "daily_records"
AUDIT_LOG = "audit_log"


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``R20260302101500123456a1b2c3``.

    The timestamp keeps identifiers in creation order; the random suffix keeps
    them unique when several rows share a timestamp (fixed clocks in tests,
    bulk edits).
    """

    when = when or resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:6]}"


def subscribe(context: RuntimeContext, listener: Listener) -> Callable[[], None]:
    """Register ``listener`` for change events and return an unsubscribe callable."""

    context._listeners.append(listener)

    def _unsubscribe() -> None:
        if listener in context._listeners:
            context._listeners.remove(listener)

    return _unsubscribe


def notify(context: RuntimeContext, event: ChangeEvent) -> None:
    """Deliver ``event`` to every listener.

    A failing listener is logged and skipped so one observer cannot undo a
    write that has already been applied.
    """

    for listener in list(context._listeners):
        try:
            listener(event)
        except Exception:
            log.exception("Change listener failed for %s '%s'", event.collection, event.key)


def cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return the mutable cache bucket dedicated to ``name``, creating it if needed."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after a write so the next read rebuilds them."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def commit_record(
    context: RuntimeContext,
    record: Any,
    *,
    bucket: str,
    key: str,
    action: str,
    replace: bool = False,
) -> None:
    """Write ``record`` through the data layer, then refresh caches and notify.

    Raises whatever the data layer raises; in that case no cache is touched
    and no listener is notified.
    """

    if replace:
        data_manager.replace_record(context.workbook, record)
    else:
        data_manager.append_record(context.workbook, record)
    invalidate_cache(context, bucket)
    notify(context, ChangeEvent(collection=bucket, key=key, action=action))


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or sheets are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    data_manager.validate_workbook(workbook)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the in-memory workbook to the configured data file."""

    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    The returned context has empty caches but keeps the same listeners.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, _listeners=context._listeners)


# ---------------------------------------------------------------------------
# Reference data caches
# ---------------------------------------------------------------------------


def _ensure_warehouses_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = cache_bucket(context, WAREHOUSES)
    if "all" not in bucket:
        rows = list(data_manager.iter_warehouses(context.workbook))
        bucket["all"] = sorted(rows, key=lambda row: row.sort_order)
        bucket["by_id"] = {row.warehouse_id: row for row in rows}
        log.debug("Populated warehouses cache with %d entries", len(rows))
    return bucket


def _ensure_contractors_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the contractor bucket with ``all``/``active`` lists (sorted by
    name, case-insensitive) and a ``by_id`` lookup."""

    bucket = cache_bucket(context, CONTRACTORS)
    if "all" not in bucket:
        rows = sorted(data_manager.iter_contractors(context.workbook), key=lambda row: row.name.casefold())
        bucket["all"] = rows
        bucket["active"] = [row for row in rows if row.is_active]
        bucket["by_id"] = {row.contractor_id: row for row in rows}
        log.debug(
            "Populated contractors cache with %d entries (%d active)",
            len(rows),
            len(bucket["active"]),
        )
    return bucket


def _ensure_service_definitions_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = cache_bucket(context, SERVICE_DEFINITIONS)
    if "all" not in bucket:
        rows = list(data_manager.iter_service_definitions(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {row.service_id: row for row in rows}
        log.debug("Populated service definitions cache with %d entries", len(rows))
    return bucket


def _ensure_contractor_services_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = cache_bucket(context, CONTRACTOR_SERVICES)
    if "all" not in bucket:
        rows = list(data_manager.iter_contractor_services(context.workbook))
        by_contractor: Dict[str, List[data_manager.ContractorServiceRow]] = {}
        for row in rows:
            by_contractor.setdefault(row.contractor_id, []).append(row)
        bucket["all"] = rows
        bucket["by_contractor"] = by_contractor
        log.debug("Populated contractor services cache with %d entries", len(rows))
    return bucket


def _ensure_pallet_types_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = cache_bucket(context, PALLET_TYPES)
    if "all" not in bucket:
        rows = list(data_manager.iter_pallet_types(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {row.pallet_type_id: row for row in rows}
        log.debug("Populated pallet types cache with %d entries", len(rows))
    return bucket


# ---------------------------------------------------------------------------
# Reference data queries
# ---------------------------------------------------------------------------


def list_warehouses(context: RuntimeContext) -> List[data_manager.WarehouseRow]:
    """Return warehouses ordered by ``sort_order``."""

    return list(_ensure_warehouses_cache(context)["all"])


def get_warehouse(context: RuntimeContext, warehouse_id: str) -> data_manager.WarehouseRow:
    """Resolve a warehouse by id.

    Raises:
        MissingReferenceError: If ``warehouse_id`` is unknown.
    """

    try:
        return _ensure_warehouses_cache(context)["by_id"][warehouse_id]
    except KeyError as exc:
        log.warning("Warehouse lookup failed for id '%s'", warehouse_id)
        raise MissingReferenceError(f"Unknown warehouse id: {warehouse_id}") from exc


def list_contractors(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.ContractorRow]:
    """Return contractors sorted by name, active ones only unless asked otherwise."""

    cache = _ensure_contractors_cache(context)
    source = cache["all"] if include_inactive else cache["active"]
    return list(source)


def get_contractor(context: RuntimeContext, contractor_id: str) -> data_manager.ContractorRow:
    """Resolve a contractor by id.

    Raises:
        MissingReferenceError: If ``contractor_id`` is unknown.
    """

    try:
        return _ensure_contractors_cache(context)["by_id"][contractor_id]
    except KeyError as exc:
        log.warning("Contractor lookup failed for id '%s'", contractor_id)
        raise MissingReferenceError(f"Unknown contractor id: {contractor_id}") from exc


def find_contractor(context: RuntimeContext, contractor_id: str) -> Optional[data_manager.ContractorRow]:
    """Lenient lookup used by aggregations: ``None`` for unknown ids."""

    return _ensure_contractors_cache(context)["by_id"].get(contractor_id)


def list_service_definitions(context: RuntimeContext) -> List[data_manager.ServiceDefinitionRow]:
    return list(_ensure_service_definitions_cache(context)["all"])


def get_service_definition(context: RuntimeContext, service_id: str) -> data_manager.ServiceDefinitionRow:
    """Resolve a service definition by id.

    Raises:
        MissingReferenceError: If ``service_id`` is unknown.
    """

    try:
        return _ensure_service_definitions_cache(context)["by_id"][service_id]
    except KeyError as exc:
        log.warning("Service lookup failed for id '%s'", service_id)
        raise MissingReferenceError(f"Unknown service id: {service_id}") from exc


def find_service_definition(context: RuntimeContext, service_id: str) -> Optional[data_manager.ServiceDefinitionRow]:
    return _ensure_service_definitions_cache(context)["by_id"].get(service_id)


def list_pallet_types(context: RuntimeContext) -> List[data_manager.PalletTypeRow]:
    return list(_ensure_pallet_types_cache(context)["all"])


def get_pallet_type(context: RuntimeContext, pallet_type_id: str) -> data_manager.PalletTypeRow:
    """Resolve a pallet type by id.

    Raises:
        MissingReferenceError: If ``pallet_type_id`` is unknown.
    """

    try:
        return _ensure_pallet_types_cache(context)["by_id"][pallet_type_id]
    except KeyError as exc:
        log.warning("Pallet type lookup failed for id '%s'", pallet_type_id)
        raise MissingReferenceError(f"Unknown pallet type id: {pallet_type_id}") from exc


def find_pallet_type(context: RuntimeContext, pallet_type_id: str) -> Optional[data_manager.PalletTypeRow]:
    return _ensure_pallet_types_cache(context)["by_id"].get(pallet_type_id)


def enabled_services(context: RuntimeContext, contractor_id: str) -> List[data_manager.ServiceDefinitionRow]:
    """Return the service definitions enabled for a contractor.

    Pallet movement services are mandatory: they are listed first whenever
    their definitions exist, whether or not an enablement flag was stored.
    Flags pointing at deleted definitions are ignored.
    """

    definitions = _ensure_service_definitions_cache(context)["by_id"]
    links = _ensure_contractor_services_cache(context)["by_contractor"].get(contractor_id, [])

    result: List[data_manager.ServiceDefinitionRow] = []
    for service_id in (ServiceId.PALLETS_IN.value, ServiceId.PALLETS_OUT.value):
        if service_id in definitions:
            result.append(definitions[service_id])
    for link in links:
        if not link.is_enabled or link.service_id in MOVEMENT_SERVICE_IDS:
            continue
        definition = definitions.get(link.service_id)
        if definition is not None and definition not in result:
            result.append(definition)
    return result


# ---------------------------------------------------------------------------
# Reference data writes
# ---------------------------------------------------------------------------


def add_warehouse(
    context: RuntimeContext,
    *,
    warehouse_id: str,
    name: str,
    sort_order: Optional[int] = None,
) -> data_manager.WarehouseRow:
    """Register a warehouse; ``sort_order`` defaults to after the last one.

    Raises:
        BusinessRuleViolation: If the id is already taken.
    """

    cache = _ensure_warehouses_cache(context)
    if warehouse_id in cache["by_id"]:
        raise BusinessRuleViolation(f"Warehouse '{warehouse_id}' already exists")
    if sort_order is None:
        sort_order = max((row.sort_order for row in cache["all"]), default=0) + 1

    record = data_manager.WarehouseRow(warehouse_id=warehouse_id, name=name, sort_order=sort_order)
    commit_record(context, record, bucket=WAREHOUSES, key=warehouse_id, action="create")
    log.info("Added warehouse '%s' (%s)", warehouse_id, name)
    return record


def add_contractor(
    context: RuntimeContext,
    *,
    name: str,
    contractor_id: Optional[str] = None,
    accepted_pallet_types: Sequence[str] = (),
    is_active: bool = True,
) -> data_manager.ContractorRow:
    """Register a contractor and enable the mandatory pallet movement services.

    Raises:
        BusinessRuleViolation: If the id is already taken.
    """

    contractor_id = contractor_id or generate_id("C")
    if contractor_id in _ensure_contractors_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Contractor '{contractor_id}' already exists")

    record = data_manager.ContractorRow(
        contractor_id=contractor_id,
        name=name,
        is_active=is_active,
        accepted_pallet_types=tuple(accepted_pallet_types),
    )
    commit_record(context, record, bucket=CONTRACTORS, key=contractor_id, action="create")
    for service_id in (ServiceId.PALLETS_IN.value, ServiceId.PALLETS_OUT.value):
        set_service_enabled(context, contractor_id, service_id, True)
    log.info("Added contractor '%s' (%s)", contractor_id, name)
    return record


def add_service_definition(
    context: RuntimeContext,
    *,
    service_id: str,
    name: str,
    unit: str,
    description: str = "",
) -> data_manager.ServiceDefinitionRow:
    """Register a billable service.

    Raises:
        BusinessRuleViolation: If the id is already taken.
    """

    if service_id in _ensure_service_definitions_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Service '{service_id}' already exists")
    record = data_manager.ServiceDefinitionRow(
        service_id=service_id, name=name, unit=unit, description=description)
    commit_record(context, record, bucket=SERVICE_DEFINITIONS, key=service_id, action="create")
    log.info("Added service definition '%s' (%s, %s)", service_id, name, unit)
    return record


def add_pallet_type(
    context: RuntimeContext,
    *,
    pallet_type_id: str,
    name: str,
    dimensions: str = "",
    max_load: str = "",
) -> data_manager.PalletTypeRow:
    """Register a pallet type.

    Raises:
        BusinessRuleViolation: If the id is already taken.
    """

    if pallet_type_id in _ensure_pallet_types_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Pallet type '{pallet_type_id}' already exists")
    record = data_manager.PalletTypeRow(
        pallet_type_id=pallet_type_id, name=name, dimensions=dimensions, max_load=max_load)
    commit_record(context, record, bucket=PALLET_TYPES, key=pallet_type_id, action="create")
    log.info("Added pallet type '%s' (%s)", pallet_type_id, name)
    return record


def set_service_enabled(
    context: RuntimeContext,
    contractor_id: str,
    service_id: str,
    is_enabled: bool = True,
) -> data_manager.ContractorServiceRow:
    """Create or flip the enablement flag of a service for a contractor."""

    links = _ensure_contractor_services_cache(context)["by_contractor"].get(contractor_id, [])
    existing = next((link for link in links if link.service_id == service_id), None)

    if existing is not None:
        record = data_manager.ContractorServiceRow(
            link_id=existing.link_id,
            contractor_id=contractor_id,
            service_id=service_id,
            is_enabled=is_enabled,
        )
        commit_record(
            context, record, bucket=CONTRACTOR_SERVICES, key=record.link_id, action="update", replace=True)
    else:
        record = data_manager.ContractorServiceRow(
            link_id=generate_id("L"),
            contractor_id=contractor_id,
            service_id=service_id,
            is_enabled=is_enabled,
        )
        commit_record(context, record, bucket=CONTRACTOR_SERVICES, key=record.link_id, action="create")

    log.info(
        "Service '%s' %s for contractor '%s'",
        service_id,
        "enabled" if is_enabled else "disabled",
        contractor_id,
    )
    return record
