"""Data access layer for the pallet ledger.

This module provides low-level helpers that read from and write to the master
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading typed records and appending or replacing
   individual rows.

Optional or "missing means zero" cells are resolved to concrete defaults here,
once, so the rest of the package never re-defaults ``qty`` or ``note`` values.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import DEFAULT_ENTRY_DEADLINE_HOUR, MOVEMENT_SERVICE_IDS, SheetName


CONFIG_FILE_NAME = "config.ini"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.WAREHOUSES.value: ["WarehouseID", "Name", "SortOrder"],
    SheetName.CONTRACTORS.value: ["ContractorID", "Name", "IsActive", "AcceptedPalletTypes"],
    SheetName.SERVICE_DEFINITIONS.value: ["ServiceID", "Name", "Unit", "Description"],
    SheetName.CONTRACTOR_SERVICES.value: ["LinkID", "ContractorID", "ServiceID", "IsEnabled"],
    SheetName.PALLET_TYPES.value: ["PalletTypeID", "Name", "Dimensions", "MaxLoad"],
    SheetName.SERVICE_PRICES.value: [
        "PriceID",
        "ContractorID",
        "ServiceID",
        "EffectiveFrom",
        "PricePerUnit",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.PALLET_PRICES.value: [
        "PriceID",
        "ContractorID",
        "PalletTypeID",
        "Direction",
        "EffectiveFrom",
        "PricePerUnit",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.DAILY_RECORDS.value: [
        "RecordID",
        "ContractorID",
        "WarehouseID",
        "Date",
        "Services",
        "ManuallyCompleted",
        "CreatedAt",
        "UpdatedAt",
        "Version",
    ],
    SheetName.AUDIT_LOG.value: [
        "AuditID",
        "Timestamp",
        "UserID",
        "Action",
        "EntityType",
        "EntityKey",
        "Diff",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    default_user: str
    entry_deadline_hour: int = DEFAULT_ENTRY_DEADLINE_HOUR


@dataclass(frozen=True)
class WarehouseRow:
    warehouse_id: str
    name: str
    sort_order: int


@dataclass(frozen=True)
class ContractorRow:
    contractor_id: str
    name: str
    is_active: bool
    accepted_pallet_types: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceDefinitionRow:
    service_id: str
    name: str
    unit: str
    description: str = ""


@dataclass(frozen=True)
class ContractorServiceRow:
    """Enablement flag of a service for one contractor."""

    link_id: str
    contractor_id: str
    service_id: str
    is_enabled: bool


@dataclass(frozen=True)
class PalletTypeRow:
    pallet_type_id: str
    name: str
    dimensions: str = ""
    max_load: str = ""


@dataclass(frozen=True)
class PriceRow:
    """One point of a price history.

    ``item_id`` is a service id when ``direction`` is ``None`` and a pallet
    type id otherwise.
    """

    price_id: str
    contractor_id: str
    item_id: str
    direction: Optional[str]
    effective_from: date
    price_per_unit: Decimal
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PalletEntry:
    pallet_type_id: str
    qty: int
    note: str = ""


@dataclass(frozen=True)
class PalletMovement:
    """``pallets-in`` / ``pallets-out`` entry holding per-pallet-type quantities."""

    service_id: str
    pallet_entries: Tuple[PalletEntry, ...] = ()


@dataclass(frozen=True)
class FlatService:
    """Any other service, billed as a flat quantity."""

    service_id: str
    qty: int
    note: str = ""


ServiceEntry = Union[PalletMovement, FlatService]


@dataclass(frozen=True)
class DailyRecordRow:
    """The single per-day container of a contractor's activity in a warehouse."""

    record_id: str
    contractor_id: str
    warehouse_id: str
    day: date
    services: Tuple[ServiceEntry, ...]
    manually_completed: bool
    created_at: datetime
    updated_at: datetime
    version: int


@dataclass(frozen=True)
class AuditRow:
    audit_id: str
    timestamp: datetime
    user_id: str
    action: str
    entity_type: str
    entity_key: str
    diff: Dict[str, Any] = field(default_factory=dict, hash=False)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` (or the
    current working directory) and resolved to an absolute path.
    ``EntryDeadlineHour`` is optional.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``EntryDeadlineHour`` is not an hour of the day.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
        default_user = parser.get("Defaults", "DefaultUser")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    deadline_hour = parser.getint(
        "Defaults", "EntryDeadlineHour", fallback=DEFAULT_ENTRY_DEADLINE_HOUR)
    if not 0 <= deadline_hour <= 23:
        raise ValueError(f"EntryDeadlineHour must be between 0 and 23, got {deadline_hour}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        default_user=default_user,
        entry_deadline_hour=deadline_hour,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)
    log.debug("Saved workbook to '%s'", dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def validate_workbook(workbook: Workbook) -> None:
    """Check that every managed sheet exists with the expected header row.

    Raises:
        KeyError: If a sheet is missing or its headers differ from
            :data:`SHEET_COLUMNS`.
    """

    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            log.error("Workbook is missing sheet '%s'", sheet_name)
            raise KeyError(f"Workbook is missing sheet: {sheet_name}")
        headers = [cell.value for cell in workbook[sheet_name][1]][: len(columns)]
        if headers != list(columns):
            raise KeyError(f"Unexpected headers on sheet {sheet_name}: {headers}")


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterator[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_warehouses(workbook: Workbook) -> Iterable[WarehouseRow]:
    for raw in _iter_sheet(workbook, SheetName.WAREHOUSES.value):
        yield deserialize_warehouse(raw)


def iter_contractors(workbook: Workbook) -> Iterable[ContractorRow]:
    for raw in _iter_sheet(workbook, SheetName.CONTRACTORS.value):
        yield deserialize_contractor(raw)


def iter_service_definitions(workbook: Workbook) -> Iterable[ServiceDefinitionRow]:
    for raw in _iter_sheet(workbook, SheetName.SERVICE_DEFINITIONS.value):
        yield deserialize_service_definition(raw)


def iter_contractor_services(workbook: Workbook) -> Iterable[ContractorServiceRow]:
    for raw in _iter_sheet(workbook, SheetName.CONTRACTOR_SERVICES.value):
        yield deserialize_contractor_service(raw)


def iter_pallet_types(workbook: Workbook) -> Iterable[PalletTypeRow]:
    for raw in _iter_sheet(workbook, SheetName.PALLET_TYPES.value):
        yield deserialize_pallet_type(raw)


def iter_service_prices(workbook: Workbook) -> Iterable[PriceRow]:
    """Stream service price history rows in sheet order."""

    for raw in _iter_sheet(workbook, SheetName.SERVICE_PRICES.value):
        yield deserialize_service_price(raw)


def iter_pallet_prices(workbook: Workbook) -> Iterable[PriceRow]:
    """Stream pallet price history rows in sheet order."""

    for raw in _iter_sheet(workbook, SheetName.PALLET_PRICES.value):
        yield deserialize_pallet_price(raw)


def iter_daily_records(workbook: Workbook) -> Iterable[DailyRecordRow]:
    """Stream ledger records, decoding the JSON ``Services`` cell of each row."""

    for raw in _iter_sheet(workbook, SheetName.DAILY_RECORDS.value):
        yield deserialize_daily_record(raw)


def iter_audit_entries(workbook: Workbook) -> Iterable[AuditRow]:
    for raw in _iter_sheet(workbook, SheetName.AUDIT_LOG.value):
        yield deserialize_audit_entry(raw)


def append_record(workbook: Workbook, record: Any) -> None:
    """Append any row dataclass to the sheet that stores its type.

    Raises:
        TypeError: If ``record`` is not a known row type.
    """

    sheet_name, serializer = _sheet_for(record)
    workbook[sheet_name].append(serializer(record))


def replace_record(workbook: Workbook, record: Any) -> None:
    """Overwrite the row whose key column matches the record's identifier.

    The key is always the first column of the sheet. Audit entries are
    append-only and cannot be replaced.

    Raises:
        TypeError: If ``record`` is an :class:`AuditRow` or an unknown type.
        KeyError: If no row carries the record's identifier.
    """

    if isinstance(record, AuditRow):
        raise TypeError("Audit entries are append-only")
    sheet_name, serializer = _sheet_for(record)
    values = serializer(record)
    key_column = SHEET_COLUMNS[sheet_name][0]
    row_index = locate_row(workbook, sheet_name, key_column, values[0])
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {values[0]}")

    sheet = workbook[sheet_name]
    for column_index, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column_index, value=value)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


# ---------------------------------------------------------------------------
# Service entry payloads
# ---------------------------------------------------------------------------


def service_to_payload(entry: ServiceEntry) -> Dict[str, Any]:
    """Convert a service entry into the JSON shape stored in the workbook."""

    if isinstance(entry, PalletMovement):
        return {
            "serviceId": entry.service_id,
            "palletEntries": [
                {"palletTypeId": pe.pallet_type_id, "qty": pe.qty, "note": pe.note}
                for pe in entry.pallet_entries
            ],
        }
    return {"serviceId": entry.service_id, "qty": entry.qty, "note": entry.note}


def service_from_payload(payload: Mapping[str, Any]) -> ServiceEntry:
    """Build a typed service entry from its stored JSON shape.

    Movement services (or any payload carrying ``palletEntries``) become
    :class:`PalletMovement`; everything else is a :class:`FlatService`.
    Missing quantities resolve to ``0`` and missing notes to ``""``.
    """

    service_id = str(payload.get("serviceId", ""))
    if service_id in MOVEMENT_SERVICE_IDS or "palletEntries" in payload:
        entries = tuple(
            PalletEntry(
                pallet_type_id=str(raw.get("palletTypeId", "")),
                qty=int(raw.get("qty") or 0),
                note=str(raw.get("note") or ""),
            )
            for raw in payload.get("palletEntries") or ()
        )
        return PalletMovement(service_id=service_id, pallet_entries=entries)
    return FlatService(
        service_id=service_id,
        qty=int(payload.get("qty") or 0),
        note=str(payload.get("note") or ""),
    )


def services_to_payload(services: Iterable[ServiceEntry]) -> List[Dict[str, Any]]:
    return [service_to_payload(entry) for entry in services]


def services_from_json(raw: object) -> Tuple[ServiceEntry, ...]:
    if raw is None or raw == "":
        return ()
    return tuple(service_from_payload(item) for item in json.loads(str(raw)))


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_warehouse(record: WarehouseRow) -> List[object]:
    return [record.warehouse_id, record.name, record.sort_order]


def serialize_contractor(record: ContractorRow) -> List[object]:
    return [
        record.contractor_id,
        record.name,
        record.is_active,
        json.dumps(list(record.accepted_pallet_types)),
    ]


def serialize_service_definition(record: ServiceDefinitionRow) -> List[object]:
    return [record.service_id, record.name, record.unit, record.description]


def serialize_contractor_service(record: ContractorServiceRow) -> List[object]:
    return [record.link_id, record.contractor_id, record.service_id, record.is_enabled]


def serialize_pallet_type(record: PalletTypeRow) -> List[object]:
    return [record.pallet_type_id, record.name, record.dimensions, record.max_load]


def serialize_service_price(record: PriceRow) -> List[object]:
    return [
        record.price_id,
        record.contractor_id,
        record.item_id,
        record.effective_from.isoformat(),
        record.price_per_unit,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
    ]


def serialize_pallet_price(record: PriceRow) -> List[object]:
    return [
        record.price_id,
        record.contractor_id,
        record.item_id,
        record.direction,
        record.effective_from.isoformat(),
        record.price_per_unit,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
    ]


def serialize_daily_record(record: DailyRecordRow) -> List[object]:
    """Convert a ledger record into sheet columns; services become JSON text."""

    return [
        record.record_id,
        record.contractor_id,
        record.warehouse_id,
        record.day.isoformat(),
        json.dumps(services_to_payload(record.services)),
        record.manually_completed,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
        record.version,
    ]


def serialize_audit_entry(record: AuditRow) -> List[object]:
    """Convert an audit entry into sheet columns.

    ``Decimal`` and ``date`` values inside the diff are written as strings.
    """

    return [
        record.audit_id,
        record.timestamp.isoformat(),
        record.user_id,
        record.action,
        record.entity_type,
        record.entity_key,
        json.dumps(record.diff, default=str),
    ]


# ---------------------------------------------------------------------------
# Deserialization
# ---------------------------------------------------------------------------


def _text(raw: object, default: str = "") -> str:
    return str(raw) if raw is not None else default


def _to_int(raw: object) -> int:
    return int(raw) if raw is not None and raw != "" else 0


def _to_decimal(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None and raw != "" else Decimal("0")


def _to_day(raw: object) -> date:
    # Excel may hand back real date cells when a sheet was edited by hand.
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw))


def _to_timestamp(raw: object) -> datetime:
    if isinstance(raw, datetime):
        moment = raw
    else:
        moment = datetime.fromisoformat(str(raw))
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def deserialize_warehouse(raw_row: Sequence[object]) -> WarehouseRow:
    return WarehouseRow(
        warehouse_id=_text(raw_row[0]),
        name=_text(raw_row[1]),
        sort_order=_to_int(raw_row[2]),
    )


def deserialize_contractor(raw_row: Sequence[object]) -> ContractorRow:
    accepted_raw = raw_row[3]
    accepted = tuple(json.loads(str(accepted_raw))) if accepted_raw else ()
    return ContractorRow(
        contractor_id=_text(raw_row[0]),
        name=_text(raw_row[1]),
        is_active=bool(raw_row[2]),
        accepted_pallet_types=tuple(str(item) for item in accepted),
    )


def deserialize_service_definition(raw_row: Sequence[object]) -> ServiceDefinitionRow:
    return ServiceDefinitionRow(
        service_id=_text(raw_row[0]),
        name=_text(raw_row[1]),
        unit=_text(raw_row[2]),
        description=_text(raw_row[3]),
    )


def deserialize_contractor_service(raw_row: Sequence[object]) -> ContractorServiceRow:
    return ContractorServiceRow(
        link_id=_text(raw_row[0]),
        contractor_id=_text(raw_row[1]),
        service_id=_text(raw_row[2]),
        is_enabled=bool(raw_row[3]),
    )


def deserialize_pallet_type(raw_row: Sequence[object]) -> PalletTypeRow:
    return PalletTypeRow(
        pallet_type_id=_text(raw_row[0]),
        name=_text(raw_row[1]),
        dimensions=_text(raw_row[2]),
        max_load=_text(raw_row[3]),
    )


def deserialize_service_price(raw_row: Sequence[object]) -> PriceRow:
    price_id, contractor_id, service_id, effective_from, price, created_at, updated_at = raw_row[:7]
    return PriceRow(
        price_id=_text(price_id),
        contractor_id=_text(contractor_id),
        item_id=_text(service_id),
        direction=None,
        effective_from=_to_day(effective_from),
        price_per_unit=_to_decimal(price),
        created_at=_to_timestamp(created_at),
        updated_at=_to_timestamp(updated_at),
    )


def deserialize_pallet_price(raw_row: Sequence[object]) -> PriceRow:
    (
        price_id,
        contractor_id,
        pallet_type_id,
        direction,
        effective_from,
        price,
        created_at,
        updated_at,
    ) = raw_row[:8]
    return PriceRow(
        price_id=_text(price_id),
        contractor_id=_text(contractor_id),
        item_id=_text(pallet_type_id),
        direction=_text(direction),
        effective_from=_to_day(effective_from),
        price_per_unit=_to_decimal(price),
        created_at=_to_timestamp(created_at),
        updated_at=_to_timestamp(updated_at),
    )


def deserialize_daily_record(raw_row: Sequence[object]) -> DailyRecordRow:
    (
        record_id,
        contractor_id,
        warehouse_id,
        day,
        services,
        manually_completed,
        created_at,
        updated_at,
        version,
    ) = raw_row[:9]
    return DailyRecordRow(
        record_id=_text(record_id),
        contractor_id=_text(contractor_id),
        warehouse_id=_text(warehouse_id),
        day=_to_day(day),
        services=services_from_json(services),
        manually_completed=bool(manually_completed),
        created_at=_to_timestamp(created_at),
        updated_at=_to_timestamp(updated_at),
        version=_to_int(version) or 1,
    )


def deserialize_audit_entry(raw_row: Sequence[object]) -> AuditRow:
    audit_id, timestamp, user_id, action, entity_type, entity_key, diff = raw_row[:7]
    return AuditRow(
        audit_id=_text(audit_id),
        timestamp=_to_timestamp(timestamp),
        user_id=_text(user_id),
        action=_text(action),
        entity_type=_text(entity_type),
        entity_key=_text(entity_key),
        diff=json.loads(str(diff)) if diff else {},
    )


def _sheet_for(record: Any) -> Tuple[str, Callable[[Any], List[object]]]:
    if isinstance(record, PriceRow):
        if record.direction is None:
            return SheetName.SERVICE_PRICES.value, serialize_service_price
        return SheetName.PALLET_PRICES.value, serialize_pallet_price
    try:
        return _ROW_SHEETS[type(record)]
    except KeyError as exc:
        raise TypeError(f"Unsupported record type: {type(record).__name__}") from exc


_ROW_SHEETS: Dict[type, Tuple[str, Callable[[Any], List[object]]]] = {
    WarehouseRow: (SheetName.WAREHOUSES.value, serialize_warehouse),
    ContractorRow: (SheetName.CONTRACTORS.value, serialize_contractor),
    ServiceDefinitionRow: (SheetName.SERVICE_DEFINITIONS.value, serialize_service_definition),
    ContractorServiceRow: (SheetName.CONTRACTOR_SERVICES.value, serialize_contractor_service),
    PalletTypeRow: (SheetName.PALLET_TYPES.value, serialize_pallet_type),
    DailyRecordRow: (SheetName.DAILY_RECORDS.value, serialize_daily_record),
    AuditRow: (SheetName.AUDIT_LOG.value, serialize_audit_entry),
}

