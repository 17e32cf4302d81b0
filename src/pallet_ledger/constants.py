"""Enumerations and fixed thresholds shared across the pallet ledger.

The data access layer, the pricing/revenue engine and the CLI all import their
identifiers from here so that sheet names, service ids and audit actions have
a single source of truth.
"""

from __future__ import annotations

from enum import Enum


# Schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Warehouse filter value meaning "every warehouse the contractor uses".
ALL_WAREHOUSES = "all"

# Stock trend windows and dead band (percent).
TREND_WINDOW_DAYS = 15
TREND_DEAD_BAND = 2
AVERAGE_STOCK_WINDOW_DAYS = 30

TOP_N = 5
DEFAULT_ENTRY_DEADLINE_HOUR = 12


class ServiceId(str, Enum):
    """Service ids with built-in meaning to the revenue engine."""

    PALLETS_IN = "pallets-in"
    PALLETS_OUT = "pallets-out"
    STORAGE = "storage"


# Movement services carry per-pallet-type entries instead of a flat quantity.
MOVEMENT_SERVICE_IDS = frozenset({ServiceId.PALLETS_IN.value, ServiceId.PALLETS_OUT.value})
# Services never billed as "additional".
BUILTIN_SERVICE_IDS = MOVEMENT_SERVICE_IDS | {ServiceId.STORAGE.value}


class Direction(str, Enum):
    """Pallet price slot: ``in`` bills movements, ``out`` bills storage."""

    IN = "in"
    OUT = "out"


class ServiceUnit(str, Enum):
    """Units of measure for service definitions."""

    PALLET = "PALLET"
    HOUR = "HOUR"
    PIECE = "PIECE"
    KM = "KM"


class AuditAction(str, Enum):
    """Actions written to the audit log."""

    CREATE_INVENTORY = "CREATE_INVENTORY"
    UPDATE_INVENTORY = "UPDATE_INVENTORY"
    MARK_DAY_COMPLETED = "MARK_DAY_COMPLETED"
    ADD_PRICE = "ADD_PRICE"
    UPDATE_PRICE = "UPDATE_PRICE"
    ADD_PALLET_PRICE = "ADD_PALLET_PRICE"
    UPDATE_PALLET_PRICE = "UPDATE_PALLET_PRICE"


class EntityType(str, Enum):
    """Entity types referenced by audit entries."""

    DAILY_INVENTORY = "DailyInventory"
    SERVICE_PRICE = "ServicePrice"
    PALLET_PRICE = "PalletPrice"


class LineCategory(str, Enum):
    """Revenue line categories used by the itemised daily report."""

    MOVEMENT = "movement"
    TRANSPORT = "transport"
    ADDITIONAL = "additional"
    STORAGE = "storage"


class TrendDirection(str, Enum):
    """Classification of a stock trend."""

    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    WAREHOUSES = "Warehouses"
    CONTRACTORS = "Contractors"
    SERVICE_DEFINITIONS = "ServiceDefinitions"
    CONTRACTOR_SERVICES = "ContractorServices"
    PALLET_TYPES = "PalletTypes"
    SERVICE_PRICES = "ServicePrices"
    PALLET_PRICES = "PalletPrices"
    DAILY_RECORDS = "DailyRecords"
    AUDIT_LOG = "AuditLog"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ALL_WAREHOUSES",
    "TREND_WINDOW_DAYS",
    "TREND_DEAD_BAND",
    "AVERAGE_STOCK_WINDOW_DAYS",
    "TOP_N",
    "DEFAULT_ENTRY_DEADLINE_HOUR",
    "ServiceId",
    "MOVEMENT_SERVICE_IDS",
    "BUILTIN_SERVICE_IDS",
    "Direction",
    "ServiceUnit",
    "AuditAction",
    "EntityType",
    "LineCategory",
    "TrendDirection",
    "SheetName",
]
