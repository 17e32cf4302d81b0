"""Parsers for user-supplied values.

Each function accepts raw text and returns a typed value or raises
``ValueError``. They double as ``argparse`` ``type=`` callables, so malformed
input is rejected before it reaches the business layer.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Tuple

from .constants import BUILTIN_SERVICE_IDS, Direction
from .data_manager import FlatService, PalletEntry
from .dates import parse_month


def parse_quantity(raw: str) -> int:
    """Return a non-negative whole number of units."""

    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"Quantity must be a whole number: {raw!r}") from exc
    if value < 0:
        raise ValueError(f"Quantity must not be negative: {raw!r}")
    return value


def parse_price(raw: str) -> Decimal:
    """Return a non-negative finite unit price."""

    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid price: {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"Price must be a non-negative number: {raw!r}")
    return value


def parse_day(raw: str) -> date:
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid date: {raw!r} (expected YYYY-MM-DD)") from exc


def parse_month_arg(raw: str) -> str:
    """Validate ``YYYY-MM`` and return it zero-padded."""

    year, month = parse_month(str(raw).strip())
    return f"{year:04d}-{month:02d}"


def parse_direction(raw: str) -> str:
    value = str(raw).strip().lower()
    if value not in (Direction.IN.value, Direction.OUT.value):
        raise ValueError(f"Direction must be 'in' or 'out': {raw!r}")
    return value


def _split_assignment(raw: str) -> Tuple[str, int, str]:
    """Split ``ID=QTY`` or ``ID=QTY:note``."""

    text = str(raw)
    if "=" not in text:
        raise ValueError(f"Expected ID=QTY, got {raw!r}")
    item_id, _, rest = text.partition("=")
    qty_text, _, note = rest.partition(":")
    item_id = item_id.strip()
    if not item_id:
        raise ValueError(f"Missing id in {raw!r}")
    return item_id, parse_quantity(qty_text), note.strip()


def parse_pallet_entry(raw: str) -> PalletEntry:
    """Parse ``PALLET_TYPE=QTY[:note]`` into a :class:`PalletEntry`."""

    pallet_type_id, qty, note = _split_assignment(raw)
    return PalletEntry(pallet_type_id=pallet_type_id, qty=qty, note=note)


def parse_flat_service(raw: str) -> FlatService:
    """Parse ``SERVICE=QTY[:note]`` into a :class:`FlatService`.

    Pallet movements and storage have their own inputs and are refused here.
    """

    service_id, qty, note = _split_assignment(raw)
    if service_id in BUILTIN_SERVICE_IDS:
        raise ValueError(f"{service_id!r} is not a flat service")
    return FlatService(service_id=service_id, qty=qty, note=note)
