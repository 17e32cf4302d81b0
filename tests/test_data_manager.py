"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
import json
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest
from openpyxl.workbook import Workbook as OpenpyxlWorkbook

from builders import daily_record, pallets_in, price_row
from pallet_ledger import constants, data_manager
from pallet_ledger.setup_workbook import build_master_workbook


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=pallet_ledger.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "CompanyName") == "Test Logistics"
    assert parser.get("Defaults", "DefaultUser") == "operator"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True, deadline_hour=9)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_user == "operator"
    assert settings.entry_deadline_hour == 9


def test_parse_settings_defaults_deadline_hour(tmp_path):
    """EntryDeadlineHour is optional and falls back to noon."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=book.xlsx\nCompanyName=X\nSchemaVersion=1.0.0\n[Defaults]\nDefaultUser=ann\n")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.entry_deadline_hour == constants.DEFAULT_ENTRY_DEADLINE_HOUR


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_invalid_deadline_hour(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=book.xlsx\nCompanyName=X\nSchemaVersion=1.0.0\n"
        "[Defaults]\nDefaultUser=ann\nEntryDeadlineHour=24\n")
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(workbook_factory):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(workbook_factory())
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_validate_workbook_detects_missing_sheets():
    """Workbooks without the managed sheets are rejected."""

    workbook = build_master_workbook()
    data_manager.validate_workbook(workbook)

    del workbook[constants.SheetName.DAILY_RECORDS.value]
    with pytest.raises(KeyError):
        data_manager.validate_workbook(workbook)


def test_validate_workbook_detects_changed_headers():
    workbook = build_master_workbook()
    workbook[constants.SheetName.WAREHOUSES.value]["B1"] = "Label"
    with pytest.raises(KeyError):
        data_manager.validate_workbook(workbook)


def test_append_and_read_daily_record():
    """Ledger rows round-trip through the sheet with their services decoded."""

    workbook = build_master_workbook()
    record = daily_record(
        "ctrA",
        "wh1",
        date(2026, 3, 2),
        pallets_in(("plt-euro", 10)),
        data_manager.FlatService("transport", 40, note="Berlin"),
    )

    data_manager.append_record(workbook, record)

    assert list(data_manager.iter_daily_records(workbook)) == [record]
    stored = workbook[constants.SheetName.DAILY_RECORDS.value]["E2"].value
    assert json.loads(stored) == [
        {"serviceId": "pallets-in", "palletEntries": [{"palletTypeId": "plt-euro", "qty": 10, "note": ""}]},
        {"serviceId": "transport", "qty": 40, "note": "Berlin"},
    ]


def test_price_rows_go_to_sheet_by_direction():
    """Service prices and pallet prices live on separate sheets."""

    workbook = build_master_workbook()
    service_price = price_row("ctrA", "transport", date(2026, 1, 1), "1.20")
    pallet_price = price_row("ctrA", "plt-euro", date(2026, 1, 1), "0.55", direction="out")

    data_manager.append_record(workbook, service_price)
    data_manager.append_record(workbook, pallet_price)

    assert list(data_manager.iter_service_prices(workbook)) == [service_price]
    assert list(data_manager.iter_pallet_prices(workbook)) == [pallet_price]


def test_replace_record_overwrites_matching_row():
    """replace_record should rewrite the row carrying the record id."""

    workbook = build_master_workbook()
    data_manager.append_record(workbook, data_manager.WarehouseRow("wh1", "Main", 1))
    data_manager.append_record(workbook, data_manager.WarehouseRow("wh2", "Overflow", 2))

    data_manager.replace_record(workbook, data_manager.WarehouseRow("wh1", "Main Hall", 5))

    assert list(data_manager.iter_warehouses(workbook)) == [
        data_manager.WarehouseRow("wh1", "Main Hall", 5),
        data_manager.WarehouseRow("wh2", "Overflow", 2),
    ]


def test_replace_record_rejects_audit_rows_and_unknown_ids():
    """Audit entries are append-only; missing rows are reported."""

    workbook = build_master_workbook()
    entry = data_manager.AuditRow("A1", datetime(2026, 1, 1, tzinfo=UTC), "ann", "ADD_PRICE", "ServicePrice", "k")

    with pytest.raises(TypeError):
        data_manager.replace_record(workbook, entry)
    with pytest.raises(KeyError):
        data_manager.replace_record(workbook, data_manager.WarehouseRow("ghost", "Ghost", 1))


def test_append_record_rejects_unknown_types():
    with pytest.raises(TypeError):
        data_manager.append_record(build_master_workbook(), object())


def test_audit_diff_values_are_stored_as_text():
    """Decimals and dates inside an audit diff are serialized as strings."""

    workbook = build_master_workbook()
    entry = data_manager.AuditRow(
        "A1",
        datetime(2026, 1, 1, 8, 0, tzinfo=UTC),
        "ann",
        "ADD_PRICE",
        "ServicePrice",
        "ctrA|transport",
        {"pricePerUnit": Decimal("1.20"), "effectiveFrom": date(2026, 1, 1)},
    )

    data_manager.append_record(workbook, entry)

    [read_back] = data_manager.iter_audit_entries(workbook)
    assert read_back.diff == {"pricePerUnit": "1.20", "effectiveFrom": "2026-01-01"}
    assert read_back.timestamp == entry.timestamp


def test_hand_edited_cells_are_tolerated():
    """Real date cells, naive timestamps and blank rows from manual edits still load."""

    workbook = build_master_workbook()
    sheet = workbook[constants.SheetName.SERVICE_PRICES.value]
    sheet.append(["P1", "ctrA", "transport", datetime(2026, 1, 1), 2, "2026-01-01T08:00:00", "2026-01-01T08:00:00"])
    sheet.append([None] * 7)

    [row] = data_manager.iter_service_prices(workbook)

    assert row.effective_from == date(2026, 1, 1)
    assert row.price_per_unit == Decimal("2")
    assert row.created_at == datetime(2026, 1, 1, 8, 0, tzinfo=UTC)


def test_service_from_payload_defaults_missing_fields():
    """Sparse payloads resolve to zero quantities and empty notes."""

    assert data_manager.service_from_payload({"serviceId": "pallets-out"}) == data_manager.PalletMovement("pallets-out")
    assert data_manager.service_from_payload({"serviceId": "transport"}) == data_manager.FlatService("transport", 0)


def test_save_workbook_creates_parent_directories(tmp_path):
    """save_workbook should write to nested destinations."""

    destination = tmp_path / "nested" / "book.xlsx"
    data_manager.save_workbook(build_master_workbook(), destination)

    assert destination.exists()
    assert constants.SheetName.AUDIT_LOG.value in openpyxl.load_workbook(destination).sheetnames
