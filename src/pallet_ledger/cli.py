"""Command-line entry points for the pallet ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the calls and command objects consumed by the
business layer. Values are parsed by :mod:`pallet_ledger.validators` as
``type=`` callables, so malformed input never reaches the ledger.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import audit, core_logic, ledger, log, pricing, reporting, revenue, stock
from .constants import ALL_WAREHOUSES, TOP_N, ServiceId, ServiceUnit
from .data_manager import PalletMovement, ServiceEntry
from .validators import (
    parse_day,
    parse_direction,
    parse_flat_service,
    parse_month_arg,
    parse_pallet_entry,
    parse_price,
    parse_quantity,
)

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    ``writes`` marks commands whose changes must be saved to the workbook.
    ``check`` validates combinations of arguments that argparse cannot express
    and raises ``ValueError`` for invalid ones.
    """

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    writes: bool = True
    check: Optional[Callable[[argparse.Namespace], None]] = None


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pallet-ledger",
        description="Pallet movement ledger, pricing and revenue reports.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (default: searched upward from the working directory).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating commands: reference data, prices and ledger days."""
    specs = {
        "add-warehouse": register_add_warehouse_command(subparsers),
        "add-contractor": register_add_contractor_command(subparsers),
        "add-service": register_add_service_command(subparsers),
        "add-pallet-type": register_add_pallet_type_command(subparsers),
        "enable-service": register_enable_service_command(subparsers),
        "add-price": register_add_price_command(subparsers),
        "edit-price": register_edit_price_command(subparsers),
        "record": register_record_command(subparsers),
        "complete-day": register_complete_day_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as stock and revenue reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "revenue": register_revenue_command(subparsers),
        "summary": register_summary_command(subparsers),
        "top": register_top_command(subparsers),
        "report": register_report_command(subparsers),
        "history": register_history_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Write commands
# ---------------------------------------------------------------------------


def register_add_warehouse_command(subparsers: SubParsers) -> CommandSpec:
    name = "add-warehouse"
    help_text = "Register a warehouse."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--warehouse-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--sort-order", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_warehouse)


def register_add_contractor_command(subparsers: SubParsers) -> CommandSpec:
    name = "add-contractor"
    help_text = "Register a contractor; pallet movement services are enabled automatically."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--contractor-id", default=None, help="Defaults to a generated id.")
        parser.add_argument(
            "--pallet-type",
            dest="pallet_types",
            action="append",
            default=[],
            help="Accepted pallet type id (repeatable).",
        )
        parser.add_argument("--inactive", action="store_true", help="Mark the contractor as inactive on creation.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_contractor)


def register_add_service_command(subparsers: SubParsers) -> CommandSpec:
    name = "add-service"
    help_text = "Define a billable service."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--service-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--unit", required=True, choices=[unit.value for unit in ServiceUnit])
        parser.add_argument("--description", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_service)


def register_add_pallet_type_command(subparsers: SubParsers) -> CommandSpec:
    name = "add-pallet-type"
    help_text = "Define a pallet type."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--pallet-type-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--dimensions", default="")
        parser.add_argument("--max-load", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_pallet_type)


def register_enable_service_command(subparsers: SubParsers) -> CommandSpec:
    name = "enable-service"
    help_text = "Enable (or with --disable, disable) a service for a contractor."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", required=True)
        parser.add_argument("--service-id", required=True)
        parser.add_argument("--disable", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_enable_service)


def register_add_price_command(subparsers: SubParsers) -> CommandSpec:
    name = "add-price"
    help_text = "Add an effective-dated price for a service or a pallet type."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", required=True)
        target = parser.add_mutually_exclusive_group(required=True)
        target.add_argument("--service-id")
        target.add_argument("--pallet-type-id")
        parser.add_argument("--direction", type=parse_direction, default=None, help="in or out (pallet prices only).")
        parser.add_argument("--effective-from", type=parse_day, required=True)
        parser.add_argument("--price", type=parse_price, required=True)
        parser.add_argument("--user", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_add_price, check=check_add_price)


def register_edit_price_command(subparsers: SubParsers) -> CommandSpec:
    name = "edit-price"
    help_text = "Edit an existing price entry in place."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--price-id", required=True)
        parser.add_argument("--price", type=parse_price, default=None)
        parser.add_argument("--effective-from", type=parse_day, default=None)
        parser.add_argument("--user", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_edit_price, check=check_edit_price)


def register_record_command(subparsers: SubParsers) -> CommandSpec:
    name = "record"
    help_text = "Save the full service list of one ledger day (replaces what was stored)."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", required=True)
        parser.add_argument("--warehouse-id", required=True)
        parser.add_argument("--date", dest="day", type=parse_day, required=True)
        parser.add_argument(
            "--in",
            dest="pallets_in",
            type=parse_pallet_entry,
            action="append",
            default=[],
            metavar="PALLET_TYPE=QTY[:NOTE]",
        )
        parser.add_argument(
            "--out",
            dest="pallets_out",
            type=parse_pallet_entry,
            action="append",
            default=[],
            metavar="PALLET_TYPE=QTY[:NOTE]",
        )
        parser.add_argument(
            "--service",
            dest="services",
            type=parse_flat_service,
            action="append",
            default=[],
            metavar="SERVICE=QTY[:NOTE]",
        )
        parser.add_argument("--user", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_record)


def register_complete_day_command(subparsers: SubParsers) -> CommandSpec:
    name = "complete-day"
    help_text = "Mark a day without movement as entered."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", required=True)
        parser.add_argument("--warehouse-id", required=True)
        parser.add_argument("--date", dest="day", type=parse_day, required=True)
        parser.add_argument("--user", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_complete_day)


# ---------------------------------------------------------------------------
# Read commands
# ---------------------------------------------------------------------------


def register_stock_command(subparsers: SubParsers) -> CommandSpec:
    name = "stock"
    help_text = "Show stock per pallet type, 30-day average and trend."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", required=True)
        parser.add_argument("--warehouse-id", required=True)
        parser.add_argument("--date", dest="day", type=parse_day, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report, writes=False)


def register_revenue_command(subparsers: SubParsers) -> CommandSpec:
    name = "revenue"
    help_text = "Show the revenue breakdown for a day or a month."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", dest="contractor_ids", action="append", required=True)
        parser.add_argument("--warehouse-id", default=ALL_WAREHOUSES)
        period = parser.add_mutually_exclusive_group(required=True)
        period.add_argument("--date", dest="day", type=parse_day)
        period.add_argument("--month", type=parse_month_arg)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_revenue_report, writes=False)


def register_summary_command(subparsers: SubParsers) -> CommandSpec:
    name = "summary"
    help_text = "Monthly quantity and revenue per contractor and enabled service."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--month", type=parse_month_arg, required=True)
        parser.add_argument(
            "--contractor-id",
            dest="contractor_ids",
            action="append",
            default=None,
            help="Repeatable; defaults to every active contractor.",
        )
        parser.add_argument("--warehouse-id", default=ALL_WAREHOUSES)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report, writes=False)


def register_top_command(subparsers: SubParsers) -> CommandSpec:
    name = "top"
    help_text = "Rank contractors by monthly revenue or month-over-month growth."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--month", type=parse_month_arg, required=True)
        parser.add_argument("--by", choices=("revenue", "growth"), default="revenue")
        parser.add_argument("--warehouse-id", default=ALL_WAREHOUSES)
        parser.add_argument("--limit", type=parse_quantity, default=TOP_N)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_top_report, writes=False)


def register_report_command(subparsers: SubParsers) -> CommandSpec:
    name = "report"
    help_text = "Itemised daily revenue of one contractor for a month."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", required=True)
        parser.add_argument("--month", type=parse_month_arg, required=True)
        parser.add_argument("--warehouse-id", default=ALL_WAREHOUSES)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_contractor_report, writes=False)


def register_history_command(subparsers: SubParsers) -> CommandSpec:
    name = "history"
    help_text = "Show the audit log, or the history of one ledger day."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contractor-id", default=None)
        parser.add_argument("--warehouse-id", default=None)
        parser.add_argument("--date", dest="day", type=parse_day, default=None)
        parser.add_argument("--limit", type=parse_quantity, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_history_report,
        writes=False,
        check=check_history,
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations and check its schema."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Argument checks
# ---------------------------------------------------------------------------


def check_add_price(args: argparse.Namespace) -> None:
    """Pallet prices need a direction; service prices must not have one."""
    if args.pallet_type_id is not None and args.direction is None:
        raise ValueError("--direction is required for pallet type prices")
    if args.pallet_type_id is None and args.direction is not None:
        raise ValueError("--direction only applies to pallet type prices")


def check_edit_price(args: argparse.Namespace) -> None:
    if args.price is None and args.effective_from is None:
        raise ValueError("Nothing to change: pass --price and/or --effective-from")


def check_history(args: argparse.Namespace) -> None:
    given = [part is not None for part in (args.contractor_id, args.warehouse_id, args.day)]
    if any(given) and not all(given):
        raise ValueError("--contractor-id, --warehouse-id and --date must be given together")


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def translate_add_contractor(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "name": args.name,
        "contractor_id": args.contractor_id,
        "accepted_pallet_types": tuple(args.pallet_types),
        "is_active": not getattr(args, "inactive", False),
    }


def translate_add_price(args: argparse.Namespace) -> pricing.AddPriceCommand:
    """Translate CLI args into an add-price command object."""
    check_add_price(args)
    if args.pallet_type_id is not None:
        item_id, direction = args.pallet_type_id, args.direction
    else:
        item_id, direction = args.service_id, None
    return pricing.AddPriceCommand(
        contractor_id=args.contractor_id,
        item_id=item_id,
        effective_from=args.effective_from,
        price_per_unit=args.price,
        direction=direction,
        user_id=args.user,
    )


def translate_edit_price(args: argparse.Namespace) -> pricing.UpdatePriceCommand:
    check_edit_price(args)
    return pricing.UpdatePriceCommand(
        price_id=args.price_id,
        price_per_unit=args.price,
        effective_from=args.effective_from,
        user_id=args.user,
    )


def translate_record(args: argparse.Namespace) -> ledger.SaveInventoryCommand:
    """Translate CLI args into the complete service list of a day."""
    services: List[ServiceEntry] = []
    if args.pallets_in:
        services.append(PalletMovement(service_id=ServiceId.PALLETS_IN.value, pallet_entries=tuple(args.pallets_in)))
    if args.pallets_out:
        services.append(PalletMovement(service_id=ServiceId.PALLETS_OUT.value, pallet_entries=tuple(args.pallets_out)))
    services.extend(args.services)
    return ledger.SaveInventoryCommand(
        contractor_id=args.contractor_id,
        warehouse_id=args.warehouse_id,
        day=args.day,
        services=services,
        user_id=args.user,
    )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_warehouse(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.add_warehouse(
        context, warehouse_id=args.warehouse_id, name=args.name, sort_order=args.sort_order)
    print(f"Added warehouse {record.warehouse_id}")
    return 0


def run_add_contractor(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.add_contractor(context, **translate_add_contractor(args))
    print(f"Added contractor {record.contractor_id}")
    return 0


def run_add_service(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.add_service_definition(
        context, service_id=args.service_id, name=args.name, unit=args.unit, description=args.description)
    print(f"Added service {args.service_id}")
    return 0


def run_add_pallet_type(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.add_pallet_type(
        context,
        pallet_type_id=args.pallet_type_id,
        name=args.name,
        dimensions=args.dimensions,
        max_load=args.max_load,
    )
    print(f"Added pallet type {args.pallet_type_id}")
    return 0


def run_enable_service(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.get_contractor(context, args.contractor_id)
    core_logic.get_service_definition(context, args.service_id)
    core_logic.set_service_enabled(context, args.contractor_id, args.service_id, not args.disable)
    return 0


def run_add_price(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = pricing.add_price(context, translate_add_price(args))
    print(f"Added price {record.price_id}")
    return 0


def run_edit_price(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    pricing.update_price(context, translate_edit_price(args))
    return 0


def run_record(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = ledger.save_inventory(context, translate_record(args))
    print(f"Saved {record.day.isoformat()} (version {record.version})")
    return 0


def run_complete_day(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    ledger.mark_day_completed(context, args.contractor_id, args.warehouse_id, args.day, user_id=args.user)
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    levels = stock.stock_by_pallet_type(context, args.contractor_id, args.warehouse_id, args.day)
    average = stock.average_stock(context, args.contractor_id, args.warehouse_id, args.day)
    trend = stock.stock_trend(context, args.contractor_id, args.warehouse_id, args.day)

    print(f"Stock of {args.contractor_id} in {args.warehouse_id} on {args.day.isoformat()}")
    for pallet_type_id, qty in sorted(levels.items()):
        print(f"  {pallet_type_id}: {qty}")
    print(f"  total: {sum(levels.values())}")
    print(f"  30-day average: {average:.1f}")
    print(f"  trend: {trend.direction} ({trend.percent_change:+.1f}%)")
    return 0


def run_revenue_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if args.day is not None:
        breakdown = revenue.range_revenue(context, args.contractor_ids, args.warehouse_id, args.day, args.day)
        period = args.day.isoformat()
    else:
        breakdown = revenue.month_revenue(context, args.contractor_ids, args.warehouse_id, args.month)
        period = args.month

    print(f"Revenue {period} ({args.warehouse_id})")
    print(f"  movement:   {breakdown.movement}")
    print(f"  additional: {breakdown.additional}")
    print(f"  storage:    {breakdown.storage}")
    print(f"  total:      {breakdown.total}")
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    contractor_ids = args.contractor_ids or [c.contractor_id for c in core_logic.list_contractors(context)]
    for summary in reporting.monthly_summary(context, args.month, contractor_ids, args.warehouse_id):
        print(f"{summary.name} ({summary.contractor_id})")
        for service in summary.services:
            print(f"  {service.name}: qty {service.quantity}, revenue {service.revenue}")
        print(f"  total: {summary.breakdown.total}")
    return 0


def run_top_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if args.by == "growth":
        for rank, entry in enumerate(
                reporting.top_by_growth(context, args.month, args.warehouse_id, args.limit), start=1):
            growth = "NEW" if entry.is_new else f"{entry.growth_percent:+.1f}%"
            print(f"{rank}. {entry.name}: {growth} ({entry.previous} -> {entry.current})")
        return 0

    for rank, entry in enumerate(
            reporting.top_by_revenue(context, args.month, args.warehouse_id, args.limit), start=1):
        b = entry.breakdown
        print(f"{rank}. {entry.name}: {b.total} (movement {b.movement}, additional {b.additional}, storage {b.storage})")
    return 0


def run_contractor_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    report = reporting.contractor_daily_report(context, args.contractor_id, args.month, args.warehouse_id)
    print(f"{report.name} ({report.contractor_id}) {report.month} [{report.warehouse_id}]")
    for day in report.days:
        if not day.items:
            continue
        print(day.day.isoformat())
        for item in day.items:
            print(
                f"  [{item.category}] {item.name} x{item.quantity} @ {item.unit_price}"
                f" = {revenue.money(item.total)}"
            )
        print(f"  subtotal: {day.subtotal}")
    print(f"Grand total: {report.grand_total}")
    return 0


def run_history_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    check_history(args)
    if args.day is not None:
        entries = ledger.record_history(context, args.contractor_id, args.warehouse_id, args.day)
    else:
        entries = audit.list_entries(context)

    if args.limit is not None:
        entries = entries[: args.limit]
    for entry in entries:
        print(f"{entry.timestamp.isoformat()} {entry.user_id} {entry.action} {entry.entity_type} {entry.entity_key}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(f"Workbook is locked or read-only: {error}") from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    spec = command_table.get(getattr(args, "command", None))
    if spec is not None and spec.check is not None:
        try:
            spec.check(args)
        except ValueError as error:
            parser.error(str(error))
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].writes:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
