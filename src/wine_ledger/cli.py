"""Command-line entry points for the wine shop ledger.

All orchestration in this module is limited to argparse wiring, translating
arguments into business-layer calls and printing their results. Every
sub-command is described by a :class:`CommandSpec` so that tests and other
front-ends can reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reports
from .constants import CashDeduction, ExtraTransactionType, Role, StockField

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="wine-ledger",
        description="Daily stock and cash ledger for wine shops.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    admin_specs = register_admin_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *admin_specs.values(), *read_specs.values()])


def _register_all(subparsers: SubParsers, specs: Dict[str, CommandSpec]) -> Dict[str, CommandSpec]:
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare staff commands that edit or submit a shop-day."""
    return _register_all(
        subparsers,
        {
            "add-shop": register_add_shop_command(subparsers),
            "add-product": register_add_product_command(subparsers),
            "open-day": register_open_day_command(subparsers),
            "set-stock": register_set_stock_command(subparsers),
            "set-cash": register_set_cash_command(subparsers),
            "set-digital": register_set_digital_command(subparsers),
            "add-extra": register_add_extra_command(subparsers),
            "add-credit": register_add_credit_command(subparsers),
            "lock": register_lock_command(subparsers),
            "request-unlock": register_request_unlock_command(subparsers),
            "archive-pdf": register_archive_pdf_command(subparsers),
        },
    )


def register_admin_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare admin-only workflow commands."""
    return _register_all(
        subparsers,
        {
            "approve": register_approve_command(subparsers),
            "reject": register_reject_command(subparsers),
            "unlock": register_unlock_command(subparsers),
            "approve-lock": register_approve_lock_command(subparsers),
        },
    )


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only reporting commands."""
    return _register_all(
        subparsers,
        {
            "summary": register_summary_command(subparsers),
            "deposits": register_deposits_command(subparsers),
            "pending": register_pending_command(subparsers),
            "debtors": register_debtors_command(subparsers),
        },
    )


# ---------------------------------------------------------------------------
# Shared argument groups
# ---------------------------------------------------------------------------


def add_day_arguments(parser: argparse.ArgumentParser) -> None:
    """Attach ``--shop-id`` and ``--date`` to a shop-day command."""
    parser.add_argument("--shop-id", default=None, help="Shop to work on (defaults to the first shop).")
    parser.add_argument(
        "--date",
        dest="entry_date",
        type=date.fromisoformat,
        default=None,
        help="Ledger date as YYYY-MM-DD (defaults to today).",
    )


def add_actor_arguments(parser: argparse.ArgumentParser, *, default_role: Role = Role.STAFF) -> None:
    """Attach ``--user`` and ``--role`` identifying who performs the action."""
    parser.add_argument("--user", default="cli", help="User id recorded on requests and in logs.")
    parser.add_argument(
        "--role",
        choices=[member.value for member in Role],
        default=default_role.value,
    )


def _make_spec(
    name: str,
    help_text: str,
    configure: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


# ---------------------------------------------------------------------------
# Command registrations
# ---------------------------------------------------------------------------


def register_add_shop_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-shop``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--shop-id", required=True)
        parser.add_argument("--shop-name", required=True)

    return _make_spec("add-shop", "Register a new shop.", configure, run_add_shop)


def register_add_product_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--shop-id", required=True)
        parser.add_argument("--brand-name", required=True)
        parser.add_argument("--product-type", required=True)
        parser.add_argument("--size-ml", type=int, required=True)
        parser.add_argument("--mrp", required=True)
        parser.add_argument("--inactive", action="store_true", help="Mark the product as inactive on creation.")

    return _make_spec("add-product", "Add a product to a shop's catalogue.", configure, run_add_product)


def register_open_day_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``open-day``."""
    return _make_spec(
        "open-day",
        "Open a shop-day, carrying forward the previous day's balances.",
        add_day_arguments,
        run_open_day,
    )


def register_set_stock_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``set-stock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--field", choices=[member.value for member in StockField], required=True)
        parser.add_argument("--value", type=int, required=True)

    return _make_spec("set-stock", "Set purchases, transfer or closing stock.", configure, run_set_stock)


def _denomination(raw: str) -> tuple[int, int]:
    face, _, count = raw.partition("=")
    try:
        return int(face), int(count)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected FACE=COUNT, got '{raw}'") from exc


def register_set_cash_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``set-cash``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser)
        parser.add_argument(
            "--denomination",
            type=_denomination,
            action="append",
            default=[],
            metavar="FACE=COUNT",
            help="Counted notes, e.g. 500=12. Repeatable.",
        )
        parser.add_argument("--coins", default=None)
        parser.add_argument("--bank-deposit", default=None)
        parser.add_argument("--cash-to-house", default=None)

    return _make_spec("set-cash", "Record counted cash and deductions.", configure, run_set_cash)


def register_set_digital_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``set-digital``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser)
        parser.add_argument("--channel", default=None, help="Digital channel (defaults to the first configured).")
        parser.add_argument("--amount", required=True)

    return _make_spec("set-digital", "Record a digital payment total.", configure, run_set_digital)


def register_add_extra_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-extra``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser)
        parser.add_argument(
            "--type",
            dest="transaction_type",
            choices=[member.value for member in ExtraTransactionType],
            required=True,
        )
        parser.add_argument("--description", default="")
        parser.add_argument("--amount", required=True)

    return _make_spec("add-extra", "Add an extra income or expense.", configure, run_add_extra)


def register_add_credit_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-credit``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser)
        parser.add_argument("--person", required=True)
        parser.add_argument("--amount", required=True)

    return _make_spec("add-credit", "Record goods given on credit.", configure, run_add_credit)


def register_lock_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``lock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser)

    return _make_spec("lock", "Lock the day and send it for approval.", configure, run_lock)


def register_request_unlock_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``request-unlock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser)

    return _make_spec("request-unlock", "Ask an admin to reopen a locked day.", configure, run_request_unlock)


def register_approve_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``approve``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_actor_arguments(parser, default_role=Role.ADMIN)
        parser.add_argument("--request-id", required=True)

    return _make_spec("approve", "Approve a pending lock or unlock request.", configure, run_approve)


def register_reject_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``reject``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_actor_arguments(parser, default_role=Role.ADMIN)
        parser.add_argument("--request-id", required=True)

    return _make_spec("reject", "Reject a pending request.", configure, run_reject)


def register_unlock_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``unlock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser, default_role=Role.ADMIN)

    return _make_spec("unlock", "Reopen a locked day.", configure, run_unlock)


def register_approve_lock_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``approve-lock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        add_day_arguments(parser)
        add_actor_arguments(parser, default_role=Role.ADMIN)

    return _make_spec("approve-lock", "Save, lock and approve a day in one step.", configure, run_approve_lock)


def register_archive_pdf_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``archive-pdf``."""
    return _make_spec("archive-pdf", "Index a rendered daily report.", add_day_arguments, run_archive_pdf)


def register_summary_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    return _make_spec("summary", "Display the daily dashboard summary.", add_day_arguments, run_summary)


def register_deposits_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``deposits``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--shop-id", default=None)
        parser.add_argument("--start", type=date.fromisoformat, default=None)
        parser.add_argument("--end", type=date.fromisoformat, default=None)
        parser.add_argument("--month", type=int, default=None)
        parser.add_argument("--year", type=int, default=None)

    return _make_spec("deposits", "List bank deposits and cash to house.", configure, run_deposits)


def register_pending_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``pending``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--shop-id", default=None)

    return _make_spec("pending", "List pending approval requests.", configure, run_pending)


def register_debtors_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``debtors``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--shop-id", default=None)
        parser.add_argument("--person", default=None, help="Show this person's credit history.")
        parser.add_argument("--prefix", default="", help="Filter debtor names by prefix.")

    return _make_spec("debtors", "List debtors or one debtor's history.", configure, run_debtors)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
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
# Translation helpers
# ---------------------------------------------------------------------------


def resolve_shop(context: core_logic.RuntimeContext, args: argparse.Namespace) -> str:
    """Use ``--shop-id`` when given, otherwise the session's shop selection."""
    shop_id = getattr(args, "shop_id", None)
    if shop_id:
        return shop_id
    return core_logic.resolve_shop_selection(context, core_logic.SessionPreferences())


def resolve_date(args: argparse.Namespace) -> date:
    return getattr(args, "entry_date", None) or date.today()


def translate_actor(args: argparse.Namespace) -> core_logic.Actor:
    """Translate ``--user``/``--role`` into an :class:`core_logic.Actor`."""
    return core_logic.Actor(user_id=args.user, role=Role(args.role))


def _open(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.ShopDay:
    return core_logic.open_shop_day(context, resolve_shop(context, args), resolve_date(args))


def _print_day(day: core_logic.ShopDay) -> None:
    result = day.result
    print(f"{day.shop_id} {day.entry_date.isoformat()} [{day.state.value}]")
    for line in day.stock_lines:
        print(
            f"  {line.product_id}: open={line.opening_stock} in={line.purchases} out={line.transfer} "
            f"close={line.closing_stock} sold={line.sold_qty} value={line.sale_value}"
        )
    print(f"  counter opening: {day.ledger.counter_opening}")
    print(f"  total sale value: {result.total_sale_value}")
    print(f"  counter closing: {result.counter_closing}")
    print(f"  physical cash: {result.physical_cash}")
    print(f"  cash status: {result.cash_status.value} {result.status_amount}")


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_shop(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-shop workflow in the BLL."""
    core_logic.add_shop(context, args.shop_id, args.shop_name)
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    core_logic.add_product(
        context,
        product_id=args.product_id,
        shop_id=args.shop_id,
        brand_name=args.brand_name,
        product_type=args.product_type,
        size_ml=args.size_ml,
        mrp=Decimal(args.mrp),
        is_active=not args.inactive,
    )
    return 0


def run_open_day(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Open a shop-day and report any carry-forward failures."""
    day = _open(context, args)
    _print_day(day)
    if day.carry_forward is not None and day.carry_forward.failures:
        for failure in day.carry_forward.failures:
            print(f"  carry-forward failed for {failure.product_id or 'cash ledger'}: {failure.reason}")
        return 2
    return 0


def run_set_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    day = core_logic.edit_stock_line(_open(context, args), args.product_id, args.field, args.value)
    _print_day(core_logic.save_shop_day(context, day, translate_actor(args)))
    return 0


def run_set_cash(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    day = _open(context, args)
    for face, count in args.denomination:
        day = core_logic.set_denomination(day, face, count)
    if args.coins is not None:
        day = core_logic.set_coins(day, Decimal(args.coins))
    if args.bank_deposit is not None:
        day = core_logic.set_cash_deduction(day, CashDeduction.BANK_DEPOSIT, Decimal(args.bank_deposit))
    if args.cash_to_house is not None:
        day = core_logic.set_cash_deduction(day, CashDeduction.CASH_TO_HOUSE, Decimal(args.cash_to_house))
    _print_day(core_logic.save_shop_day(context, day, translate_actor(args)))
    return 0


def run_set_digital(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    channel = args.channel or context.settings.digital_channels[0]
    day = core_logic.set_digital_payment(_open(context, args), channel, Decimal(args.amount))
    _print_day(core_logic.save_shop_day(context, day, translate_actor(args)))
    return 0


def run_add_extra(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    day = core_logic.add_extra_transaction(
        _open(context, args),
        args.transaction_type,
        args.description,
        Decimal(args.amount),
    )
    _print_day(core_logic.save_shop_day(context, day, translate_actor(args)))
    return 0


def run_add_credit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    day = core_logic.add_credit_entry(_open(context, args), args.person, Decimal(args.amount))
    _print_day(core_logic.save_shop_day(context, day, translate_actor(args)))
    return 0


def run_lock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    request = core_logic.lock_and_submit(context, _open(context, args), translate_actor(args))
    print(f"Locked {request.shop_id} {request.entry_date.isoformat()}; approval request {request.request_id}")
    return 0


def run_request_unlock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    request = core_logic.request_unlock(
        context,
        resolve_shop(context, args),
        resolve_date(args),
        translate_actor(args),
    )
    print(f"Unlock request {request.request_id} submitted")
    return 0


def run_approve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    request = core_logic.approve_request(context, args.request_id, translate_actor(args))
    print(f"Approved {request.request_type} request {request.request_id}")
    return 0


def run_reject(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    request = core_logic.reject_request(context, args.request_id, translate_actor(args))
    print(f"Rejected {request.request_type} request {request.request_id}")
    return 0


def run_unlock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    ledger = core_logic.unlock_directly(
        context,
        resolve_shop(context, args),
        resolve_date(args),
        translate_actor(args),
    )
    print(f"Unlocked {ledger.ledger_id}")
    return 0


def run_approve_lock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    ledger = core_logic.approve_and_lock(context, _open(context, args), translate_actor(args))
    print(f"Approved and locked {ledger.ledger_id}")
    return 0


def run_archive_pdf(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = reports.record_pdf_archive(context, resolve_shop(context, args), resolve_date(args))
    print(record.file_path)
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the dashboard summary report."""
    summary = reports.daily_summary(context, resolve_shop(context, args), resolve_date(args))
    print(f"{summary.shop_id} {summary.entry_date.isoformat()}")
    print(f"  counter opening: {summary.counter_opening}")
    print(f"  counter closing: {summary.counter_closing}")
    print(f"  total sale value: {summary.total_sale_value}")
    print(f"  closing stock value: {summary.closing_stock_value}")
    print(f"  bottles sold: {summary.total_bottles_sold}")
    for brand in summary.top_brands:
        print(f"  {brand.brand_name}: {brand.sold_qty} sold, {brand.sale_value}")
    for point in summary.trend:
        print(f"  {point.entry_date.isoformat()}: {point.total_sale_value}")
    return 0


def run_deposits(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the deposits report."""
    report = reports.deposits_report(
        context,
        shop_id=args.shop_id,
        start=args.start,
        end=args.end,
        month=args.month,
        year=args.year,
    )
    for row in report.rows:
        print(
            f"{row.entry_date.isoformat()} {row.shop_id} bank={row.amounts.bank_deposit} "
            f"house={row.amounts.cash_to_house}"
        )
    print(f"Total bank={report.grand_total.bank_deposit} house={report.grand_total.cash_to_house}")
    return 0


def run_pending(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the pending approvals listing."""
    for request in reports.pending_approvals(context, shop_id=args.shop_id):
        print(
            f"{request.request_id} {request.request_type} {request.shop_id} "
            f"{request.entry_date.isoformat()} by {request.requested_by}"
        )
    return 0


def run_debtors(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the debtor listing or a single debtor's history."""
    shop_id = resolve_shop(context, args)
    if args.person:
        history = reports.debtor_history(context, shop_id, args.person)
        for entry_date, amount in history.entries:
            print(f"{entry_date.isoformat()} {amount}")
        print(f"Total {history.total}")
        return 0
    for name in reports.debtor_names(context, shop_id, args.prefix):
        print(name)
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
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
