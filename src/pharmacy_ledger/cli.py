"""Command-line entry points for the pharmacy ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front-end that wants to expose
the package capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reporting
from .constants import EntityKind, PaymentMethod, PaymentStatus, PurchaseOrderStatus


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pharmacy-cli",
        description="Command-line tools for the pharmacy ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini at or above the cwd).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and purchase orders."""
    specs = {
        "add-vendor": register_add_vendor_command(subparsers),
        "add-medicine": register_add_medicine_command(subparsers),
        "archive-medicine": register_archive_medicine_command(subparsers),
        "sale": register_sale_command(subparsers),
        "purchase-order": register_purchase_order_command(subparsers),
        "receive-order": register_receive_order_command(subparsers),
        "cancel-order": register_cancel_order_command(subparsers),
        "pay": register_pay_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "sales": register_sales_command(subparsers),
        "payments": register_payments_command(subparsers),
        "vendors": register_vendors_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def parse_money(raw: str) -> Decimal:
    """argparse type for monetary amounts."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}") from exc


def parse_sale_item(raw: str) -> core_logic.SaleItemCommand:
    """argparse type for ``MEDICINE_ID:QUANTITY``."""
    medicine_id, sep, quantity = raw.rpartition(":")
    if not sep or not medicine_id:
        raise argparse.ArgumentTypeError(f"expected MEDICINE_ID:QUANTITY, got {raw!r}")
    try:
        return core_logic.SaleItemCommand(medicine_id=medicine_id, quantity=int(quantity))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid quantity in {raw!r}") from exc


def parse_order_item(raw: str) -> core_logic.PurchaseOrderItemCommand:
    """argparse type for ``MEDICINE_ID:QUANTITY:UNIT_PRICE``."""
    parts = raw.rsplit(":", 2)
    if len(parts) != 3 or not parts[0]:
        raise argparse.ArgumentTypeError(f"expected MEDICINE_ID:QUANTITY:UNIT_PRICE, got {raw!r}")
    medicine_id, quantity, unit_price = parts
    try:
        return core_logic.PurchaseOrderItemCommand(
            medicine_id=medicine_id,
            quantity=int(quantity),
            unit_price=Decimal(unit_price),
        )
    except (ValueError, InvalidOperation) as exc:
        raise argparse.ArgumentTypeError(f"invalid quantity or price in {raw!r}") from exc


# ---------------------------------------------------------------------------
# Write commands
# ---------------------------------------------------------------------------


def register_add_vendor_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-vendor``."""
    name = "add-vendor"
    help_text = "Register a new vendor in the Vendors sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vendor-id", required=True)
        parser.add_argument("--vendor-name", required=True)
        parser.add_argument("--contact-person", default=None)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--email", default=None)
        parser.add_argument("--address", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_vendor)


def register_add_medicine_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-medicine``."""
    name = "add-medicine"
    help_text = "Register a medicine from its first purchase intake."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--medicine-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--vendor-id", required=True)
        parser.add_argument("--stock", type=int, required=True)
        parser.add_argument("--price", type=parse_money, required=True)
        parser.add_argument("--purchase-price", type=parse_money, required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--paid", type=parse_money, default=Decimal("0"))
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_medicine)


def register_archive_medicine_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``archive-medicine``."""
    name = "archive-medicine"
    help_text = "Archive (or with --restore, reactivate) a medicine."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--medicine-id", required=True)
        parser.add_argument("--restore", action="store_true", help="Reactivate instead of archiving.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_archive_medicine)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale of one or more medicines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_sale_item,
            required=True,
            metavar="MEDICINE_ID:QUANTITY",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--customer", default=None)
        parser.add_argument("--discount", type=parse_money, default=Decimal("0"))
        parser.add_argument("--paid", type=parse_money, default=None, help="Initial payment on a credit sale.")
        parser.add_argument("--sold-by", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_purchase_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase-order``."""
    name = "purchase-order"
    help_text = "Place a pending purchase order with a vendor."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vendor-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_order_item,
            required=True,
            metavar="MEDICINE_ID:QUANTITY:UNIT_PRICE",
        )
        parser.add_argument("--paid", type=parse_money, default=Decimal("0"))
        parser.add_argument("--ordered-by", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase_order)


def register_receive_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``receive-order``."""
    name = "receive-order"
    help_text = "Mark a pending purchase order as received and credit stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_receive_order)


def register_cancel_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cancel-order``."""
    name = "cancel-order"
    help_text = "Cancel a pending purchase order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel_order)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Apply a payment to a medicine, purchase order, or credit sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in EntityKind], required=True)
        parser.add_argument("--entity-id", required=True)
        parser.add_argument("--amount", type=parse_money, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay)


# ---------------------------------------------------------------------------
# Read commands
# ---------------------------------------------------------------------------


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display stock levels and the low-stock summary."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--threshold", type=int, default=None)
        parser.add_argument("--all", dest="include_inactive", action="store_true", help="Include archived medicines.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report, mutates=False)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Display sales totals and the daily sales series."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--days", type=int, default=None)
        parser.add_argument(
            "--credit",
            choices=[member.value for member in PaymentStatus],
            default=None,
            help="Also list credit sales with this payment status.",
        )
        parser.add_argument("--customer", default=None, help="Also list sales whose customer name contains this text.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report, mutates=False)


def register_payments_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payments``."""
    name = "payments"
    help_text = "Display payment status summaries, payables, and receivables."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--kind",
            choices=[member.value for member in EntityKind],
            default=EntityKind.PURCHASE_ORDER.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payments_report, mutates=False)


def register_vendors_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``vendors``."""
    name = "vendors"
    help_text = "Display vendors and the vendor summary."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--orders",
            choices=[member.value for member in PurchaseOrderStatus],
            default=None,
            help="Also list purchase orders with this status.",
        )
        parser.add_argument(
            "--transactions",
            metavar="VENDOR_ID",
            default=None,
            help="Also list the purchase and payment history of this vendor.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_vendors_report, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context; without a path config.ini is searched upward from the cwd."""
    return core_logic.load_runtime_context(config_path)


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


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def translate_add_vendor(args: argparse.Namespace) -> core_logic.VendorCommand:
    """Translate CLI args into a vendor command object."""
    return core_logic.VendorCommand(
        vendor_id=args.vendor_id,
        name=args.vendor_name,
        contact_person=args.contact_person,
        phone=args.phone,
        email=args.email,
        address=args.address,
    )


def translate_add_medicine(args: argparse.Namespace) -> core_logic.MedicineIntakeCommand:
    """Translate CLI args into a medicine intake command object."""
    return core_logic.MedicineIntakeCommand(
        medicine_id=args.medicine_id,
        name=args.name,
        vendor_id=args.vendor_id,
        stock=args.stock,
        price=args.price,
        purchase_price=args.purchase_price,
        category=args.category,
        initial_paid=args.paid,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        items=tuple(args.items),
        payment_method=PaymentMethod(args.payment_method),
        customer=args.customer,
        discount=args.discount,
        initial_paid=args.paid,
        sold_by=args.sold_by,
        notes=args.notes,
    )


def translate_purchase_order(args: argparse.Namespace) -> core_logic.PurchaseOrderCommand:
    """Translate CLI args into a purchase order command object."""
    return core_logic.PurchaseOrderCommand(
        vendor_id=args.vendor_id,
        items=tuple(args.items),
        initial_paid=args.paid,
        ordered_by=args.ordered_by,
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def run_add_vendor(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-vendor workflow in the BLL."""
    vendor = core_logic.register_vendor(context, translate_add_vendor(args))
    print(f"Vendor {vendor.vendor_id} registered.")
    return 0


def run_add_medicine(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the medicine intake workflow in the BLL."""
    medicine = core_logic.register_medicine(context, translate_add_medicine(args))
    print(f"Medicine {medicine.medicine_id} registered with stock {medicine.stock} (due {medicine.due_amount}).")
    return 0


def run_archive_medicine(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the archive or restore workflow in the BLL."""
    if args.restore:
        core_logic.restore_medicine(context, args.medicine_id)
    else:
        core_logic.archive_medicine(context, args.medicine_id)
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    sale = core_logic.record_sale(context, translate_sale(args))
    print(f"Sale {sale.sale_id}: total {sale.final_amount}, due {sale.due_amount}.")
    return 0


def run_purchase_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase order workflow via the BLL."""
    order = core_logic.record_purchase_order(context, translate_purchase_order(args))
    print(f"Purchase order {order.order_number} ({order.order_id}): total {order.total_amount}.")
    return 0


def run_receive_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase order receipt workflow via the BLL."""
    core_logic.complete_purchase_order(context, args.order_id)
    return 0


def run_cancel_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase order cancellation workflow via the BLL."""
    core_logic.cancel_purchase_order(context, args.order_id)
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow via the BLL."""
    state = core_logic.apply_payment(context, EntityKind(args.kind), args.entity_id, args.amount)
    print(f"Paid {state.paid_amount}, due {state.due_amount}, status {state.payment_status.value}.")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    for medicine in core_logic.list_medicines(context, include_inactive=args.include_inactive):
        print(f"{medicine.medicine_id}\t{medicine.name}\t{medicine.stock}")
    summary = reporting.get_stock_summary(context, args.threshold)
    print(f"Total {summary['total']}, low stock {summary['low_stock']}, out of stock {summary['out_of_stock']}.")
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sales reporting workflow."""
    for bucket in reporting.get_sales_summary(context, args.days):
        print(f"{bucket['date']}\t{bucket['count']}\t{bucket['total_amount']}")
    totals = reporting.get_sales_totals(context)
    print(f"All time: {totals['count']} sales, {totals['total_amount']}.")
    if args.credit is not None:
        for sale in core_logic.list_credit_sales(context, status=args.credit):
            print(f"{sale.sale_id}\t{sale.customer or ''}\t{sale.final_amount}\t{sale.due_amount}")
    if args.customer is not None:
        for sale in core_logic.find_sales_by_customer(context, args.customer):
            print(f"{sale.sale_id}\t{sale.customer}\t{sale.payment_method}\t{sale.final_amount}")
    return 0


def run_payments_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment status reporting workflow."""
    summary = reporting.get_payment_summary(context, EntityKind(args.kind))
    for status, bucket in summary.items():
        print(f"{status}\t{bucket['count']}\t{bucket['amount']}")
    print(f"Payables {reporting.get_payables_total(context)}, receivables {reporting.get_receivables_total(context)}.")
    return 0


def run_vendors_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the vendor reporting workflow."""
    for vendor in core_logic.list_vendors(context, include_inactive=True):
        print(f"{vendor.vendor_id}\t{vendor.name}\t{'active' if vendor.is_active else 'inactive'}")
    summary = reporting.get_vendor_summary(context)
    print(f"Total {summary['total']}, active {summary['active']}, with dues {summary['with_dues']}.")
    if args.orders is not None:
        for order in core_logic.list_purchase_orders(context, status=args.orders):
            print(f"{order.order_number}\t{order.vendor_id}\t{order.total_amount}\t{order.due_amount}")
    if args.transactions is not None:
        for entry in core_logic.list_vendor_transactions(context, args.transactions):
            print(f"{entry.timestamp_iso}\t{entry.transaction_type}\t{entry.entity_id}\t{entry.amount}\t{entry.due_amount}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("[%s] %s", error.rule, error)
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
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
