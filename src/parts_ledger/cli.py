"""Command-line entry points for the parts ledger.

All orchestration here is argparse wiring plus translating arguments into the
calls and command objects the business layer consumes. The CLI plays the
role of a checkout screen: it picks products, suggests prices and computes
sale totals before handing the sale to the recorder.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log, summaries
from .constants import Category
from .data_manager import CartItem, ExternalProduct, MechanicLabor


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="parts-ledger",
        description="Inventory, checkout and daily closing for the parts shop ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
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
    """Declare mutating CLI commands such as sales and restocks."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "restock": register_restock_command(subparsers),
        "sale": register_sale_command(subparsers),
        "expense": register_expense_command(subparsers),
        "close-day": register_close_day_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as stock and summaries."""
    specs = {
        "search": register_search_command(subparsers),
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "daily": register_daily_command(subparsers),
        "monthly": register_monthly_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_spec(
    name: str,
    help_text: str,
    configure: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--category", choices=[member.value for member in Category], required=True)
        parser.add_argument("--cost-price", required=True)

    return _simple_spec("add-product", "Register a new product in the catalog.", configure, run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--category", choices=[member.value for member in Category], default=None)
        parser.add_argument("--cost-price", default=None)

    return _simple_spec("update-product", "Edit fields of an existing product.", configure, run_update_product)


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)

    return _simple_spec("restock", "Add units to a product's stock.", configure, run_restock)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            action="append",
            default=[],
            metavar="PRODUCT_ID:QTY[:UNIT_PRICE]",
            help="Catalog item; the unit price defaults to cost times the configured margin.",
        )
        parser.add_argument(
            "--external",
            action="append",
            default=[],
            metavar="NAME:COST:PRICE",
            help="Item sold without catalog backing.",
        )
        parser.add_argument("--mechanic-name", default=None)
        parser.add_argument("--mechanic-amount", default=None)

    return _simple_spec("sale", "Record a checkout.", configure, run_sale)


def register_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expense``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--concept", required=True)
        parser.add_argument("--amount", required=True)

    return _simple_spec("expense", "Record an expense.", configure, run_expense)


def register_close_day_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``close-day``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--date", default=None, help="YYYY-MM-DD (defaults to today).")

    return _simple_spec("close-day", "Freeze the summary of a day.", configure, run_close_day)


def register_search_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``search``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("query")
        parser.add_argument("--limit", type=int, default=None)
        parser.add_argument("--in-stock", action="store_true", help="Hide products with no stock.")

    return _simple_spec("search", "Search products by name or category.", configure, run_search)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    return _simple_spec("stock", "Display stock levels and inventory value.", lambda parser: None, run_stock_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--threshold", type=int, default=None)

    return _simple_spec("low-stock", "List products at or below the low-stock threshold.", configure, run_low_stock_report)


def register_daily_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``daily``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--date", default=None, help="YYYY-MM-DD (defaults to today).")

    return _simple_spec("daily", "Display the summary of a day.", configure, run_daily_report)


def register_monthly_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``monthly``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--year", type=int, required=True)
        parser.add_argument("--month", type=int, required=True, help="Calendar month, 1-12.")

    return _simple_spec("monthly", "Display the summary of a month.", configure, run_monthly_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


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
# Translators
# ---------------------------------------------------------------------------


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into ``create_product`` keyword arguments."""
    return {
        "name": args.name,
        "quantity": args.quantity,
        "category": args.category,
        "cost_price": core_logic.to_money(args.cost_price),
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Keep only the fields the user actually passed."""
    fields: Dict[str, Any] = {}
    if args.name is not None:
        fields["name"] = args.name
    if args.quantity is not None:
        fields["quantity"] = args.quantity
    if args.category is not None:
        fields["category"] = args.category
    if args.cost_price is not None:
        fields["cost_price"] = core_logic.to_money(args.cost_price)
    return fields


def parse_item_spec(context: core_logic.RuntimeContext, raw: str) -> CartItem:
    """Turn ``PRODUCT_ID:QTY[:UNIT_PRICE]`` into a cart line.

    Raises:
        ValueError: If the text is malformed.
        core_logic.MissingReferenceError: If the product is unknown.
    """
    parts = raw.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid item '{raw}', expected PRODUCT_ID:QTY[:UNIT_PRICE]")
    product = core_logic.get_product(context, parts[0])
    try:
        quantity = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Invalid quantity in item '{raw}'") from exc
    if len(parts) == 3:
        sale_price = core_logic.to_money(parts[2])
    else:
        sale_price = core_logic.suggested_sale_price(product.cost_price, context.settings.default_margin)
    return CartItem(product=product, quantity=quantity, sale_price=sale_price)


def parse_external_spec(raw: str) -> ExternalProduct:
    """Turn ``NAME:COST:PRICE`` into an external product; names may contain colons."""
    parts = raw.rsplit(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid external product '{raw}', expected NAME:COST:PRICE")
    name, cost, price = parts
    return ExternalProduct(name=name, cost_price=core_logic.to_money(cost), sale_price=core_logic.to_money(price))


def translate_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.SaleCommand:
    """Build a sale command, computing totals the way the checkout screen does."""
    items = [parse_item_spec(context, raw) for raw in args.item]
    external = [parse_external_spec(raw) for raw in args.external]
    labor = None
    if args.mechanic_name is not None or args.mechanic_amount is not None:
        if args.mechanic_name is None or args.mechanic_amount is None:
            raise ValueError("Mechanic labor needs both --mechanic-name and --mechanic-amount")
        labor = MechanicLabor(
            enabled=True,
            mechanic_name=args.mechanic_name,
            amount=core_logic.to_money(args.mechanic_amount),
        )
    totals = core_logic.calculate_checkout_totals(items, external, labor)
    return core_logic.SaleCommand(
        items=tuple(items),
        external_products=tuple(external),
        mechanic_labor=labor,
        total_amount=totals.total_amount,
        total_cost=totals.total_cost,
        profit=totals.profit,
    )


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    return core_logic.ExpenseCommand(concept=args.concept, amount=core_logic.to_money(args.amount))


def _target_day(context: core_logic.RuntimeContext, raw: Optional[str]):
    return summaries.today(context) if raw is None else raw


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def format_money(amount: Decimal) -> str:
    """Render an amount with thousands separators, e.g. ``$ 450.000``."""
    whole = amount.quantize(Decimal("1"))
    return "$ " + f"{whole:,}".replace(",", ".")


def render_product(product: data_manager.ProductRecord) -> str:
    return (
        f"{product.product_id}  {product.name}  [{product.category}]  "
        f"qty={product.quantity}  cost={format_money(product.cost_price)}"
    )


def render_daily_summary(summary: summaries.DailySummary) -> list[str]:
    status = "CLOSED" if summary.closed else "open"
    lines = [
        f"Day {summary.date} ({status})",
        f"  Sales:     {format_money(summary.total_sales)} ({len(summary.sales)} sales)",
        f"  Cost:      {format_money(summary.total_cost)}",
        f"  Expenses:  {format_money(summary.total_expenses)}",
        f"  Mechanics: {format_money(summary.total_mechanic_payments)}",
    ]
    for detail in summary.mechanic_details:
        lines.append(f"    - {detail.name}: {format_money(detail.amount)}")
    lines.append(f"  Profit:    {format_money(summary.profit)}")
    return lines


def render_monthly_summary(summary: summaries.MonthlySummary) -> list[str]:
    return [
        f"Month {summary.month}",
        f"  Sales:     {format_money(summary.total_sales)} ({summary.sales_count} sales)",
        f"  Cost:      {format_money(summary.total_cost)}",
        f"  Expenses:  {format_money(summary.total_expenses)}",
        f"  Mechanics: {format_money(summary.total_mechanic_payments)}",
        f"  Profit:    {format_money(summary.profit)}",
    ]


def _emit(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.create_product(context, **translate_add_product(args))
    _emit([render_product(product)])
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow; unknown ids exit with 5."""
    product = core_logic.update_product(context, args.product_id, **translate_update_product(args))
    if product is None:
        log.error("Unknown product id: %s", args.product_id)
        return 5
    _emit([render_product(product)])
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restock workflow; unknown ids exit with 5."""
    product = core_logic.add_stock(context, args.product_id, args.quantity)
    if product is None:
        log.error("Unknown product id: %s", args.product_id)
        return 5
    _emit([render_product(product)])
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    sale = core_logic.record_sale(context, translate_sale(context, args))
    _emit([
        f"Sale {sale.sale_id} at {sale.date}",
        f"  Total:  {format_money(sale.total_amount)}",
        f"  Profit: {format_money(sale.profit)}",
    ])
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expense workflow via the BLL."""
    expense = core_logic.record_expense(context, translate_expense(args))
    _emit([f"Expense {expense.expense_id}: {expense.concept} {format_money(expense.amount)}"])
    return 0


def run_close_day(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the day-closing workflow."""
    summary = summaries.close_daily_summary(context, _target_day(context, args.date))
    _emit(render_daily_summary(summary))
    return 0


def run_search(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the product search."""
    results = core_logic.search_products(context, args.query, limit=args.limit, in_stock_only=args.in_stock)
    _emit(render_product(product) for product in results)
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    _emit(render_product(product) for product in core_logic.list_products(context))
    valuation = core_logic.inventory_valuation(context)
    _emit([
        f"{valuation.product_count} products, {valuation.total_units} units, "
        f"value {format_money(valuation.total_value)}"
    ])
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low-stock reporting workflow."""
    _emit(render_product(product) for product in core_logic.low_stock_products(context, args.threshold))
    return 0


def run_daily_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily summary report."""
    _emit(render_daily_summary(summaries.daily_summary(context, _target_day(context, args.date))))
    return 0


def run_monthly_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the monthly summary report; ``--month`` is 1-based."""
    _emit(render_monthly_summary(summaries.monthly_summary(context, args.year, args.month - 1)))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, ValueError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
