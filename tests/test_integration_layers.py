"""Integration tests describing the end-to-end parts ledger workflows.

These scenarios run the catalog, the recorder and the summaries against a
real workbook on disk, reloading it between steps the way separate CLI
invocations would.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import openpyxl
import pytest

from parts_ledger import constants, core_logic, summaries
from parts_ledger.data_manager import CartItem, ExternalProduct, MechanicLabor


MORNING = datetime(2024, 3, 1, 14, 0, tzinfo=timezone.utc)
AFTERNOON = datetime(2024, 3, 1, 20, 0, tzinfo=timezone.utc)


def _register_sample_product(context: core_logic.RuntimeContext, *, name: str, quantity: int, cost: str):
    """Append a single product through the business logic layer."""

    return core_logic.create_product(
        context,
        name=name,
        quantity=quantity,
        category=constants.Category.LIGHTS,
        cost_price=Decimal(cost),
    )


def test_checkout_and_closing_flow(runtime_context):
    """Walk through stock, checkout, expenses and closing with reloads between steps."""

    context = runtime_context
    faro = _register_sample_product(context, name="Faro", quantity=10, cost="100000")

    # Reload so the next step reads what the previous one wrote to disk.
    context = core_logic.refresh_context(context)
    assert core_logic.list_products(context) == [faro]

    items = (CartItem(product=faro, quantity=3, sale_price=Decimal("150000")),)
    external = (ExternalProduct(name="Bombillo H4", cost_price=Decimal("8000"), sale_price=Decimal("12000")),)
    labor = MechanicLabor(enabled=True, mechanic_name="Juan", amount=Decimal("20000"))
    totals = core_logic.calculate_checkout_totals(items, external, labor)
    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            items=items,
            external_products=external,
            mechanic_labor=labor,
            total_amount=totals.total_amount,
            total_cost=totals.total_cost,
            profit=totals.profit,
            timestamp=MORNING,
        ),
    )
    expense = core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(concept="Arriendo", amount=Decimal("50000"), timestamp=AFTERNOON),
    )

    context = core_logic.refresh_context(context)
    assert core_logic.get_product(context, faro.product_id).quantity == 7
    assert core_logic.list_sales(context) == [sale]
    assert core_logic.list_expenses(context) == [expense]

    closed = summaries.close_daily_summary(context, "2024-03-01")
    assert closed.total_sales == Decimal("462000")
    assert closed.total_cost == Decimal("308000")
    assert closed.total_expenses == Decimal("50000")
    assert closed.total_mechanic_payments == Decimal("20000")
    assert closed.profit == Decimal("84000")

    context = core_logic.refresh_context(context)
    reloaded = summaries.daily_summary(context, "2024-03-01")
    assert reloaded == closed
    assert reloaded.closed is True
    assert reloaded.mechanic_details[0].name == "Juan"


def test_closed_snapshot_survives_later_sales_on_disk(runtime_context):
    context = runtime_context
    faro = _register_sample_product(context, name="Faro", quantity=10, cost="100000")

    def _sell(ctx, quantity, when):
        line = (CartItem(product=faro, quantity=quantity, sale_price=Decimal("150000")),)
        sums = core_logic.calculate_checkout_totals(line)
        return core_logic.record_sale(
            ctx,
            core_logic.SaleCommand(
                items=line,
                total_amount=sums.total_amount,
                total_cost=sums.total_cost,
                profit=sums.profit,
                timestamp=when,
            ),
        )

    _sell(context, 1, MORNING)
    closed = summaries.close_daily_summary(context, "2024-03-01")
    _sell(context, 2, AFTERNOON)

    context = core_logic.refresh_context(context)
    assert summaries.daily_summary(context, "2024-03-01") == closed
    assert summaries.monthly_summary(context, 2024, 2).sales_count == 2
    assert core_logic.get_product(context, faro.product_id).quantity == 7


def test_workbook_keeps_one_row_per_record(runtime_context):
    context = runtime_context
    _register_sample_product(context, name="Faro", quantity=1, cost="100")
    _register_sample_product(context, name="Stop", quantity=2, cost="200")
    core_logic.record_expense(
        context, core_logic.ExpenseCommand(concept="Luz", amount=Decimal("30000"), timestamp=MORNING)
    )

    workbook = openpyxl.load_workbook(context.settings.data_file)
    try:
        assert workbook.sheetnames == [key.value for key in constants.StoreKey]
        products = workbook[constants.StoreKey.PRODUCTS.value]
        assert products.max_row == 3
        labels = [row[0] for row in products.iter_rows(min_row=2, values_only=True)]
        assert all(label.startswith("P-") for label in labels)
        assert workbook[constants.StoreKey.EXPENSES.value].max_row == 2
        assert workbook[constants.StoreKey.SALES.value].max_row == 1
    finally:
        workbook.close()


def test_schema_version_guard_blocks_mismatched_store(config_factory):
    bundle = config_factory(schema_version="2.0.0")
    context = core_logic.load_runtime_context(bundle.config_path)
    with pytest.raises(RuntimeError, match="2.0.0"):
        core_logic.ensure_schema_version(context)


def test_relative_data_file_resolves_next_to_config(config_factory):
    bundle = config_factory(make_relative=True)
    context = core_logic.load_runtime_context(bundle.config_path)
    assert context.settings.data_file == bundle.workbook_path
    assert context.settings.shop_name == bundle.shop_name
