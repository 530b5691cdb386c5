"""Business logic layer for the parts ledger.

This module holds the product catalog and the transaction recorder. Every
function receives a :class:`RuntimeContext` carrying the settings and the
store, reads whole collections through the data access layer, and writes
whole collections back. Sales and expenses are append-only.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, tzinfo
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import data_manager, dates, log, set_log_level
from .constants import DEFAULT_MARGIN, EXPECTED_SCHEMA_VERSION, Category
from .data_manager import (
    CartItem,
    DailySummaryRecord,
    ExpenseRecord,
    ExternalProduct,
    MechanicLabor,
    ProductRecord,
    SaleRecord,
)


EDITABLE_PRODUCT_FIELDS = frozenset({"name", "quantity", "category", "cost_price"})
PROTECTED_PRODUCT_FIELDS = frozenset({"product_id", "created_at", "updated_at"})


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the store used by the ledger."""

    settings: data_manager.ConfigSettings
    store: Any
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class SaleCommand:
    """Checkout intent; the three totals are computed by the caller."""

    items: Sequence[CartItem]
    total_amount: Decimal
    total_cost: Decimal
    profit: Decimal
    external_products: Sequence[ExternalProduct] = ()
    mechanic_labor: Optional[MechanicLabor] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    concept: str
    amount: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CheckoutTotals:
    total_amount: Decimal
    total_cost: Decimal
    profit: Decimal
    mechanic_payment: Decimal


@dataclass(frozen=True)
class InventoryValuation:
    product_count: int
    total_units: int
    total_value: Decimal


def shop_timezone(context: RuntimeContext) -> tzinfo:
    """Return the timezone that defines the shop's calendar days."""

    return dates.resolve_timezone(context.settings.timezone)


def _resolve_timestamp(candidate: Optional[datetime], tz: tzinfo) -> datetime:
    """Return ``candidate`` or the current time in ``tz``.

    Naive candidates are read as wall-clock time in ``tz`` so every stored
    timestamp carries an explicit offset.
    """

    if candidate is None:
        return datetime.now(tz)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=tz)
    return candidate


def _now_iso(context: RuntimeContext) -> str:
    return _resolve_timestamp(None, shop_timezone(context)).isoformat()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return the cache bucket for ``name``, creating it on first use."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Drop cache buckets after their collection was rewritten.

    Missing buckets are ignored so callers can invalidate unconditionally.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.store))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        bucket["all"] = list(data_manager.iter_sales(context.store))
        log.debug("Populated sales cache with %d entries", len(bucket["all"]))
    return bucket


def _ensure_expenses_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "expenses")
    if "all" not in bucket:
        bucket["all"] = list(data_manager.iter_expenses(context.store))
        log.debug("Populated expenses cache with %d entries", len(bucket["all"]))
    return bucket


def _ensure_summaries_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "daily_summaries")
    if "all" not in bucket:
        all_summaries = list(data_manager.iter_daily_summaries(context.store))
        bucket["all"] = all_summaries
        bucket["by_date"] = {summary.date: summary for summary in all_summaries}
        log.debug("Populated closed summaries cache with %d entries", len(all_summaries))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the workbook-backed store.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.

    Returns:
        RuntimeContext: Context ready for catalog, recorder and summary calls.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
        ValueError: When the configured timezone or log level is unknown.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    dates.resolve_timezone(settings.timezone)
    set_log_level(settings.log_level)
    store = data_manager.WorkbookStore(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reopen the workbook from disk and return a context with an empty cache."""

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    store = data_manager.WorkbookStore(context.settings.data_file, workbook)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work against a store written for another schema version.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Store schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Store schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def generate_record_id(prefix: str) -> str:
    """Return a fresh identifier such as ``P-3f2c...``."""

    return f"{prefix}-{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a stock movement is a strictly positive whole number.

    Raises:
        ValueError: If ``quantity`` is not an int or is zero or negative.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r", quantity)
        raise ValueError("Quantity must be a whole number")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r", quantity)
        raise ValueError("Quantity must be a whole number")
    if quantity < 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be zero or positive")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is a finite amount, zero or positive.

    Raises:
        ValueError: If ``amount`` is NaN, infinite or less than zero.
    """

    if not amount.is_finite():
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError(f"Amount must be a finite number, got {amount}")
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_text(value: str, label: str) -> str:
    text = (value or "").strip()
    if not text:
        log.error("Text validation failed for %s", label)
        raise ValueError(f"{label} must not be blank")
    return text


def to_money(value: Any) -> Decimal:
    """Coerce ints, strings and decimals into a finite ``Decimal``.

    Raises:
        ValueError: If ``value`` is not numeric, or is NaN or infinite.
    """

    if isinstance(value, bool):
        raise ValueError(f"Invalid monetary value: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            log.error("Monetary value is not numeric: %r", value)
            raise ValueError(f"Invalid monetary value: {value!r}") from exc
    if not amount.is_finite():
        log.error("Monetary value is not finite: %r", value)
        raise ValueError(f"Invalid monetary value: {value!r}")
    return amount


def normalize_category(value: str) -> str:
    """Return the canonical category label.

    Raises:
        ValueError: If ``value`` is not one of the catalog categories.
    """

    try:
        return Category(value).value
    except ValueError as exc:
        log.error("Unknown product category: %r", value)
        raise ValueError(f"Unknown category: {value!r}") from exc


# ---------------------------------------------------------------------------
# Product catalog
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[ProductRecord]:
    """Return the catalog in insertion order.

    The list is a copy, so callers may sort or filter it freely.
    """

    return list(_ensure_products_cache(context)["all"])


def find_product(context: RuntimeContext, product_id: str) -> Optional[ProductRecord]:
    return _ensure_products_cache(context)["by_id"].get(product_id)


def get_product(context: RuntimeContext, product_id: str) -> ProductRecord:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If ``product_id`` is not in the catalog.
    """

    product = find_product(context, product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def create_product(
    context: RuntimeContext,
    *,
    name: str,
    quantity: int,
    category: str,
    cost_price: Decimal,
) -> ProductRecord:
    """Register a new product in the catalog.

    The new record receives a fresh id and identical ``created_at`` and
    ``updated_at`` timestamps.

    Args:
        context (RuntimeContext): Active runtime context.
        name (str): Display name; must not be blank.
        quantity (int): Opening stock, zero or positive.
        category (str): One of the :class:`~parts_ledger.constants.Category`
            labels.
        cost_price (Decimal): Unit cost, zero or positive.

    Returns:
        ProductRecord: The stored product.

    Raises:
        ValueError: If any field fails validation. Nothing is written.
    """

    clean_name = require_text(name, "Product name")
    require_nonnegative_quantity(quantity)
    cost = to_money(cost_price)
    require_nonnegative_money(cost)
    category_label = normalize_category(category)

    now = _now_iso(context)
    product = ProductRecord(
        product_id=generate_record_id("P"),
        name=clean_name,
        quantity=quantity,
        category=category_label,
        cost_price=cost,
        created_at=now,
        updated_at=now,
    )
    products = list_products(context)
    products.append(product)
    data_manager.write_products(context.store, products)
    _invalidate_cache(context, "products")
    log.info(
        "Created product '%s' (%s, category=%s, quantity=%s, cost=%s)",
        product.product_id,
        product.name,
        product.category,
        product.quantity,
        product.cost_price,
    )
    return product


def _mutate_product(
    context: RuntimeContext,
    product_id: str,
    mutate: Callable[[ProductRecord], ProductRecord],
    *,
    action: str,
) -> Optional[ProductRecord]:
    """Apply ``mutate`` to one product and rewrite the catalog.

    Unknown ids leave the store untouched and return ``None``.
    """

    products = list_products(context)
    for index, product in enumerate(products):
        if product.product_id == product_id:
            break
    else:
        log.warning("%s ignored: unknown product id '%s'", action, product_id)
        return None

    updated = replace(mutate(product), updated_at=_now_iso(context))
    products[index] = updated
    data_manager.write_products(context.store, products)
    _invalidate_cache(context, "products")
    return updated


def update_product(context: RuntimeContext, product_id: str, **field_values: Any) -> Optional[ProductRecord]:
    """Merge ``field_values`` into an existing product.

    Only ``name``, ``quantity``, ``category`` and ``cost_price`` may change.
    ``updated_at`` is refreshed.

    Returns:
        ProductRecord | None: The updated product, or ``None`` when the id is
            unknown (no-op).

    Raises:
        ValueError: If a protected or unknown field is supplied, or a value
            fails validation.
    """

    protected = PROTECTED_PRODUCT_FIELDS.intersection(field_values)
    if protected:
        log.error("Attempted to change protected product fields: %s", sorted(protected))
        raise ValueError(f"Cannot change product fields: {', '.join(sorted(protected))}")
    unknown = set(field_values) - EDITABLE_PRODUCT_FIELDS
    if unknown:
        log.error("Unknown product fields supplied: %s", sorted(unknown))
        raise ValueError(f"Unknown product fields: {', '.join(sorted(unknown))}")

    changes: Dict[str, Any] = {}
    if "name" in field_values:
        changes["name"] = require_text(field_values["name"], "Product name")
    if "quantity" in field_values:
        require_nonnegative_quantity(field_values["quantity"])
        changes["quantity"] = field_values["quantity"]
    if "category" in field_values:
        changes["category"] = normalize_category(field_values["category"])
    if "cost_price" in field_values:
        cost = to_money(field_values["cost_price"])
        require_nonnegative_money(cost)
        changes["cost_price"] = cost

    updated = _mutate_product(
        context,
        product_id,
        lambda product: replace(product, **changes),
        action="update_product",
    )
    if updated is not None:
        log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(changes)) or "none")
    return updated


def add_stock(context: RuntimeContext, product_id: str, quantity: int) -> Optional[ProductRecord]:
    """Increase on-hand stock by ``quantity``; unknown ids are a no-op."""

    require_positive_quantity(quantity)
    updated = _mutate_product(
        context,
        product_id,
        lambda product: replace(product, quantity=product.quantity + quantity),
        action="add_stock",
    )
    if updated is not None:
        log.info("Restocked product '%s' by %s (now %s)", product_id, quantity, updated.quantity)
    return updated


def _deduct_stock(product: ProductRecord, quantity: int) -> ProductRecord:
    """Return ``product`` with ``quantity`` units removed, clamping at zero."""

    if quantity > product.quantity:
        log.warning(
            "Stock for product '%s' clamped at zero (on hand %s, requested %s)",
            product.product_id,
            product.quantity,
            quantity,
        )
    return replace(product, quantity=max(0, product.quantity - quantity))


def reduce_stock(context: RuntimeContext, product_id: str, quantity: int) -> Optional[ProductRecord]:
    """Decrease on-hand stock, clamping at zero.

    Selling more than is on hand is accepted; the shortfall is logged and the
    stock simply ends at zero.

    Returns:
        ProductRecord | None: The updated product, or ``None`` for an unknown
            id.

    Raises:
        ValueError: If ``quantity`` is not a positive whole number.
    """

    require_positive_quantity(quantity)
    updated = _mutate_product(
        context, product_id, lambda product: _deduct_stock(product, quantity), action="reduce_stock"
    )
    if updated is not None:
        log.info("Reduced stock of product '%s' by %s (now %s)", product_id, quantity, updated.quantity)
    return updated


def search_products(
    context: RuntimeContext,
    query: str,
    *,
    limit: Optional[int] = None,
    in_stock_only: bool = False,
) -> List[ProductRecord]:
    """Case-insensitive substring search over product name and category.

    Results keep catalog order. ``limit`` caps the result size and
    ``in_stock_only`` hides products with no stock, as the checkout picker
    does.
    """

    needle = (query or "").casefold()
    matches = [
        product
        for product in list_products(context)
        if needle in product.name.casefold() or needle in product.category.casefold()
    ]
    if in_stock_only:
        matches = [product for product in matches if product.quantity > 0]
    if limit is not None:
        matches = matches[:limit]
    return matches


def low_stock_products(context: RuntimeContext, threshold: Optional[int] = None) -> List[ProductRecord]:
    """Return products whose stock is at or below ``threshold``."""

    limit = context.settings.low_stock_threshold if threshold is None else threshold
    return [product for product in list_products(context) if product.quantity <= limit]


def inventory_valuation(context: RuntimeContext) -> InventoryValuation:
    """Summarize catalog size, units on hand and their value at cost."""

    products = list_products(context)
    return InventoryValuation(
        product_count=len(products),
        total_units=sum(product.quantity for product in products),
        total_value=sum((product.cost_price * product.quantity for product in products), Decimal("0")),
    )


# ---------------------------------------------------------------------------
# Transaction recorder
# ---------------------------------------------------------------------------


def list_sales(context: RuntimeContext) -> List[SaleRecord]:
    return list(_ensure_sales_cache(context)["all"])


def list_expenses(context: RuntimeContext) -> List[ExpenseRecord]:
    return list(_ensure_expenses_cache(context)["all"])


def list_closed_summaries(context: RuntimeContext) -> List[DailySummaryRecord]:
    """Return every closed-day snapshot in the order they were closed."""

    return list(_ensure_summaries_cache(context)["all"])


def find_closed_summary(context: RuntimeContext, day: date) -> Optional[DailySummaryRecord]:
    return _ensure_summaries_cache(context)["by_date"].get(day.isoformat())


def store_closed_summary(context: RuntimeContext, summary: DailySummaryRecord) -> None:
    """Persist ``summary`` as the snapshot for its date, replacing any older one."""

    summaries = [existing for existing in list_closed_summaries(context) if existing.date != summary.date]
    summaries.append(summary)
    data_manager.write_daily_summaries(context.store, summaries)
    _invalidate_cache(context, "daily_summaries")


def suggested_sale_price(cost_price: Decimal, margin: Optional[Decimal] = None) -> Decimal:
    """Default unit price offered at checkout: cost times the margin factor."""

    factor = DEFAULT_MARGIN if margin is None else to_money(margin)
    return to_money(cost_price) * factor


def calculate_checkout_totals(
    items: Sequence[CartItem],
    external_products: Sequence[ExternalProduct] = (),
    mechanic_labor: Optional[MechanicLabor] = None,
) -> CheckoutTotals:
    """Compute the totals a checkout screen submits with a sale.

    Cart lines contribute ``sale_price * quantity`` to the amount and the
    product cost price times quantity to the cost. External products count
    once each. Enabled mechanic labor reduces profit but not the amount.
    """

    cart_total = sum((item.sale_price * item.quantity for item in items), Decimal("0"))
    cart_cost = sum((item.product.cost_price * item.quantity for item in items), Decimal("0"))
    external_total = sum((ext.sale_price for ext in external_products), Decimal("0"))
    external_cost = sum((ext.cost_price for ext in external_products), Decimal("0"))
    mechanic_payment = (
        mechanic_labor.amount if mechanic_labor is not None and mechanic_labor.enabled else Decimal("0")
    )

    total_amount = cart_total + external_total
    total_cost = cart_cost + external_cost
    return CheckoutTotals(
        total_amount=total_amount,
        total_cost=total_cost,
        profit=total_amount - total_cost - mechanic_payment,
        mechanic_payment=mechanic_payment,
    )


def validate_sale_command(command: SaleCommand) -> None:
    """Check a sale before any stock is touched.

    Raises:
        ValueError: If the sale is empty, a line quantity is not positive, a
            money field is negative, or enabled mechanic labor lacks a name.
    """

    if not command.items and not command.external_products:
        log.error("Sale rejected: no items and no external products")
        raise ValueError("A sale needs at least one item or external product")
    for item in command.items:
        require_positive_quantity(item.quantity)
        require_nonnegative_money(to_money(item.sale_price))
    for ext in command.external_products:
        require_text(ext.name, "External product name")
        require_nonnegative_money(to_money(ext.cost_price))
        require_nonnegative_money(to_money(ext.sale_price))
    labor = command.mechanic_labor
    if labor is not None and labor.enabled:
        require_text(labor.mechanic_name, "Mechanic name")
        require_nonnegative_money(to_money(labor.amount))
    require_nonnegative_money(to_money(command.total_amount))
    require_nonnegative_money(to_money(command.total_cost))
    to_money(command.profit)


def build_sale_record(command: SaleCommand, *, sale_id: str, timestamp: datetime) -> SaleRecord:
    """Materialize a :class:`SaleCommand` into the record that gets stored.

    The totals are copied from the command verbatim; they are never
    recomputed here.
    """

    labor = command.mechanic_labor
    if labor is not None:
        labor = replace(labor, mechanic_name=labor.mechanic_name.strip(), amount=to_money(labor.amount))
    return SaleRecord(
        sale_id=sale_id,
        items=tuple(replace(item, sale_price=to_money(item.sale_price)) for item in command.items),
        external_products=tuple(
            replace(ext, cost_price=to_money(ext.cost_price), sale_price=to_money(ext.sale_price))
            for ext in command.external_products
        ),
        mechanic_labor=labor,
        total_amount=to_money(command.total_amount),
        total_cost=to_money(command.total_cost),
        profit=to_money(command.profit),
        date=timestamp.isoformat(),
    )


def _warn_if_day_closed(context: RuntimeContext, timestamp: datetime, kind: str) -> None:
    day = timestamp.astimezone(shop_timezone(context)).date()
    if find_closed_summary(context, day) is not None:
        log.warning("Recording %s on closed day %s; its summary will not change", kind, day.isoformat())


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleRecord:
    """Record a completed checkout.

    Every cart line deducts its quantity from the catalog with the same
    zero clamp as :func:`reduce_stock`. Deductions are independent: each one
    is applied even if an earlier one clamped, and lines whose product is no
    longer in the catalog are skipped. The updated catalog and the sale log
    are written together, so a failed write leaves both unchanged.

    Args:
        context (RuntimeContext): Active runtime context.
        command (SaleCommand): Items, external products, optional mechanic
            labor and the caller-computed totals.

    Returns:
        SaleRecord: The appended sale with its assigned id and timestamp.

    Raises:
        ValueError: If the command fails :func:`validate_sale_command`.
        data_manager.StorageError: If the store cannot be written.
    """

    validate_sale_command(command)
    timestamp = _resolve_timestamp(command.timestamp, shop_timezone(context))
    _warn_if_day_closed(context, timestamp, "sale")

    products = list_products(context)
    positions = {product.product_id: index for index, product in enumerate(products)}
    now = _now_iso(context)
    for item in command.items:
        index = positions.get(item.product.product_id)
        if index is None:
            log.warning("reduce_stock ignored: unknown product id '%s'", item.product.product_id)
            continue
        products[index] = replace(_deduct_stock(products[index], item.quantity), updated_at=now)
        log.info(
            "Reduced stock of product '%s' by %s (now %s)",
            item.product.product_id,
            item.quantity,
            products[index].quantity,
        )

    sale = build_sale_record(command, sale_id=generate_record_id("S"), timestamp=timestamp)
    sales = list_sales(context)
    sales.append(sale)
    data_manager.write_checkout(context.store, products, sales)
    _invalidate_cache(context, "products", "sales")
    log.info(
        "Recorded sale '%s' (%d items, %d external, amount=%s, profit=%s)",
        sale.sale_id,
        len(sale.items),
        len(sale.external_products),
        sale.total_amount,
        sale.profit,
    )
    return sale


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> ExpenseRecord:
    """Append an expense to the log. The catalog is not touched.

    Raises:
        ValueError: If the concept is blank or the amount negative.
    """

    concept = require_text(command.concept, "Expense concept")
    amount = to_money(command.amount)
    require_nonnegative_money(amount)
    timestamp = _resolve_timestamp(command.timestamp, shop_timezone(context))
    _warn_if_day_closed(context, timestamp, "expense")

    expense = ExpenseRecord(
        expense_id=generate_record_id("E"),
        concept=concept,
        amount=amount,
        date=timestamp.isoformat(),
    )
    expenses = list_expenses(context)
    expenses.append(expense)
    data_manager.write_expenses(context.store, expenses)
    _invalidate_cache(context, "expenses")
    log.info("Recorded expense '%s' (%s, amount=%s)", expense.expense_id, concept, amount)
    return expense
