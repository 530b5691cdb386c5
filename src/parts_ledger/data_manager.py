"""Data access layer for the parts ledger.

This module owns everything that touches configuration files and durable
storage. Business rules belong in :mod:`parts_ledger.core_logic`.

The public API is organised around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Storage: a key -> JSON collection store, either kept in memory or backed by
   the ``.xlsx`` master workbook.
3. Records: typed dataclasses for every persisted entity plus the
   serializers that translate them to and from their JSON shape.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import openpyxl
import simplejson
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import DEFAULT_LOG_LEVEL, log
from .constants import DEFAULT_MARGIN, DEFAULT_TIMEZONE, LOW_STOCK_THRESHOLD, StoreKey


CONFIG_FILE_NAME = "config.ini"
SHEET_HEADER = ("Key", "Payload")
# Excel caps a cell at 32,767 characters; longer payloads spill into the
# following columns of the same row.
CELL_TEXT_LIMIT = 32_000


class StorageError(RuntimeError):
    """Raised when the durable store cannot be read or written."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    timezone: str = DEFAULT_TIMEZONE
    low_stock_threshold: int = LOW_STOCK_THRESHOLD
    default_margin: Decimal = DEFAULT_MARGIN
    log_level: str = DEFAULT_LOG_LEVEL


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductRecord:
    """Catalog entry with its current stock level."""

    product_id: str
    name: str
    quantity: int
    category: str
    cost_price: Decimal
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class CartItem:
    """Sale line item holding a copy of the product as it was when sold."""

    product: ProductRecord
    quantity: int
    sale_price: Decimal


@dataclass(frozen=True)
class ExternalProduct:
    """One-off item sold without catalog backing."""

    name: str
    cost_price: Decimal
    sale_price: Decimal


@dataclass(frozen=True)
class MechanicLabor:
    """Labor charged on a sale and owed to a named mechanic."""

    enabled: bool
    mechanic_name: str
    amount: Decimal


@dataclass(frozen=True)
class SaleRecord:
    sale_id: str
    items: tuple[CartItem, ...]
    external_products: tuple[ExternalProduct, ...]
    mechanic_labor: Optional[MechanicLabor]
    total_amount: Decimal
    total_cost: Decimal
    profit: Decimal
    date: str


@dataclass(frozen=True)
class ExpenseRecord:
    expense_id: str
    concept: str
    amount: Decimal
    date: str


@dataclass(frozen=True)
class MechanicDetail:
    name: str
    amount: Decimal


@dataclass(frozen=True)
class DailySummaryRecord:
    """Aggregated view of one shop day; persisted only once closed."""

    date: str
    sales: tuple[SaleRecord, ...]
    expenses: tuple[ExpenseRecord, ...]
    total_sales: Decimal
    total_cost: Decimal
    total_expenses: Decimal
    total_mechanic_payments: Decimal
    mechanic_details: tuple[MechanicDetail, ...]
    profit: Decimal
    closed: bool


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the ledger.

    An explicit path is returned untouched so callers can deliberately target
    a non-standard location. Otherwise the search walks from the current
    working directory toward the filesystem root and returns the first
    ``config.ini`` it finds.

    Args:
        explicit_path (Path | None): Optional path to use instead of searching.

    Returns:
        Path: The explicit path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for candidate_dir in (current, *current.parents):
        candidate = candidate_dir / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion
            and resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` entries are optional
    and fall back to the package constants. A relative ``DataFile`` is
    anchored to ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory relative ``DataFile`` entries are
            resolved against.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional numeric entry cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    timezone = parser.get("Defaults", "Timezone", fallback=DEFAULT_TIMEZONE)
    log_level = parser.get("Defaults", "LogLevel", fallback=DEFAULT_LOG_LEVEL)
    low_stock_threshold = parser.getint("Defaults", "LowStockThreshold", fallback=LOW_STOCK_THRESHOLD)
    margin_raw = parser.get("Defaults", "DefaultMargin", fallback=str(DEFAULT_MARGIN))
    try:
        default_margin = Decimal(margin_raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid DefaultMargin value: {margin_raw!r}") from exc
    if not default_margin.is_finite() or default_margin <= 0:
        raise ValueError(f"DefaultMargin must be a positive number, got {margin_raw!r}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        timezone=timezone,
        low_stock_threshold=low_stock_threshold,
        default_margin=default_margin,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        StorageError: If the file exists but openpyxl cannot load it.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    try:
        return openpyxl.load_workbook(data_file)
    except (OSError, KeyError, ValueError) as exc:
        raise StorageError(f"Unable to load workbook '{data_file}': {exc}") from exc


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist ``workbook`` to ``destination``, creating parent folders.

    Raises:
        StorageError: If the file cannot be written.
    """

    dest = Path(destination).expanduser().resolve()
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(dest)
    except OSError as exc:
        log.error("Failed to save workbook '%s': %s", dest, exc)
        raise StorageError(f"Unable to save workbook '{dest}': {exc}") from exc


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved state."""

    return open_workbook(data_file)


def add_collection_sheet(workbook: Workbook, name: str, *, index: Optional[int] = None):
    """Create a collection worksheet with its bold header row."""

    sheet = workbook.create_sheet(title=name, index=index)
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(SHEET_HEADER, start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font
    return sheet


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


def _key_name(key: Union[StoreKey, str]) -> str:
    return key.value if isinstance(key, Enum) else str(key)


def _require_finite(value: Any) -> None:
    """Reject NaN and infinite decimals, which JSON numbers cannot carry."""

    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Out of range decimal: {value!r}")
    elif isinstance(value, Mapping):
        for item in value.values():
            _require_finite(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _require_finite(item)


def encode_payload(value: Any) -> str:
    """Encode ``value`` as JSON, writing decimals as exact JSON numbers.

    Raises:
        StorageError: If ``value`` holds something JSON cannot represent,
            including non-finite decimals.
    """

    try:
        _require_finite(value)
        return simplejson.dumps(
            value,
            use_decimal=True,
            allow_nan=False,
            ensure_ascii=False,
            separators=(",", ":"),
        )
    except (TypeError, ValueError) as exc:
        log.error("Refusing to store unencodable value: %s", exc)
        raise StorageError(f"Cannot encode value for storage: {exc}") from exc


def decode_payload(text: str) -> Any:
    """Decode JSON text, reading fractional numbers as ``Decimal``."""

    return simplejson.loads(text, use_decimal=True)


class MemoryStore:
    """In-process store that keeps each collection as encoded JSON text.

    Values are encoded on ``set`` and decoded on ``get`` so callers never
    share mutable state with the store, exactly as with the workbook.
    """

    def __init__(self, initial: Optional[Mapping[str, List[Any]]] = None) -> None:
        self._data: Dict[str, str] = {}
        for key, values in (initial or {}).items():
            self.set(key, values)

    def get(self, key: Union[StoreKey, str]) -> List[Any]:
        raw = self._data.get(_key_name(key))
        if raw is None:
            return []
        return decode_payload(raw)

    def set(self, key: Union[StoreKey, str], values: Sequence[Any]) -> None:
        self.set_many({key: values})

    def set_many(self, collections: Mapping[Union[StoreKey, str], Sequence[Any]]) -> None:
        """Replace several collections at once; nothing changes if any fails to encode."""

        encoded = {_key_name(key): encode_payload(list(values)) for key, values in collections.items()}
        self._data.update(encoded)

    def keys(self) -> List[str]:
        return list(self._data)


class WorkbookStore:
    """Store backed by the ``.xlsx`` master workbook.

    Every collection lives on the worksheet named after its key. Row 1 is the
    header, each following row holds one element: a readable label (the
    record id or date) in column A and its JSON payload from column B on.

    Writes are all or nothing. Every value is encoded before a worksheet is
    touched, and a failed save reloads the workbook from disk so the
    in-memory copy never drifts from the last saved state.
    """

    def __init__(self, data_file: Path, workbook: Optional[Workbook] = None) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self.workbook = workbook if workbook is not None else open_workbook(self.data_file)

    def get(self, key: Union[StoreKey, str]) -> List[Any]:
        name = _key_name(key)
        if name not in self.workbook.sheetnames:
            return []

        values: List[Any] = []
        sheet = self.workbook[name]
        for row_index, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
            chunks = [str(cell) for cell in row[1:] if cell is not None]
            if not chunks:
                continue
            try:
                values.append(decode_payload("".join(chunks)))
            except simplejson.JSONDecodeError as exc:
                raise StorageError(f"Corrupt payload on sheet '{name}' row {row_index}: {exc}") from exc
        return values

    def set(self, key: Union[StoreKey, str], values: Sequence[Any]) -> None:
        self.set_many({key: values})

    def set_many(self, collections: Mapping[Union[StoreKey, str], Sequence[Any]]) -> None:
        """Rewrite several worksheets and save them with a single workbook save.

        Raises:
            StorageError: If a value cannot be encoded (the workbook is left
                untouched) or the file cannot be saved (the workbook is
                reloaded from disk before the error propagates).
        """

        rows_by_sheet = {
            _key_name(key): [_encode_row(value) for value in values] for key, values in collections.items()
        }

        for name, rows in rows_by_sheet.items():
            self._replace_sheet(name, rows)

        try:
            save_workbook(self.workbook, self.data_file)
        except StorageError:
            self.workbook = refresh_workbook(self.data_file)
            raise
        for name, rows in rows_by_sheet.items():
            log.debug("Wrote %d rows to sheet '%s'", len(rows), name)

    def _replace_sheet(self, name: str, rows: Sequence[List[Any]]) -> None:
        if name in self.workbook.sheetnames:
            # replace the sheet wholesale, keeping its tab position
            position = self.workbook.sheetnames.index(name)
            self.workbook.remove(self.workbook[name])
            sheet = add_collection_sheet(self.workbook, name, index=position)
        else:
            log.info("Creating missing collection sheet '%s'", name)
            sheet = add_collection_sheet(self.workbook, name)

        for row in rows:
            sheet.append(row)
            for cell in sheet[sheet.max_row]:
                # keep payload fragments starting with "=" from becoming formulas
                if isinstance(cell.value, str):
                    cell.data_type = "s"


def _encode_row(value: Any) -> List[Any]:
    payload = encode_payload(value)
    chunks = [payload[i:i + CELL_TEXT_LIMIT] for i in range(0, len(payload), CELL_TEXT_LIMIT)]
    return [_row_label(value), *chunks]


def _row_label(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        label = value.get("id", value.get("date"))
        return None if label is None else str(label)
    return None


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


def _to_decimal(raw: Any) -> Decimal:
    if raw is None:
        return Decimal("0")
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise StorageError(f"Invalid numeric value in store: {raw!r}") from exc


def serialize_product(record: ProductRecord) -> Dict[str, Any]:
    return {
        "id": record.product_id,
        "name": record.name,
        "quantity": record.quantity,
        "category": record.category,
        "costPrice": record.cost_price,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
    }


def deserialize_product(raw: Mapping[str, Any]) -> ProductRecord:
    return ProductRecord(
        product_id=str(raw["id"]),
        name=str(raw["name"]),
        quantity=int(raw.get("quantity") or 0),
        category=str(raw["category"]),
        cost_price=_to_decimal(raw.get("costPrice")),
        created_at=str(raw["createdAt"]),
        updated_at=str(raw["updatedAt"]),
    )


def serialize_sale(record: SaleRecord) -> Dict[str, Any]:
    """Convert a sale into its camelCase JSON shape, nested records included."""

    labor = record.mechanic_labor
    return {
        "id": record.sale_id,
        "items": [
            {
                "product": serialize_product(item.product),
                "quantity": item.quantity,
                "salePrice": item.sale_price,
            }
            for item in record.items
        ],
        "externalProducts": [
            {"name": ext.name, "costPrice": ext.cost_price, "salePrice": ext.sale_price}
            for ext in record.external_products
        ],
        "mechanicLabor": None if labor is None else {
            "enabled": labor.enabled,
            "mechanicName": labor.mechanic_name,
            "amount": labor.amount,
        },
        "totalAmount": record.total_amount,
        "totalCost": record.total_cost,
        "profit": record.profit,
        "date": record.date,
    }


def deserialize_sale(raw: Mapping[str, Any]) -> SaleRecord:
    """Rebuild a :class:`SaleRecord`, normalizing every money field to Decimal."""

    labor_raw = raw.get("mechanicLabor")
    labor = None
    if labor_raw is not None:
        labor = MechanicLabor(
            enabled=bool(labor_raw.get("enabled")),
            mechanic_name=str(labor_raw.get("mechanicName") or ""),
            amount=_to_decimal(labor_raw.get("amount")),
        )
    return SaleRecord(
        sale_id=str(raw["id"]),
        items=tuple(
            CartItem(
                product=deserialize_product(item["product"]),
                quantity=int(item["quantity"]),
                sale_price=_to_decimal(item.get("salePrice")),
            )
            for item in raw.get("items") or ()
        ),
        external_products=tuple(
            ExternalProduct(
                name=str(ext["name"]),
                cost_price=_to_decimal(ext.get("costPrice")),
                sale_price=_to_decimal(ext.get("salePrice")),
            )
            for ext in raw.get("externalProducts") or ()
        ),
        mechanic_labor=labor,
        total_amount=_to_decimal(raw.get("totalAmount")),
        total_cost=_to_decimal(raw.get("totalCost")),
        profit=_to_decimal(raw.get("profit")),
        date=str(raw["date"]),
    )


def serialize_expense(record: ExpenseRecord) -> Dict[str, Any]:
    return {
        "id": record.expense_id,
        "concept": record.concept,
        "amount": record.amount,
        "date": record.date,
    }


def deserialize_expense(raw: Mapping[str, Any]) -> ExpenseRecord:
    return ExpenseRecord(
        expense_id=str(raw["id"]),
        concept=str(raw["concept"]),
        amount=_to_decimal(raw.get("amount")),
        date=str(raw["date"]),
    )


def serialize_daily_summary(record: DailySummaryRecord) -> Dict[str, Any]:
    return {
        "date": record.date,
        "sales": [serialize_sale(sale) for sale in record.sales],
        "expenses": [serialize_expense(expense) for expense in record.expenses],
        "totalSales": record.total_sales,
        "totalCost": record.total_cost,
        "totalExpenses": record.total_expenses,
        "totalMechanicPayments": record.total_mechanic_payments,
        "mechanicDetails": [
            {"name": detail.name, "amount": detail.amount} for detail in record.mechanic_details
        ],
        "profit": record.profit,
        "closed": record.closed,
    }


def deserialize_daily_summary(raw: Mapping[str, Any]) -> DailySummaryRecord:
    return DailySummaryRecord(
        date=str(raw["date"]),
        sales=tuple(deserialize_sale(sale) for sale in raw.get("sales") or ()),
        expenses=tuple(deserialize_expense(expense) for expense in raw.get("expenses") or ()),
        total_sales=_to_decimal(raw.get("totalSales")),
        total_cost=_to_decimal(raw.get("totalCost")),
        total_expenses=_to_decimal(raw.get("totalExpenses")),
        total_mechanic_payments=_to_decimal(raw.get("totalMechanicPayments")),
        mechanic_details=tuple(
            MechanicDetail(name=str(detail["name"]), amount=_to_decimal(detail.get("amount")))
            for detail in raw.get("mechanicDetails") or ()
        ),
        profit=_to_decimal(raw.get("profit")),
        closed=bool(raw.get("closed")),
    )


# ---------------------------------------------------------------------------
# Collection helpers
# ---------------------------------------------------------------------------


def iter_products(store) -> Iterable[ProductRecord]:
    """Yield catalog records in insertion order."""

    for raw in store.get(StoreKey.PRODUCTS):
        yield deserialize_product(raw)


def iter_sales(store) -> Iterable[SaleRecord]:
    for raw in store.get(StoreKey.SALES):
        yield deserialize_sale(raw)


def iter_expenses(store) -> Iterable[ExpenseRecord]:
    for raw in store.get(StoreKey.EXPENSES):
        yield deserialize_expense(raw)


def iter_daily_summaries(store) -> Iterable[DailySummaryRecord]:
    """Yield the closed-day snapshots kept in the store."""

    for raw in store.get(StoreKey.DAILY_SUMMARIES):
        yield deserialize_daily_summary(raw)


def write_products(store, records: Iterable[ProductRecord]) -> None:
    store.set(StoreKey.PRODUCTS, [serialize_product(record) for record in records])


def write_sales(store, records: Iterable[SaleRecord]) -> None:
    store.set(StoreKey.SALES, [serialize_sale(record) for record in records])


def write_expenses(store, records: Iterable[ExpenseRecord]) -> None:
    store.set(StoreKey.EXPENSES, [serialize_expense(record) for record in records])


def write_daily_summaries(store, records: Iterable[DailySummaryRecord]) -> None:
    store.set(StoreKey.DAILY_SUMMARIES, [serialize_daily_summary(record) for record in records])


def write_checkout(store, products: Iterable[ProductRecord], sales: Iterable[SaleRecord]) -> None:
    """Write the catalog and the sale log together in one store operation."""

    store.set_many(
        {
            StoreKey.PRODUCTS: [serialize_product(record) for record in products],
            StoreKey.SALES: [serialize_sale(record) for record in sales],
        }
    )
