"""Domain constants shared by the store, the ledger and the CLI.

Keeping the category list and the collection keys here lets the persistence
layer and the business layer agree on identifiers without importing each
other.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Bumped whenever the shape of a persisted collection changes.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Suggested sale price is cost price times this factor (30% margin).
DEFAULT_MARGIN = Decimal("1.3")

LOW_STOCK_THRESHOLD = 5

DEFAULT_TIMEZONE = "UTC"


class Category(str, Enum):
    """Closed set of catalog categories offered at registration."""

    LIGHTS = "Luces"
    MIRRORS = "Espejos"
    ACCESSORIES = "Accesorios"
    ENGINE_PARTS = "Repuestos Motor"
    BRAKES = "Frenos"
    SUSPENSION = "Suspensión"
    ELECTRICAL = "Eléctricos"
    BODYWORK = "Carrocería"
    OTHER = "Otros"


class StoreKey(str, Enum):
    """Keys of the collections kept in the persistent store."""

    PRODUCTS = "products"
    SALES = "sales"
    EXPENSES = "expenses"
    DAILY_SUMMARIES = "daily-summaries"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_MARGIN",
    "LOW_STOCK_THRESHOLD",
    "DEFAULT_TIMEZONE",
    "Category",
    "StoreKey",
]
