"""Daily and monthly financial summaries.

Summaries are derived on every read by filtering the sale and expense logs
and reducing them. The only stored summaries are closed days: once a day is
closed its snapshot is returned verbatim and later log entries for that date
no longer affect it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from . import core_logic, dates, log
from .core_logic import RuntimeContext
from .data_manager import DailySummaryRecord, ExpenseRecord, MechanicDetail, SaleRecord


DailySummary = DailySummaryRecord


@dataclass(frozen=True)
class MonthlySummary:
    """Month totals; mechanic payments are a flat sum with no breakdown."""

    month: str
    total_sales: Decimal
    total_cost: Decimal
    total_expenses: Decimal
    total_mechanic_payments: Decimal
    profit: Decimal
    sales_count: int


@dataclass(frozen=True)
class DayActivity:
    """Calendar marker for one day of a month view."""

    date: str
    has_sales: bool
    has_expenses: bool
    sales_total: Decimal


def today(context: RuntimeContext) -> date:
    """Current calendar date in the shop's timezone."""

    return datetime.now(core_logic.shop_timezone(context)).date()


def sales_on(context: RuntimeContext, day: dates.DayLike) -> List[SaleRecord]:
    """Sales whose timestamp falls on ``day`` in the shop timezone, in log order."""

    target = dates.parse_day(day)
    tz = core_logic.shop_timezone(context)
    return [sale for sale in core_logic.list_sales(context) if dates.local_date(sale.date, tz) == target]


def expenses_on(context: RuntimeContext, day: dates.DayLike) -> List[ExpenseRecord]:
    """Expenses recorded on ``day`` in the shop timezone."""

    target = dates.parse_day(day)
    tz = core_logic.shop_timezone(context)
    return [
        expense for expense in core_logic.list_expenses(context) if dates.local_date(expense.date, tz) == target
    ]


def _mechanic_payment(sale: SaleRecord) -> Decimal:
    labor = sale.mechanic_labor
    if labor is None or not labor.enabled:
        return Decimal("0")
    return labor.amount


def group_mechanic_payments(sales: Iterable[SaleRecord]) -> tuple[MechanicDetail, ...]:
    """Total enabled mechanic labor per mechanic name.

    Mechanics appear in the order they were first seen in ``sales``.
    """

    totals: Dict[str, Decimal] = {}
    for sale in sales:
        labor = sale.mechanic_labor
        if labor is None or not labor.enabled:
            continue
        totals[labor.mechanic_name] = totals.get(labor.mechanic_name, Decimal("0")) + labor.amount
    return tuple(MechanicDetail(name=name, amount=amount) for name, amount in totals.items())


def build_daily_summary(
    day: date,
    sales: Sequence[SaleRecord],
    expenses: Sequence[ExpenseRecord],
) -> DailySummaryRecord:
    """Reduce one day's sales and expenses into an open summary.

    ``profit`` is sales minus cost minus expenses minus mechanic payments.
    """

    total_sales = sum((sale.total_amount for sale in sales), Decimal("0"))
    total_cost = sum((sale.total_cost for sale in sales), Decimal("0"))
    total_expenses = sum((expense.amount for expense in expenses), Decimal("0"))
    mechanic_details = group_mechanic_payments(sales)
    total_mechanic_payments = sum((detail.amount for detail in mechanic_details), Decimal("0"))

    return DailySummaryRecord(
        date=day.isoformat(),
        sales=tuple(sales),
        expenses=tuple(expenses),
        total_sales=total_sales,
        total_cost=total_cost,
        total_expenses=total_expenses,
        total_mechanic_payments=total_mechanic_payments,
        mechanic_details=mechanic_details,
        profit=total_sales - total_cost - total_expenses - total_mechanic_payments,
        closed=False,
    )


def is_day_closed(context: RuntimeContext, day: dates.DayLike) -> bool:
    return core_logic.find_closed_summary(context, dates.parse_day(day)) is not None


def daily_summary(context: RuntimeContext, day: dates.DayLike) -> DailySummaryRecord:
    """Return the summary for ``day``.

    A closed day returns its stored snapshot unchanged. Any other day is
    computed fresh from the logs and reported with ``closed=False``.

    Args:
        context (RuntimeContext): Active runtime context.
        day (date | str): Calendar date or ``YYYY-MM-DD`` string.

    Raises:
        ValueError: If ``day`` is not a valid calendar date.
    """

    target = dates.parse_day(day)
    snapshot = core_logic.find_closed_summary(context, target)
    if snapshot is not None:
        log.debug("Serving closed snapshot for %s", target.isoformat())
        return snapshot
    return build_daily_summary(target, sales_on(context, target), expenses_on(context, target))


def close_daily_summary(context: RuntimeContext, day: dates.DayLike) -> DailySummaryRecord:
    """Freeze the summary for ``day`` and store it as that day's snapshot.

    The summary is always recomputed from the logs, so closing a day twice
    replaces the earlier snapshot with a fresh one. There is no way to reopen
    a closed day.

    Returns:
        DailySummaryRecord: The stored snapshot, with ``closed=True``.

    Raises:
        ValueError: If ``day`` is not a valid calendar date.
        data_manager.StorageError: If the snapshot cannot be written.
    """

    target = dates.parse_day(day)
    fresh = build_daily_summary(target, sales_on(context, target), expenses_on(context, target))
    closed = replace(fresh, closed=True)
    core_logic.store_closed_summary(context, closed)
    log.info(
        "Closed day %s (sales=%s, expenses=%s, mechanics=%s, profit=%s)",
        closed.date,
        closed.total_sales,
        closed.total_expenses,
        closed.total_mechanic_payments,
        closed.profit,
    )
    return closed


def monthly_summary(context: RuntimeContext, year: int, month_index: int) -> MonthlySummary:
    """Aggregate a calendar month; ``month_index`` is 0-based.

    Closed-day snapshots are neither read nor written.

    Raises:
        ValueError: If ``month_index`` is outside 0-11.
    """

    key = dates.month_key(year, month_index)
    tz = core_logic.shop_timezone(context)
    month = month_index + 1

    def _in_month(timestamp_iso: str) -> bool:
        local = dates.local_date(timestamp_iso, tz)
        return local.year == year and local.month == month

    month_sales = [sale for sale in core_logic.list_sales(context) if _in_month(sale.date)]
    month_expenses = [expense for expense in core_logic.list_expenses(context) if _in_month(expense.date)]

    total_sales = sum((sale.total_amount for sale in month_sales), Decimal("0"))
    total_cost = sum((sale.total_cost for sale in month_sales), Decimal("0"))
    total_expenses = sum((expense.amount for expense in month_expenses), Decimal("0"))
    total_mechanic_payments = sum((_mechanic_payment(sale) for sale in month_sales), Decimal("0"))

    return MonthlySummary(
        month=key,
        total_sales=total_sales,
        total_cost=total_cost,
        total_expenses=total_expenses,
        total_mechanic_payments=total_mechanic_payments,
        profit=total_sales - total_cost - total_expenses - total_mechanic_payments,
        sales_count=len(month_sales),
    )


def month_activity(context: RuntimeContext, year: int, month_index: int) -> List[DayActivity]:
    """One :class:`DayActivity` per calendar day of the month, in order."""

    days = dates.days_in_month(year, month_index)
    tz = core_logic.shop_timezone(context)
    sales_by_day: Dict[date, List[SaleRecord]] = {}
    for sale in core_logic.list_sales(context):
        sales_by_day.setdefault(dates.local_date(sale.date, tz), []).append(sale)
    expense_days = {dates.local_date(expense.date, tz) for expense in core_logic.list_expenses(context)}

    activity = []
    for day in days:
        day_sales = sales_by_day.get(day, [])
        activity.append(
            DayActivity(
                date=day.isoformat(),
                has_sales=bool(day_sales),
                has_expenses=day in expense_days,
                sales_total=sum((sale.total_amount for sale in day_sales), Decimal("0")),
            )
        )
    return activity
