from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from expense_tracker.category_colors import NO_DATA_COLOR, color_of
from expense_tracker.currency_conversion import convert
from expense_tracker.models import (
    NO_DATA_CATEGORY,
    ZERO,
    CategorySlice,
    MonthCursor,
    RateTable,
    Transaction,
)

DEFAULT_WINDOW_SIZE = 7


def local_day(value: date) -> date:
    """Calendar day of ``value`` in the observer's local time zone.

    Aware datetimes are converted to local time first; naive datetimes are
    taken to be local already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().date()
        return value.date()
    return value


def month_end(cursor: MonthCursor) -> date:
    last_day = calendar.monthrange(cursor.year, cursor.month)[1]
    return date(cursor.year, cursor.month, last_day)


def resolve_anchor(cursor: MonthCursor, today: date) -> date:
    if cursor == MonthCursor.of(today):
        return today
    return month_end(cursor)


def transactions_in_month(transactions: Iterable[Transaction], cursor: MonthCursor) -> list[Transaction]:
    result = []
    for txn in transactions:
        day = local_day(txn.date)
        if day.year == cursor.year and day.month == cursor.month:
            result.append(txn)
    return result


def normalized_amount(
    txn: Transaction,
    table: Optional[RateTable],
    report_currency: Optional[str],
) -> Decimal:
    if report_currency is None:
        return txn.amount
    return convert(txn.amount, txn.currency, report_currency, table)


def sum_normalized(
    transactions: Iterable[Transaction],
    table: Optional[RateTable],
    report_currency: Optional[str],
) -> Decimal:
    total = ZERO
    for txn in transactions:
        total += normalized_amount(txn, table, report_currency)
    return total


def today_spending(
    transactions: Iterable[Transaction],
    table: Optional[RateTable],
    report_currency: str,
    today: date,
) -> Decimal:
    return sum_normalized(
        (txn for txn in transactions if local_day(txn.date) == today),
        table,
        report_currency,
    )


def month_spending(
    transactions: Iterable[Transaction],
    table: Optional[RateTable],
    report_currency: str,
    cursor: MonthCursor,
) -> Decimal:
    return sum_normalized(transactions_in_month(transactions, cursor), table, report_currency)


def category_breakdown(
    transactions: Iterable[Transaction],
    table: Optional[RateTable] = None,
    report_currency: Optional[str] = None,
) -> list[CategorySlice]:
    totals_by_category: dict[str, Decimal] = {}
    total = ZERO
    for txn in transactions:
        amount = normalized_amount(txn, table, report_currency)
        totals_by_category[txn.category] = totals_by_category.get(txn.category, ZERO) + amount
        total += amount

    if total <= ZERO:
        return [CategorySlice(category=NO_DATA_CATEGORY, percent=1.0, color=NO_DATA_COLOR)]

    slices = [
        CategorySlice(
            category=category,
            percent=float(category_total / total),
            color=color_of(category),
        )
        for category, category_total in totals_by_category.items()
    ]
    # Equal shares are ordered by category name so the result is stable.
    slices.sort(key=lambda item: (-item.percent, item.category))
    return slices


def daily_series(
    transactions: Iterable[Transaction],
    anchor: date,
    window_size: int = DEFAULT_WINDOW_SIZE,
    table: Optional[RateTable] = None,
    report_currency: Optional[str] = None,
) -> list[Decimal]:
    if window_size < 1:
        raise ValueError("window_size must be at least 1.")
    start = anchor - timedelta(days=window_size - 1)
    totals = [ZERO] * window_size
    for txn in transactions:
        offset = (local_day(txn.date) - start).days
        if 0 <= offset < window_size:
            totals[offset] += normalized_amount(txn, table, report_currency)
    return totals
