from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
import logging
from typing import Callable, Optional

from expense_tracker import aggregation
from expense_tracker.currency_conversion import normalize_currency
from expense_tracker.models import (
    NO_DATA_CATEGORY,
    CategorySlice,
    MonthCursor,
    RateOutcome,
    Transaction,
    table_of,
)
from expense_tracker.rate_provider import RateProvider
from expense_tracker.signals import Computed, Signal
from expense_tracker.transaction_store import Snapshot, TransactionStore

logger = logging.getLogger(__name__)


class AggregationEngine:
    """Derives spending aggregates from the transaction and rate signals.

    Every aggregate is a :class:`Computed` that declares its upstream signals:

    * ``today_spending`` / ``this_month_spending``: transactions, latest rates, today
    * ``selected_transactions``: transactions, selected month
    * ``category_breakdown``: transactions, latest rates, selected month
    * ``daily_series``: transactions, latest rates, selected month, today
    * ``top_category``: category breakdown

    Today and this month are always relative to ``clock()``; the selected
    month only scopes the breakdown and the daily series. The ``today`` signal
    only moves when ``sync_clock`` sees a new date, so readers call it before
    reading an aggregate.
    """

    def __init__(
        self,
        store: TransactionStore,
        rate_provider: RateProvider,
        report_currency: str = "INR",
        rate_base: str = "EUR",
        window_size: int = aggregation.DEFAULT_WINDOW_SIZE,
        clock: Callable[[], date] = date.today,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1.")
        self.report_currency = normalize_currency(report_currency)
        self.rate_base = normalize_currency(rate_base)
        self.window_size = window_size
        self._clock = clock
        self._rate_provider = rate_provider
        self._transactions: Signal[Snapshot] = store.observe_all()
        self._rates: Signal[RateOutcome] = rate_provider.latest
        self._today: Signal[date] = Signal(clock(), name="today")
        self._cursor: Signal[MonthCursor] = Signal(MonthCursor.of(self._today.value), name="selected_month")

        self.today_spending: Computed[Decimal] = Computed(
            self._compute_today, self._transactions, self._rates, self._today, name="today_spending"
        )
        self.this_month_spending: Computed[Decimal] = Computed(
            self._compute_this_month, self._transactions, self._rates, self._today, name="this_month_spending"
        )
        self.selected_transactions: Computed[list[Transaction]] = Computed(
            aggregation.transactions_in_month, self._transactions, self._cursor, name="selected_transactions"
        )
        self.category_breakdown: Computed[list[CategorySlice]] = Computed(
            self._compute_breakdown, self._transactions, self._rates, self._cursor, name="category_breakdown"
        )
        self.daily_series: Computed[list[Decimal]] = Computed(
            self._compute_daily_series, self._transactions, self._rates, self._cursor, self._today, name="daily_series"
        )
        self.top_category: Computed[Optional[str]] = Computed(
            self._compute_top_category, self.category_breakdown, name="top_category"
        )
        self._computeds = (
            self.today_spending,
            self.this_month_spending,
            self.selected_transactions,
            self.category_breakdown,
            self.daily_series,
            self.top_category,
        )

    @property
    def selected_month(self) -> Signal[MonthCursor]:
        return self._cursor

    def select_month(self, year: int, month: int) -> MonthCursor:
        cursor = MonthCursor(year, month)
        logger.info("Selected month changed month=%s", cursor.label())
        self._cursor.set(cursor)
        return cursor

    def refresh_rates(self) -> asyncio.Task:
        logger.info("Refreshing latest rates base=%s", self.rate_base)
        return self._rate_provider.request_latest(self.rate_base)

    @property
    def today(self) -> Signal[date]:
        return self._today

    def sync_clock(self) -> date:
        today = self._clock()
        if today != self._today.value:
            logger.info("Calendar day changed today=%s", today.isoformat())
            self._today.set(today)
        return today

    def anchor(self) -> date:
        return aggregation.resolve_anchor(self._cursor.value, self._today.value)

    def close(self) -> None:
        for computed in reversed(self._computeds):
            computed.dispose()

    def _compute_today(self, transactions: Snapshot, outcome: RateOutcome, today: date) -> Decimal:
        return aggregation.today_spending(transactions, table_of(outcome), self.report_currency, today)

    def _compute_this_month(self, transactions: Snapshot, outcome: RateOutcome, today: date) -> Decimal:
        return aggregation.month_spending(
            transactions, table_of(outcome), self.report_currency, MonthCursor.of(today)
        )

    def _compute_breakdown(
        self, transactions: Snapshot, outcome: RateOutcome, cursor: MonthCursor
    ) -> list[CategorySlice]:
        return aggregation.category_breakdown(
            aggregation.transactions_in_month(transactions, cursor),
            table_of(outcome),
            self.report_currency,
        )

    def _compute_daily_series(
        self, transactions: Snapshot, outcome: RateOutcome, cursor: MonthCursor, today: date
    ) -> list[Decimal]:
        return aggregation.daily_series(
            aggregation.transactions_in_month(transactions, cursor),
            aggregation.resolve_anchor(cursor, today),
            window_size=self.window_size,
            table=table_of(outcome),
            report_currency=self.report_currency,
        )

    @staticmethod
    def _compute_top_category(slices: list[CategorySlice]) -> Optional[str]:
        if not slices or slices[0].category == NO_DATA_CATEGORY:
            return None
        return slices[0].category
