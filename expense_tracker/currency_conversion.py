from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from expense_tracker.models import RateTable

HUNDRED = Decimal("100")


class DataUnavailable(LookupError):
    """Raised when a currency code is absent from a rate table."""


@dataclass(frozen=True)
class Fluctuation:
    from_currency: str
    to_currency: str
    start_rate: Decimal
    end_rate: Decimal
    change: Decimal
    change_pct: Decimal


def convert(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str,
    table: Optional[RateTable],
) -> Decimal:
    """Convert ``amount`` through the table's base currency.

    Falls back to the unconverted amount when no table is available or when
    either currency is missing from it. Callers that need to tell the two
    cases apart should use :func:`can_convert` or :func:`convert_strict`.
    """
    coerced_amount = coerce_amount(amount)
    if source_currency == target_currency or table is None:
        return coerced_amount

    source_rate = table.rates.get(source_currency)
    target_rate = table.rates.get(target_currency)
    if source_rate is None or target_rate is None:
        return coerced_amount

    amount_in_base = coerced_amount / source_rate
    return amount_in_base * target_rate


def can_convert(source_currency: str, target_currency: str, table: Optional[RateTable]) -> bool:
    if source_currency == target_currency:
        return True
    if table is None:
        return False
    return source_currency in table.rates and target_currency in table.rates


def convert_strict(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str,
    table: Optional[RateTable],
) -> Decimal:
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    if not can_convert(normalized_source, normalized_target, table):
        raise DataUnavailable(
            f"No rate available for {normalized_source} -> {normalized_target}"
        )
    return convert(amount, normalized_source, normalized_target, table)


def cross_rate(source_currency: str, target_currency: str, table: RateTable) -> Decimal:
    """Units of ``target_currency`` per one unit of ``source_currency``."""
    return convert_strict(Decimal("1"), source_currency, target_currency, table)


def compute_fluctuation(
    start_table: RateTable,
    end_table: RateTable,
    source_currency: str,
    target_currency: str,
) -> Fluctuation:
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    start_rate = cross_rate(normalized_source, normalized_target, start_table)
    end_rate = cross_rate(normalized_source, normalized_target, end_table)
    change = end_rate - start_rate
    change_pct = (change / start_rate) * HUNDRED
    return Fluctuation(
        from_currency=normalized_source,
        to_currency=normalized_target,
        start_rate=start_rate,
        end_rate=end_rate,
        change=change,
        change_pct=change_pct,
    )


def normalize_currency(value: str) -> str:
    normalized = (value or "").strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
