from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Generic, Mapping, Optional, TypeVar, Union
import uuid

from expense_tracker.currency_conversion import coerce_amount, normalize_currency

ZERO = Decimal("0")
AMOUNT_SCALE = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")
NO_DATA_CATEGORY = "No Data"
PAYMENT_METHODS = ("None", "Cash", "Card", "UPI")
DEFAULT_PAYMENT_METHOD = "Cash"

T = TypeVar("T")


def new_transaction_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Transaction:
    """A single cash transaction.

    Instances never change; editing a transaction means storing a new value
    under the same ``id``.
    """

    amount: Decimal
    currency: str
    category: str
    date: datetime
    payment_method: str = DEFAULT_PAYMENT_METHOD
    note: Optional[str] = None
    id: str = field(default_factory=new_transaction_id)

    def __post_init__(self) -> None:
        # Stored as NUMERIC(12, 2); round first so the value kept here is the one persisted.
        amount = coerce_amount(self.amount)
        if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
            raise ValueError(f"Amount must be a number no greater than {MAX_AMOUNT}.")
        amount = amount.quantize(AMOUNT_SCALE, rounding=ROUND_HALF_UP)
        if amount <= ZERO:
            raise ValueError("Amount must be greater than zero.")
        category = (self.category or "").strip()
        if not category:
            raise ValueError("Category required.")
        note = self.note.strip() if self.note else None
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        object.__setattr__(self, "category", category)
        object.__setattr__(self, "note", note or None)
        object.__setattr__(self, "payment_method", (self.payment_method or "").strip() or DEFAULT_PAYMENT_METHOD)


@dataclass(frozen=True)
class RateTable:
    """Rates expressed as units of each currency per one unit of ``base_currency``."""

    base_currency: str
    as_of: str
    rates: Mapping[str, Decimal]
    historical: bool = False

    def __post_init__(self) -> None:
        base_currency = normalize_currency(self.base_currency)
        rates = {normalize_currency(code): coerce_amount(value) for code, value in self.rates.items()}
        for code, value in rates.items():
            if not value.is_finite() or value <= ZERO:
                raise ValueError(f"Rate for {code} must be a positive number.")
        rates[base_currency] = Decimal("1")
        object.__setattr__(self, "base_currency", base_currency)
        object.__setattr__(self, "rates", MappingProxyType(rates))

    def rate_for(self, currency: str) -> Optional[Decimal]:
        return self.rates.get(currency)


@dataclass(frozen=True)
class NotFetched:
    pass


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    reason: str
    error_kind: str = "TransportError"


RateOutcome = Union[NotFetched, Success, Failure]
NOT_FETCHED = NotFetched()


def table_of(outcome: Optional[RateOutcome]) -> Optional[RateTable]:
    """Return the rate table carried by ``outcome``, if any."""
    if isinstance(outcome, Success) and isinstance(outcome.value, RateTable):
        return outcome.value
    return None


@dataclass(frozen=True)
class Color:
    red: int
    green: int
    blue: int

    @classmethod
    def from_hex(cls, value: int) -> "Color":
        return cls((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)

    @property
    def hex(self) -> str:
        return f"#{self.red:02X}{self.green:02X}{self.blue:02X}"


@dataclass(frozen=True)
class CategorySlice:
    category: str
    percent: float
    color: Color


@dataclass(frozen=True)
class MonthCursor:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12.")
        if self.year < 1:
            raise ValueError("Year must be positive.")

    @classmethod
    def of(cls, value: date) -> "MonthCursor":
        return cls(value.year, value.month)

    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
