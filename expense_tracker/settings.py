from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from expense_tracker.currency_conversion import normalize_currency

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _currency_from_env(name: str, default: str) -> str:
    raw = os.getenv(name, default)
    try:
        return normalize_currency(raw)
    except ValueError:
        return default


def _positive_int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./expense_tracker.db"
    exchange_rate_base_url: str = "http://data.fixer.io/api"
    exchange_rate_access_key: str = ""
    exchange_rate_timeout_seconds: float = 8
    rate_base_currency: str = "EUR"
    report_currency: str = "INR"
    default_transaction_currency: str = "INR"
    daily_series_window: int = 7
    log_level: str = "INFO"
    frontend_origin: str = "http://localhost:3000"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            exchange_rate_base_url=os.getenv("EXCHANGE_RATE_BASE_URL", cls.exchange_rate_base_url),
            exchange_rate_access_key=os.getenv("EXCHANGE_RATE_ACCESS_KEY", ""),
            exchange_rate_timeout_seconds=_float_from_env(
                "EXCHANGE_RATE_TIMEOUT_SECONDS", cls.exchange_rate_timeout_seconds
            ),
            rate_base_currency=_currency_from_env("RATE_BASE_CURRENCY", cls.rate_base_currency),
            report_currency=_currency_from_env("REPORT_CURRENCY", cls.report_currency),
            default_transaction_currency=_currency_from_env(
                "DEFAULT_TRANSACTION_CURRENCY", cls.default_transaction_currency
            ),
            daily_series_window=_positive_int_from_env("DAILY_SERIES_WINDOW", cls.daily_series_window),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", cls.frontend_origin),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
