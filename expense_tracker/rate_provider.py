from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal, InvalidOperation
from http.client import HTTPException
import json
import logging
from typing import Any, Awaitable, Callable, Coroutine, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import urlopen

from expense_tracker.currency_conversion import (
    DataUnavailable,
    convert_strict,
    normalize_currency,
)
from expense_tracker.models import NOT_FETCHED, Failure, RateOutcome, RateTable, Success
from expense_tracker.signals import Signal

logger = logging.getLogger(__name__)

FetchJson = Callable[[str], Awaitable[Mapping[str, Any]]]


class RateProviderError(RuntimeError):
    """Base class for exchange-rate service failures."""


class TransportError(RateProviderError):
    """Network failure, timeout or non-success HTTP status."""


class ServiceError(RateProviderError):
    """The service answered but reported failure or sent an unusable payload."""


def urlopen_json(url: str, timeout: float) -> Mapping[str, Any]:
    try:
        with urlopen(url, timeout=timeout) as response:
            payload = json.load(response)
    except HTTPError as exc:
        raise TransportError(f"API Error: HTTP {exc.code} {exc.reason}") from exc
    except (URLError, TimeoutError, OSError, HTTPException) as exc:
        raise TransportError(f"Exchange rate service unavailable: {exc}") from exc
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError("Exchange rate service returned malformed JSON") from exc
    if not isinstance(payload, dict):
        raise ServiceError("Exchange rate service returned an unexpected payload")
    return payload


def make_urllib_transport(timeout: float = 8) -> FetchJson:
    async def fetch_json(url: str) -> Mapping[str, Any]:
        return await asyncio.to_thread(urlopen_json, url, timeout)

    return fetch_json


def _check_success(payload: Mapping[str, Any]) -> None:
    if payload.get("success") is True:
        return
    error = payload.get("error")
    if isinstance(error, Mapping):
        info = error.get("info") or error.get("type") or "Unknown error"
        raise ServiceError(f"API Error: {info}")
    raise ServiceError("API Error: Unknown error")


def parse_rate_table(payload: Mapping[str, Any], historical: bool = False) -> RateTable:
    _check_success(payload)
    rates = payload.get("rates")
    if not isinstance(rates, Mapping) or not rates:
        raise ServiceError("Exchange rate response missing rates")
    base = payload.get("base")
    if not isinstance(base, str):
        raise ServiceError("Exchange rate response missing base")
    try:
        parsed = {code: Decimal(str(value)) for code, value in rates.items()}
        return RateTable(
            base_currency=base,
            as_of=str(payload.get("date") or ""),
            rates=parsed,
            historical=bool(payload.get("historical", historical)),
        )
    except (InvalidOperation, ValueError) as exc:
        raise ServiceError(f"Exchange rate response has malformed rates: {exc}") from exc


def parse_symbols(payload: Mapping[str, Any]) -> dict[str, str]:
    _check_success(payload)
    symbols = payload.get("symbols")
    if not isinstance(symbols, Mapping):
        raise ServiceError("Symbols response missing symbols")
    return {str(code): str(name) for code, name in symbols.items()}


class _Slot:
    """An outcome signal guarded by a monotonically increasing request sequence.

    A completion is applied only if no later-issued request has already been
    applied, so an older response can never overwrite a newer one.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.signal: Signal[RateOutcome] = Signal(NOT_FETCHED, name=name)
        self._issued = 0
        self._applied = 0

    def issue(self) -> int:
        self._issued += 1
        return self._issued

    def apply(self, sequence: int, outcome: RateOutcome) -> bool:
        if sequence < self._applied:
            logger.debug(
                "Discarding stale completion slot=%s seq=%d applied=%d",
                self.name,
                sequence,
                self._applied,
            )
            return False
        self._applied = sequence
        self.signal.set(outcome)
        return True


class RateProvider:
    """Fetches rate tables and keeps the latest completed outcome per slot.

    Slots are ``latest``, ``symbols``, ``conversion`` and one per historical
    date. ``historical`` mirrors the most recently requested date.
    """

    def __init__(
        self,
        base_url: str = "http://data.fixer.io/api",
        access_key: str = "",
        fetch_json: Optional[FetchJson] = None,
        timeout: float = 8,
        default_base: str = "EUR",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_key = access_key
        self.default_base = normalize_currency(default_base)
        self._fetch_json = fetch_json or make_urllib_transport(timeout)
        self._latest = _Slot("latest")
        self._symbols = _Slot("symbols")
        self._conversion = _Slot("conversion")
        self._historical_slots: dict[date, _Slot] = {}
        self._last_historical_date: Optional[date] = None
        self.historical: Signal[RateOutcome] = Signal(NOT_FETCHED, name="historical")
        self._tasks: set[asyncio.Task] = set()

    @property
    def latest(self) -> Signal[RateOutcome]:
        return self._latest.signal

    @property
    def symbols(self) -> Signal[RateOutcome]:
        return self._symbols.signal

    @property
    def conversion(self) -> Signal[RateOutcome]:
        return self._conversion.signal

    def historical_outcome(self, day: date) -> RateOutcome:
        slot = self._historical_slots.get(day)
        return slot.signal.value if slot else NOT_FETCHED

    async def fetch_latest(self, base: Optional[str] = None) -> RateOutcome:
        normalized_base = normalize_currency(base or self.default_base)
        sequence = self._latest.issue()
        outcome = await self._fetch(self._url("latest", base=normalized_base), parse_rate_table)
        self._latest.apply(sequence, outcome)
        self._log_outcome("latest", sequence, outcome)
        return outcome

    async def fetch_historical(self, day: date) -> RateOutcome:
        slot = self._historical_slots.get(day)
        if slot is None:
            slot = self._historical_slots[day] = _Slot(f"historical:{day.isoformat()}")
        sequence = slot.issue()
        self._last_historical_date = day
        outcome = await self._fetch(
            self._url(day.isoformat()),
            lambda payload: parse_rate_table(payload, historical=True),
        )
        if slot.apply(sequence, outcome) and self._last_historical_date == day:
            self.historical.set(outcome)
        self._log_outcome(slot.name, sequence, outcome)
        return outcome

    async def fetch_symbols(self) -> RateOutcome:
        sequence = self._symbols.issue()
        outcome = await self._fetch(self._url("symbols"), parse_symbols)
        self._symbols.apply(sequence, outcome)
        self._log_outcome("symbols", sequence, outcome)
        return outcome

    async def convert_currency(
        self,
        source_currency: str,
        target_currency: str,
        amount: Decimal | int | float | str,
    ) -> RateOutcome:
        source = normalize_currency(source_currency)
        target = normalize_currency(target_currency)
        sequence = self._conversion.issue()
        outcome = await self._fetch(self._url("latest", base=self.default_base), parse_rate_table)
        if isinstance(outcome, Success):
            try:
                outcome = Success(convert_strict(amount, source, target, outcome.value))
            except DataUnavailable as exc:
                outcome = Failure(str(exc), "DataUnavailable")
        self._conversion.apply(sequence, outcome)
        self._log_outcome("conversion", sequence, outcome)
        return outcome

    def request_latest(self, base: Optional[str] = None) -> asyncio.Task:
        return self._schedule(self.fetch_latest(base))

    def request_historical(self, day: date) -> asyncio.Task:
        return self._schedule(self.fetch_historical(day))

    def request_symbols(self) -> asyncio.Task:
        return self._schedule(self.fetch_symbols())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _schedule(self, coroutine: Coroutine[Any, Any, RateOutcome]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch(self, url: str, parse: Callable[[Mapping[str, Any]], Any]) -> RateOutcome:
        try:
            payload = await self._fetch_json(url)
            return Success(parse(payload))
        except ServiceError as exc:
            return Failure(str(exc), "ServiceError")
        except (TransportError, OSError, HTTPException, asyncio.TimeoutError) as exc:
            return Failure(str(exc) or type(exc).__name__, "TransportError")

    def _url(self, endpoint: str, **params: str) -> str:
        query: dict[str, str] = {}
        if self.access_key:
            query["access_key"] = self.access_key
        query.update(params)
        suffix = f"?{urlencode(query)}" if query else ""
        return f"{self.base_url}/{endpoint}{suffix}"

    def _log_outcome(self, slot: str, sequence: int, outcome: RateOutcome) -> None:
        if isinstance(outcome, Failure):
            logger.warning(
                "Rate fetch failed slot=%s seq=%d kind=%s reason=%s",
                slot,
                sequence,
                outcome.error_kind,
                outcome.reason,
            )
        else:
            logger.info("Rate fetch complete slot=%s seq=%d", slot, sequence)
