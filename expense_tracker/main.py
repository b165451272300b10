from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from expense_tracker.currency_conversion import (
    DataUnavailable,
    compute_fluctuation,
    normalize_currency,
)
from expense_tracker.engine import AggregationEngine
from expense_tracker.models import (
    DEFAULT_PAYMENT_METHOD,
    Failure,
    NotFetched,
    RateOutcome,
    RateTable,
    Success,
    Transaction,
    table_of,
)
from expense_tracker.rate_provider import RateProvider
from expense_tracker.settings import Settings, configure_logging
from expense_tracker.transaction_store import (
    DuplicateTransaction,
    TransactionNotFound,
    TransactionStore,
)

logger = logging.getLogger(__name__)


class TransactionPayload(BaseModel):
    amount: Decimal
    currency: str | None = None
    category: str
    date: datetime
    note: str | None = None
    payment_method: str = DEFAULT_PAYMENT_METHOD

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.category = payload.category.strip()
        payload.currency = payload.currency.strip() if payload.currency else None
        payload.note = payload.note.strip() if payload.note else None
        payload.payment_method = payload.payment_method.strip() or DEFAULT_PAYMENT_METHOD
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        if not payload.category:
            raise ValueError("Category required.")
        return payload


class TransactionResponse(BaseModel):
    id: str
    amount: Decimal
    currency: str
    category: str
    date: datetime
    note: str | None = None
    payment_method: str


class SpendingResponse(BaseModel):
    total: Decimal
    currency: str
    rates_available: bool


class CategorySliceResponse(BaseModel):
    category: str
    percent: float
    color: str


class CategoryBreakdownResponse(BaseModel):
    month: str
    currency: str
    top_category: str | None = None
    slices: list[CategorySliceResponse]


class DailySeriesResponse(BaseModel):
    month: str
    currency: str
    anchor: date
    totals: list[Decimal]


class SelectedMonthPayload(BaseModel):
    year: int
    month: int


class SelectedMonthResponse(BaseModel):
    year: int
    month: int
    label: str


class RateTableResponse(BaseModel):
    base: str
    date: str
    historical: bool
    rates: dict[str, Decimal]


class RateOutcomeResponse(BaseModel):
    status: str
    error: str | None = None
    error_kind: str | None = None
    table: RateTableResponse | None = None


class SymbolsResponse(BaseModel):
    status: str
    error: str | None = None
    symbols: dict[str, str] | None = None


class ConversionResponse(BaseModel):
    source_currency: str
    target_currency: str
    amount: Decimal
    converted_amount: Decimal


class FluctuationResponse(BaseModel):
    from_currency: str
    to_currency: str
    start_date: date
    end_date: date
    start_rate: Decimal
    end_rate: Decimal
    change: Decimal
    change_pct: Decimal


def to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def transaction_response(txn: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        amount=txn.amount,
        currency=txn.currency,
        category=txn.category,
        date=txn.date,
        note=txn.note,
        payment_method=txn.payment_method,
    )


def rate_table_response(table: RateTable) -> RateTableResponse:
    return RateTableResponse(
        base=table.base_currency,
        date=table.as_of,
        historical=table.historical,
        rates=dict(table.rates),
    )


def outcome_status(outcome: RateOutcome) -> str:
    if isinstance(outcome, Success):
        return "success"
    if isinstance(outcome, Failure):
        return "failure"
    return "not_fetched"


def rate_outcome_response(outcome: RateOutcome) -> RateOutcomeResponse:
    table = table_of(outcome)
    return RateOutcomeResponse(
        status=outcome_status(outcome),
        error=outcome.reason if isinstance(outcome, Failure) else None,
        error_kind=outcome.error_kind if isinstance(outcome, Failure) else None,
        table=rate_table_response(table) if table else None,
    )


def build_transaction(
    payload: TransactionPayload, default_currency: str, transaction_id: str | None = None
) -> Transaction:
    payload = TransactionPayload.validate_payload(payload)
    values = dict(
        amount=payload.amount,
        currency=normalize_currency(payload.currency or default_currency),
        category=payload.category,
        date=to_local_naive(payload.date),
        note=payload.note,
        payment_method=payload.payment_method,
    )
    if transaction_id is not None:
        values["id"] = transaction_id
    return Transaction(**values)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[TransactionStore] = None,
    rate_provider: Optional[RateProvider] = None,
    engine: Optional[AggregationEngine] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    store = store or TransactionStore.from_url(settings.database_url)
    rate_provider = rate_provider or RateProvider(
        base_url=settings.exchange_rate_base_url,
        access_key=settings.exchange_rate_access_key,
        timeout=settings.exchange_rate_timeout_seconds,
        default_base=settings.rate_base_currency,
    )
    engine = engine or AggregationEngine(
        store,
        rate_provider,
        report_currency=settings.report_currency,
        rate_base=settings.rate_base_currency,
        window_size=settings.daily_series_window,
    )

    app = FastAPI()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.rate_provider = rate_provider
    app.state.engine = engine

    @app.on_event("startup")
    async def fetch_initial_rates() -> None:
        engine.refresh_rates()

    @app.on_event("shutdown")
    def close_engine() -> None:
        engine.close()

    register_routes(app)
    logger.info(
        "Application configured report_currency=%s rate_base=%s window=%d",
        settings.report_currency,
        settings.rate_base_currency,
        settings.daily_series_window,
    )
    return app


def _engine(request: Request) -> AggregationEngine:
    engine = request.app.state.engine
    engine.sync_clock()
    return engine


def _store(request: Request) -> TransactionStore:
    return request.app.state.store


def _rates(request: Request) -> RateProvider:
    return request.app.state.rate_provider


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def register_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/transactions", response_model=list[TransactionResponse])
    def list_transactions(request: Request) -> list[TransactionResponse]:
        return [transaction_response(txn) for txn in _store(request).all()]

    @app.get("/transactions/{transaction_id}", response_model=TransactionResponse)
    def get_transaction(transaction_id: str, request: Request) -> TransactionResponse:
        txn = _store(request).get_by_id(transaction_id)
        if txn is None:
            raise HTTPException(status_code=404, detail="Transaction not found.")
        return transaction_response(txn)

    @app.post("/transactions", response_model=TransactionResponse)
    def create_transaction(payload: TransactionPayload, request: Request) -> TransactionResponse:
        try:
            txn = build_transaction(payload, _settings(request).default_transaction_currency)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        try:
            _store(request).insert(txn)
        except DuplicateTransaction as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return transaction_response(txn)

    @app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
    def update_transaction(
        transaction_id: str, payload: TransactionPayload, request: Request
    ) -> TransactionResponse:
        try:
            txn = build_transaction(
                payload, _settings(request).default_transaction_currency, transaction_id
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        try:
            _store(request).update(txn)
        except TransactionNotFound as exc:
            raise HTTPException(status_code=404, detail="Transaction not found.") from exc
        return transaction_response(txn)

    @app.delete("/transactions/{transaction_id}")
    def delete_transaction(transaction_id: str, request: Request) -> dict:
        try:
            _store(request).delete(transaction_id)
        except TransactionNotFound as exc:
            raise HTTPException(status_code=404, detail="Transaction not found.") from exc
        return {"status": "deleted"}

    @app.get("/reports/today", response_model=SpendingResponse)
    def today_spending(request: Request) -> SpendingResponse:
        engine = _engine(request)
        return SpendingResponse(
            total=engine.today_spending.value,
            currency=engine.report_currency,
            rates_available=table_of(_rates(request).latest.value) is not None,
        )

    @app.get("/reports/this-month", response_model=SpendingResponse)
    def this_month_spending(request: Request) -> SpendingResponse:
        engine = _engine(request)
        return SpendingResponse(
            total=engine.this_month_spending.value,
            currency=engine.report_currency,
            rates_available=table_of(_rates(request).latest.value) is not None,
        )

    @app.get("/reports/category-breakdown", response_model=CategoryBreakdownResponse)
    def category_breakdown(request: Request) -> CategoryBreakdownResponse:
        engine = _engine(request)
        return CategoryBreakdownResponse(
            month=engine.selected_month.value.label(),
            currency=engine.report_currency,
            top_category=engine.top_category.value,
            slices=[
                CategorySliceResponse(
                    category=item.category,
                    percent=item.percent,
                    color=item.color.hex,
                )
                for item in engine.category_breakdown.value
            ],
        )

    @app.get("/reports/daily-series", response_model=DailySeriesResponse)
    def daily_series(request: Request) -> DailySeriesResponse:
        engine = _engine(request)
        return DailySeriesResponse(
            month=engine.selected_month.value.label(),
            currency=engine.report_currency,
            anchor=engine.anchor(),
            totals=engine.daily_series.value,
        )

    @app.get("/reports/selected-month", response_model=SelectedMonthResponse)
    def get_selected_month(request: Request) -> SelectedMonthResponse:
        cursor = _engine(request).selected_month.value
        return SelectedMonthResponse(year=cursor.year, month=cursor.month, label=cursor.label())

    @app.put("/reports/selected-month", response_model=SelectedMonthResponse)
    def select_month(payload: SelectedMonthPayload, request: Request) -> SelectedMonthResponse:
        try:
            cursor = _engine(request).select_month(payload.year, payload.month)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return SelectedMonthResponse(year=cursor.year, month=cursor.month, label=cursor.label())

    @app.post("/rates/refresh", status_code=202)
    async def refresh_rates(request: Request) -> dict:
        _engine(request).refresh_rates()
        return {"status": "scheduled"}

    @app.get("/rates/latest", response_model=RateOutcomeResponse)
    def latest_rates(request: Request) -> RateOutcomeResponse:
        return rate_outcome_response(_rates(request).latest.value)

    @app.get("/rates/historical/{day}", response_model=RateOutcomeResponse)
    async def historical_rates(day: date, request: Request) -> RateOutcomeResponse:
        outcome = await _rates(request).fetch_historical(day)
        return rate_outcome_response(outcome)

    @app.get("/rates/symbols", response_model=SymbolsResponse)
    async def symbols(request: Request) -> SymbolsResponse:
        outcome = await _rates(request).fetch_symbols()
        return SymbolsResponse(
            status=outcome_status(outcome),
            error=outcome.reason if isinstance(outcome, Failure) else None,
            symbols=outcome.value if isinstance(outcome, Success) else None,
        )

    @app.get("/currency/convert", response_model=ConversionResponse)
    async def convert_currency(
        request: Request,
        amount: Decimal = Query(...),
        source: str = Query(..., alias="from"),
        target: str = Query(..., alias="to"),
    ) -> ConversionResponse:
        try:
            source_currency = normalize_currency(source)
            target_currency = normalize_currency(target)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        outcome = await _rates(request).convert_currency(source_currency, target_currency, amount)
        if not isinstance(outcome, Success):
            detail = outcome.reason if isinstance(outcome, Failure) else "Rates not fetched."
            raise HTTPException(status_code=400, detail=detail)
        return ConversionResponse(
            source_currency=source_currency,
            target_currency=target_currency,
            amount=amount,
            converted_amount=outcome.value.quantize(Decimal("0.01")),
        )

    @app.get("/rates/fluctuation", response_model=FluctuationResponse)
    async def fluctuation(
        request: Request,
        start_date: date = Query(...),
        end_date: date = Query(...),
        source: str = Query(..., alias="from"),
        target: str = Query(..., alias="to"),
    ) -> FluctuationResponse:
        if start_date > end_date:
            raise HTTPException(status_code=400, detail="Start date must be on or before end date.")
        provider = _rates(request)
        start_outcome = await provider.fetch_historical(start_date)
        end_outcome = await provider.fetch_historical(end_date)
        for outcome in (start_outcome, end_outcome):
            if isinstance(outcome, (Failure, NotFetched)):
                detail = outcome.reason if isinstance(outcome, Failure) else "Rates not fetched."
                raise HTTPException(status_code=502, detail=detail)
        try:
            result = compute_fluctuation(start_outcome.value, end_outcome.value, source, target)
        except (ValueError, DataUnavailable) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return FluctuationResponse(
            from_currency=result.from_currency,
            to_currency=result.to_currency,
            start_date=start_date,
            end_date=end_date,
            start_rate=result.start_rate,
            end_rate=result.end_rate,
            change=result.change,
            change_pct=result.change_pct,
        )
