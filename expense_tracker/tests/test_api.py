import asyncio
import unittest
from datetime import date
from decimal import Decimal
from urllib.parse import urlsplit

from fastapi.testclient import TestClient

from expense_tracker.engine import AggregationEngine
from expense_tracker.main import create_app
from expense_tracker.rate_provider import RateProvider
from expense_tracker.settings import Settings
from expense_tracker.transaction_store import TransactionStore

TODAY = date(2024, 1, 11)
HISTORICAL_USD = {"2024-01-01": 1.0, "2024-02-01": 1.25}


class RoutingTransport:
    """Serves fixed exchange-rate payloads keyed on the requested endpoint."""

    def __init__(self) -> None:
        self.urls: list[str] = []

    async def __call__(self, url: str):
        self.urls.append(url)
        endpoint = urlsplit(url).path.rsplit("/", 1)[-1]
        if endpoint == "latest":
            return {"success": True, "base": "EUR", "date": "2024-01-11", "rates": {"USD": 1.1, "INR": 90}}
        if endpoint == "symbols":
            return {"success": True, "symbols": {"EUR": "Euro", "USD": "United States Dollar"}}
        if endpoint in HISTORICAL_USD:
            return {
                "success": True,
                "historical": True,
                "base": "EUR",
                "date": endpoint,
                "rates": {"USD": HISTORICAL_USD[endpoint]},
            }
        return {
            "success": False,
            "error": {"code": 302, "type": "invalid_date", "info": "You have entered an invalid date."},
        }


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        settings = Settings(
            database_url="sqlite://",
            rate_base_currency="EUR",
            report_currency="EUR",
            default_transaction_currency="USD",
            log_level="WARNING",
        )
        store = TransactionStore.from_url(settings.database_url)
        self.transport = RoutingTransport()
        provider = RateProvider(fetch_json=self.transport, default_base="EUR")
        self.days = [TODAY]
        # Rates are loaded up front; the startup refresh serves the same table.
        asyncio.run(provider.fetch_latest("EUR"))
        engine = AggregationEngine(
            store,
            provider,
            report_currency=settings.report_currency,
            rate_base=settings.rate_base_currency,
            clock=lambda: self.days[-1],
        )
        app = create_app(settings, store=store, rate_provider=provider, engine=engine)
        self.client = TestClient(app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def create(self, amount, category, when, currency=None):
        payload = {"amount": str(amount), "category": category, "date": when, "payment_method": "Card"}
        if currency:
            payload["currency"] = currency
        response = self.client.post("/transactions", json=payload)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def seed_scenario(self) -> None:
        self.create(100, "Food", "2024-01-10T09:00:00")
        self.create(50, "Food", "2024-01-11T12:00:00")
        self.create(50, "Transport", "2024-01-11T18:00:00")

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_transaction_crud(self) -> None:
        created = self.create("12.50", "Food", "2024-01-11T08:30:00", currency="inr")
        self.assertEqual(created["currency"], "INR")

        fetched = self.client.get(f"/transactions/{created['id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(Decimal(fetched.json()["amount"]), Decimal("12.50"))

        updated = self.client.put(
            f"/transactions/{created['id']}",
            json={"amount": "20", "category": "Bills", "date": "2024-01-11T08:30:00", "note": " rent "},
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["note"], "rent")
        self.assertEqual(updated.json()["currency"], "USD")

        listed = self.client.get("/transactions").json()
        self.assertEqual([item["category"] for item in listed], ["Bills"])

        deleted = self.client.delete(f"/transactions/{created['id']}")
        self.assertEqual(deleted.json(), {"status": "deleted"})
        self.assertEqual(self.client.get(f"/transactions/{created['id']}").status_code, 404)

    def test_invalid_transactions_are_rejected(self) -> None:
        for payload in (
            {"amount": "0", "category": "Food", "date": "2024-01-11T08:30:00"},
            {"amount": "0.001", "category": "Food", "date": "2024-01-11T08:30:00"},
            {"amount": "5", "category": "  ", "date": "2024-01-11T08:30:00"},
            {"amount": "5", "category": "Food", "date": "2024-01-11T08:30:00", "currency": "DOLLAR"},
        ):
            with self.subTest(payload=payload):
                self.assertEqual(self.client.post("/transactions", json=payload).status_code, 400)

    def test_amount_is_stored_in_cents(self) -> None:
        created = self.create("10.005", "Food", "2024-01-11T08:30:00")

        self.assertEqual(Decimal(created["amount"]), Decimal("10.01"))
        listed = self.client.get("/transactions").json()
        self.assertEqual(Decimal(listed[0]["amount"]), Decimal("10.01"))

    def test_missing_transaction_returns_404(self) -> None:
        payload = {"amount": "5", "category": "Food", "date": "2024-01-11T08:30:00"}

        self.assertEqual(self.client.put("/transactions/missing", json=payload).status_code, 404)
        self.assertEqual(self.client.delete("/transactions/missing").status_code, 404)

    def test_spending_reports_are_normalized(self) -> None:
        self.seed_scenario()

        month = self.client.get("/reports/this-month").json()
        today = self.client.get("/reports/today").json()

        self.assertEqual(month["currency"], "EUR")
        self.assertTrue(month["rates_available"])
        self.assertEqual(Decimal(month["total"]).quantize(Decimal("0.01")), Decimal("181.82"))
        self.assertEqual(Decimal(today["total"]).quantize(Decimal("0.01")), Decimal("90.91"))

    def test_today_report_follows_the_calendar(self) -> None:
        self.seed_scenario()
        self.assertEqual(Decimal(self.client.get("/reports/today").json()["total"]).quantize(Decimal("0.01")), Decimal("90.91"))

        self.days.append(date(2024, 1, 12))

        self.assertEqual(Decimal(self.client.get("/reports/today").json()["total"]), Decimal("0"))
        self.assertEqual(self.client.get("/reports/daily-series").json()["anchor"], "2024-01-12")

    def test_category_breakdown_report(self) -> None:
        self.seed_scenario()

        body = self.client.get("/reports/category-breakdown").json()

        self.assertEqual(body["month"], "2024-01")
        self.assertEqual(body["top_category"], "Food")
        self.assertEqual([item["category"] for item in body["slices"]], ["Food", "Transport"])
        self.assertAlmostEqual(body["slices"][0]["percent"], 0.75, places=6)
        self.assertEqual(body["slices"][0]["color"], "#FF9800")

    def test_daily_series_follows_selected_month(self) -> None:
        self.seed_scenario()
        self.create(30, "Gifts", "2023-12-31T10:00:00", currency="EUR")

        current = self.client.get("/reports/daily-series").json()
        self.assertEqual(current["anchor"], "2024-01-11")
        self.assertEqual(len(current["totals"]), 7)

        selected = self.client.put("/reports/selected-month", json={"year": 2023, "month": 12})
        self.assertEqual(selected.json()["label"], "2023-12")

        december = self.client.get("/reports/daily-series").json()
        self.assertEqual(december["anchor"], "2023-12-31")
        self.assertEqual(Decimal(december["totals"][-1]), Decimal("30"))
        breakdown = self.client.get("/reports/category-breakdown").json()
        self.assertEqual([item["category"] for item in breakdown["slices"]], ["Gifts"])

    def test_select_month_validates(self) -> None:
        response = self.client.put("/reports/selected-month", json={"year": 2024, "month": 13})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/reports/selected-month").json()["label"], "2024-01")

    def test_latest_rates_and_refresh(self) -> None:
        self.assertEqual(self.client.post("/rates/refresh").status_code, 202)

        body = self.client.get("/rates/latest").json()

        self.assertEqual(body["status"], "success")
        self.assertEqual(body["table"]["base"], "EUR")
        self.assertEqual(Decimal(body["table"]["rates"]["USD"]), Decimal("1.1"))

    def test_symbols(self) -> None:
        body = self.client.get("/rates/symbols").json()

        self.assertEqual(body["status"], "success")
        self.assertEqual(body["symbols"]["EUR"], "Euro")

    def test_historical_rates_failure_is_reported(self) -> None:
        ok = self.client.get("/rates/historical/2024-01-01").json()
        failed = self.client.get("/rates/historical/1990-01-01").json()

        self.assertEqual(ok["status"], "success")
        self.assertTrue(ok["table"]["historical"])
        self.assertEqual(failed["status"], "failure")
        self.assertEqual(failed["error_kind"], "ServiceError")
        self.assertIn("invalid date", failed["error"])

    def test_convert_currency(self) -> None:
        response = self.client.get("/currency/convert", params={"amount": "10", "from": "usd", "to": "EUR"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["converted_amount"]), Decimal("9.09"))

    def test_convert_currency_unknown_code(self) -> None:
        response = self.client.get("/currency/convert", params={"amount": "10", "from": "USD", "to": "GBP"})

        self.assertEqual(response.status_code, 400)

    def test_fluctuation(self) -> None:
        response = self.client.get(
            "/rates/fluctuation",
            params={"start_date": "2024-01-01", "end_date": "2024-02-01", "from": "EUR", "to": "USD"},
        )

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(Decimal(body["change"]), Decimal("0.25"))
        self.assertEqual(Decimal(body["change_pct"]), Decimal("25"))

    def test_fluctuation_rejects_reversed_range(self) -> None:
        response = self.client.get(
            "/rates/fluctuation",
            params={"start_date": "2024-02-01", "end_date": "2024-01-01", "from": "EUR", "to": "USD"},
        )

        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
