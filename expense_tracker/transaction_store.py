from __future__ import annotations

from decimal import Decimal
import logging
from typing import Optional, Union

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from expense_tracker.models import Transaction
from expense_tracker.signals import Signal

logger = logging.getLogger(__name__)

metadata = MetaData()

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("category", String(255), nullable=False),
    Column("date", DateTime, nullable=False),
    Column("note", String(500)),
    Column("payment_method", String(50), nullable=False),
)

Snapshot = tuple[Transaction, ...]


class TransactionNotFound(LookupError):
    """Raised when a transaction id does not exist in the store."""


class DuplicateTransaction(ValueError):
    """Raised when inserting a transaction whose id already exists."""


def create_db_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(database_url, connect_args=connect_args)
    return create_engine(database_url)


def _row_to_transaction(row) -> Transaction:
    amount = row["amount"]
    return Transaction(
        id=row["id"],
        amount=amount if isinstance(amount, Decimal) else Decimal(str(amount)),
        currency=row["currency"],
        category=row["category"],
        date=row["date"],
        note=row["note"],
        payment_method=row["payment_method"],
    )


def _values(txn: Transaction) -> dict:
    return {
        "amount": txn.amount,
        "currency": txn.currency,
        "category": txn.category,
        "date": txn.date,
        "note": txn.note,
        "payment_method": txn.payment_method,
    }


class TransactionStore:
    """SQL-backed transaction collection that publishes a full snapshot after every write."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine)
        self._snapshot: Signal[Snapshot] = Signal(self._load_all(), name="transactions")

    @classmethod
    def from_url(cls, database_url: str) -> "TransactionStore":
        return cls(create_db_engine(database_url))

    def observe_all(self) -> Signal[Snapshot]:
        return self._snapshot

    def all(self) -> Snapshot:
        return self._snapshot.value

    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(transactions).where(transactions.c.id == transaction_id)
            ).mappings().first()
        return _row_to_transaction(row) if row else None

    def insert(self, txn: Transaction) -> Transaction:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(transactions).values(id=txn.id, **_values(txn)))
        except IntegrityError as exc:
            raise DuplicateTransaction(f"Transaction {txn.id} already exists.") from exc
        logger.info("Inserted transaction id=%s category=%s currency=%s", txn.id, txn.category, txn.currency)
        self._publish()
        return txn

    def update(self, txn: Transaction) -> Transaction:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(transactions).where(transactions.c.id == txn.id).values(**_values(txn))
            )
            if result.rowcount == 0:
                raise TransactionNotFound(f"Transaction {txn.id} not found.")
        logger.info("Updated transaction id=%s", txn.id)
        self._publish()
        return txn

    def delete(self, txn: Union[Transaction, str]) -> None:
        transaction_id = txn.id if isinstance(txn, Transaction) else txn
        with self.engine.begin() as conn:
            result = conn.execute(delete(transactions).where(transactions.c.id == transaction_id))
            if result.rowcount == 0:
                raise TransactionNotFound(f"Transaction {transaction_id} not found.")
        logger.info("Deleted transaction id=%s", transaction_id)
        self._publish()

    def _load_all(self) -> Snapshot:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(transactions).order_by(transactions.c.date.desc(), transactions.c.id.desc())
            ).mappings().all()
        return tuple(_row_to_transaction(row) for row in rows)

    def _publish(self) -> None:
        self._snapshot.set(self._load_all())
