"""Transaction store contract and its SQLAlchemy implementation."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional, Protocol

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import casefold
from errors import NotFoundError, StoreError
from models import Transaction, TransactionType
from money import to_cents
from schemas import TransactionIn

logger = logging.getLogger(__name__)


class SortField(str, Enum):
    date = "date"
    amount = "amount"
    category = "category"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class CategorySum:
    category: str
    total_cents: int


class TransactionStore(Protocol):
    """Record store consumed by the query and aggregation engines."""

    def count(self, filters: TransactionFilters) -> int:
        ...

    def find(
        self,
        filters: TransactionFilters,
        sort: tuple[SortField, SortOrder],
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        ...

    def sum_amount(self, filters: TransactionFilters) -> int:
        """Sum of ``amount_cents`` over matching records, 0 when none match."""
        ...

    def group_sum_by_category(
        self, filters: TransactionFilters, limit: int, order: SortOrder
    ) -> list[CategorySum]:
        ...

    def get(self, transaction_id: int) -> Optional[Transaction]:
        ...

    def create(self, data: TransactionIn) -> Transaction:
        ...

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        ...

    def delete(self, transaction_id: int) -> None:
        ...


_SORT_COLUMNS = {
    SortField.date: Transaction.date,
    SortField.amount: Transaction.amount_cents,
    SortField.category: Transaction.category,
}


class SqlTransactionStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"store_error: operation={operation}")
            raise StoreError(f"Failed to {operation}") from exc

    @staticmethod
    def _apply_filters(stmt: Select, filters: TransactionFilters) -> Select:
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.start is not None:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(Transaction.date <= filters.end)
        if filters.description:
            haystack = casefold(func.coalesce(Transaction.description, ""))
            stmt = stmt.where(
                haystack.contains(filters.description.casefold(), autoescape=True)
            )
        return stmt

    def count(self, filters: TransactionFilters) -> int:
        stmt = self._apply_filters(select(func.count(Transaction.id)), filters)
        with self._guard("count transactions"):
            return int(self.session.execute(stmt).scalar_one() or 0)

    def find(
        self,
        filters: TransactionFilters,
        sort: tuple[SortField, SortOrder] = (SortField.date, SortOrder.desc),
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        field, order = sort
        column = _SORT_COLUMNS[field]
        primary = column.asc() if order == SortOrder.asc else column.desc()
        stmt = self._apply_filters(select(Transaction), filters).order_by(
            primary, Transaction.id.asc()
        )
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._guard("fetch transactions"):
            return list(self.session.scalars(stmt).all())

    def sum_amount(self, filters: TransactionFilters) -> int:
        stmt = self._apply_filters(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)), filters
        )
        with self._guard("sum transactions"):
            return int(self.session.execute(stmt).scalar_one() or 0)

    def group_sum_by_category(
        self,
        filters: TransactionFilters,
        limit: int,
        order: SortOrder = SortOrder.desc,
    ) -> list[CategorySum]:
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            self._apply_filters(select(Transaction.category, total), filters)
            .group_by(Transaction.category)
            .order_by(
                total.desc() if order == SortOrder.desc else total.asc(),
                Transaction.category.asc(),
            )
            .limit(limit)
        )
        with self._guard("group transactions"):
            rows = self.session.execute(stmt).all()
        return [
            CategorySum(category=row.category, total_cents=int(row.total or 0))
            for row in rows
            if row.total
        ]

    def get(self, transaction_id: int) -> Optional[Transaction]:
        with self._guard("fetch transaction"):
            return self.session.get(Transaction, transaction_id)

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            type=data.type,
            amount_cents=to_cents(data.amount),
            category=data.category,
            description=data.description,
            date=data.date,
        )
        with self._guard("create transaction"):
            self.session.add(txn)
            self.session.commit()
            self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        with self._guard("update transaction"):
            txn.type = data.type
            txn.amount_cents = to_cents(data.amount)
            txn.category = data.category
            txn.description = data.description
            txn.date = data.date
            self.session.commit()
            self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        with self._guard("delete transaction"):
            self.session.delete(txn)
            self.session.commit()
