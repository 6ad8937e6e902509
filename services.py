from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from functools import partial
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import SingletonThreadPool, StaticPool

from config import get_settings
from errors import NotFoundError, StoreError, ValidationError
from models import CATEGORIES_BY_TYPE, Transaction, TransactionType
from money import cents_to_amount
from periods import InstantLike, Window, month_window, parse_bound, resolve_window
from schemas import TransactionIn
from store import (
    SortField,
    SortOrder,
    SqlTransactionStore,
    TransactionFilters,
    TransactionStore,
)

logger = logging.getLogger(__name__)

TOP_CATEGORY_LIMIT = 20
BULK_DELETE_WORKERS = 4


def category_vocabulary() -> dict[str, list[str]]:
    return {t.value: list(names) for t, names in CATEGORIES_BY_TYPE.items()}


def _validation_error_from(exc: PydanticValidationError) -> ValidationError:
    error = exc.errors()[0]
    field_name = ".".join(str(part) for part in error["loc"]) or None
    if error["type"] == "missing":
        return ValidationError(f"{field_name} is required", field=field_name)
    message = error["msg"].removeprefix("Value error, ")
    return ValidationError(message, field=field_name)


def parse_transaction_input(payload: object) -> TransactionIn:
    """Validate a raw create/update body, reporting the first bad field."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return TransactionIn.model_validate(payload)
    except PydanticValidationError as exc:
        raise _validation_error_from(exc) from exc


def build_filters(
    type: Optional[str] = None,
    category: Optional[str] = None,
    start_date: Optional[InstantLike] = None,
    end_date: Optional[InstantLike] = None,
    description: Optional[str] = None,
) -> TransactionFilters:
    txn_type = None
    if type and type != "all":
        try:
            txn_type = TransactionType(type)
        except ValueError as exc:
            raise ValidationError(
                "type must be one of: all, income, expense", field="type"
            ) from exc
    start = parse_bound(start_date, "startDate")
    end = parse_bound(end_date, "endDate", end_of_day=True)
    return TransactionFilters(
        type=txn_type,
        category=(category or "").strip() or None,
        start=start,
        end=end,
        description=description or None,
    )


@dataclass
class TransactionSort:
    field: str = SortField.date.value
    order: str = SortOrder.desc.value

    def resolve(self) -> tuple[SortField, SortOrder]:
        try:
            sort_field = SortField(self.field)
        except ValueError as exc:
            raise ValidationError(
                "sortBy must be one of: date, amount, category", field="sortBy"
            ) from exc
        try:
            sort_order = SortOrder(self.order)
        except ValueError as exc:
            raise ValidationError(
                "sortOrder must be one of: asc, desc", field="sortOrder"
            ) from exc
        return sort_field, sort_order


@dataclass
class PageRequest:
    number: int = 1
    size: Optional[int] = None

    def resolve(self) -> tuple[int, int]:
        size = self.size if self.size is not None else get_settings().default_page_size
        if isinstance(self.number, bool) or not isinstance(self.number, int):
            raise ValidationError("page must be an integer", field="page")
        if isinstance(size, bool) or not isinstance(size, int):
            raise ValidationError("limit must be an integer", field="limit")
        if self.number < 1:
            raise ValidationError("page must be at least 1", field="page")
        if size < 1:
            raise ValidationError("limit must be at least 1", field="limit")
        return self.number, size


@dataclass
class TransactionPage:
    items: list[Transaction]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass
class BulkDeleteResult:
    deleted: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def _attempt_delete(store: TransactionStore, transaction_id: int) -> str:
    try:
        store.delete(transaction_id)
    except NotFoundError:
        return "missing"
    except StoreError:
        return "failed"
    return "deleted"


def _delete_in_own_session(factory: sessionmaker, transaction_id: int) -> str:
    with factory() as session:
        return _attempt_delete(SqlTransactionStore(session), transaction_id)


class TransactionService:
    def __init__(
        self, session: Session, store: Optional[TransactionStore] = None
    ) -> None:
        self.session = session
        self.store = store or SqlTransactionStore(session)

    def create(self, data: TransactionIn) -> Transaction:
        txn = self.store.create(data)
        logger.info(
            f"transaction_created: id={txn.id} type={txn.type.value} "
            f"category={txn.category}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.store.get(transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.store.update(transaction_id, data)
        logger.info(f"transaction_updated: id={txn.id}")
        return txn

    def delete(self, transaction_id: int) -> None:
        self.store.delete(transaction_id)
        logger.info(f"transaction_deleted: id={transaction_id}")

    def delete_many(self, transaction_ids: Iterable[int]) -> BulkDeleteResult:
        """Best-effort delete; each id is attempted and committed on its own.

        With a pooled SQL engine the deletes run concurrently, one session per
        worker. Single-connection pools (in-memory SQLite) and injected stores
        are deleted one after another through ``self.store``.
        """
        ids = list(dict.fromkeys(transaction_ids))
        factory = self._worker_sessions()
        if factory is None or len(ids) < 2:
            outcomes = [_attempt_delete(self.store, txn_id) for txn_id in ids]
        else:
            workers = min(BULK_DELETE_WORKERS, len(ids))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(
                    pool.map(partial(_delete_in_own_session, factory), ids)
                )
            # Rows were removed through other sessions.
            self.session.expire_all()

        result = BulkDeleteResult()
        for transaction_id, outcome in zip(ids, outcomes):
            getattr(result, outcome).append(transaction_id)
        logger.info(
            f"transactions_bulk_deleted: deleted={len(result.deleted)} "
            f"missing={len(result.missing)} failed={len(result.failed)}"
        )
        return result

    def _worker_sessions(self) -> Optional[sessionmaker]:
        if not isinstance(self.store, SqlTransactionStore):
            return None
        bind = self.session.get_bind()
        if not isinstance(bind, Engine) or isinstance(
            bind.pool, (StaticPool, SingletonThreadPool)
        ):
            return None
        return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        sort: Optional[TransactionSort] = None,
        page: Optional[PageRequest] = None,
    ) -> TransactionPage:
        filters = filters or TransactionFilters()
        sort_key = (sort or TransactionSort()).resolve()
        number, size = (page or PageRequest()).resolve()
        if filters.start and filters.end and filters.end < filters.start:
            raise ValidationError(
                "endDate must not be before startDate", field="endDate"
            )

        total = self.store.count(filters)
        skip = (number - 1) * size
        # Past the last record there is nothing to fetch; this also keeps
        # offset and limit within the range the database accepts.
        items = (
            self.store.find(filters, sort_key, skip=skip, limit=min(size, total - skip))
            if skip < total
            else []
        )
        return TransactionPage(
            items=items,
            total=total,
            page=number,
            page_size=size,
            total_pages=max(1, math.ceil(total / size)),
        )


@dataclass(frozen=True)
class Totals:
    total_income: Decimal
    total_expenses: Decimal
    net: Decimal
    transaction_count: int


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: Decimal


@dataclass(frozen=True)
class TrendPoint:
    day: date
    income: Decimal
    expense: Decimal


@dataclass(frozen=True)
class Summary:
    window: Window
    totals: Totals
    by_category: list[CategoryTotal]
    trend: list[TrendPoint]


class MetricsService:
    """Window statistics. Each read is a separate store query; they do not
    share a snapshot, so a concurrent write can make totals and trend differ."""

    def __init__(
        self, session: Session, store: Optional[TransactionStore] = None
    ) -> None:
        self.session = session
        self.store = store or SqlTransactionStore(session)

    @staticmethod
    def _window_filters(window: Window) -> TransactionFilters:
        if window.end < window.start:
            raise ValidationError(
                "endDate must not be before startDate", field="endDate"
            )
        return TransactionFilters(start=window.start, end=window.end)

    def summarize(self, window: Optional[Window] = None) -> Summary:
        window = window or month_window()
        return Summary(
            window=window,
            totals=self.totals(window),
            by_category=self.category_breakdown(window),
            trend=self.daily_trend(window),
        )

    def summarize_range(
        self,
        start: Optional[InstantLike] = None,
        end: Optional[InstantLike] = None,
    ) -> Summary:
        return self.summarize(resolve_window(start, end))

    def totals(self, window: Window) -> Totals:
        in_window = self._window_filters(window)
        income_cents = self.store.sum_amount(
            replace(in_window, type=TransactionType.income)
        )
        expense_cents = self.store.sum_amount(
            replace(in_window, type=TransactionType.expense)
        )
        return Totals(
            total_income=cents_to_amount(income_cents),
            total_expenses=cents_to_amount(expense_cents),
            net=cents_to_amount(income_cents - expense_cents),
            transaction_count=self.store.count(in_window),
        )

    def category_breakdown(
        self, window: Window, limit: int = TOP_CATEGORY_LIMIT
    ) -> list[CategoryTotal]:
        expenses = replace(self._window_filters(window), type=TransactionType.expense)
        rows = self.store.group_sum_by_category(expenses, limit, SortOrder.desc)
        return [
            CategoryTotal(category=row.category, total=cents_to_amount(row.total_cents))
            for row in rows
        ]

    def daily_trend(self, window: Window) -> list[TrendPoint]:
        # Days without transactions are left out rather than zero-filled.
        txns = self.store.find(
            self._window_filters(window), (SortField.date, SortOrder.asc)
        )
        buckets: dict[date, list[int]] = {}
        for txn in txns:
            bucket = buckets.setdefault(txn.date.date(), [0, 0])
            if txn.type == TransactionType.income:
                bucket[0] += txn.amount_cents
            else:
                bucket[1] += txn.amount_cents
        return [
            TrendPoint(
                day=day,
                income=cents_to_amount(income),
                expense=cents_to_amount(expense),
            )
            for day, (income, expense) in sorted(buckets.items())
        ]
