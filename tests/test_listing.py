from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import ValidationError
from models import TransactionType
from schemas import TransactionIn
from services import (
    PageRequest,
    TransactionService,
    TransactionSort,
    build_filters,
)
from store import TransactionFilters


def _add(
    service: TransactionService,
    txn_type: TransactionType,
    amount: str,
    category: str,
    when: datetime,
    description: str | None = None,
):
    return service.create(
        TransactionIn(
            type=txn_type,
            amount=Decimal(amount),
            category=category,
            description=description,
            date=when,
        )
    )


def _seed_march(service: TransactionService) -> None:
    _add(service, TransactionType.income, "1000", "Salary", datetime(2024, 3, 1))
    _add(
        service,
        TransactionType.expense,
        "300",
        "Food & Dining",
        datetime(2024, 3, 2),
        "Team lunch",
    )
    _add(
        service,
        TransactionType.expense,
        "200",
        "Food & Dining",
        datetime(2024, 3, 3),
        "Groceries",
    )


def test_expense_filter_orders_newest_first() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        _seed_march(service)

        result = service.list(
            build_filters(type="expense"),
            TransactionSort("date", "desc"),
            PageRequest(1, 20),
        )

        assert [t.date for t in result.items] == [
            datetime(2024, 3, 3),
            datetime(2024, 3, 2),
        ]
        assert result.total == 2
        assert result.total_pages == 1
        assert result.page == 1


def test_defaults_list_everything_by_date_desc() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        _seed_march(service)

        result = service.list()
        assert result.page_size == 20
        assert [t.date.day for t in result.items] == [3, 2, 1]


def test_page_beyond_last_is_empty_not_an_error() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        _seed_march(service)

        result = service.list(page=PageRequest(5, 20))
        assert result.items == []
        assert result.total == 3
        assert result.total_pages == 1


def test_page_numbers_beyond_database_integer_range_are_empty() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        _seed_march(service)

        far = service.list(page=PageRequest(10**19, 20))
        assert far.items == []
        assert far.total == 3
        assert far.page == 10**19
        assert far.total_pages == 1

        everything = service.list(page=PageRequest(1, 10**19))
        assert [t.date.day for t in everything.items] == [3, 2, 1]
        assert everything.total_pages == 1


def test_empty_store_still_reports_one_page() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        result = TransactionService(session).list()
        assert result.items == []
        assert result.total == 0
        assert result.total_pages == 1


def test_pages_slice_the_sorted_result() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        for day in range(1, 8):
            _add(
                service,
                TransactionType.expense,
                str(day),
                "Transportation",
                datetime(2024, 3, day),
            )

        sort = TransactionSort("amount", "asc")
        pages = [service.list(sort=sort, page=PageRequest(n, 3)) for n in (1, 2, 3)]

        assert [p.total_pages for p in pages] == [3, 3, 3]
        assert [len(p.items) for p in pages] == [3, 3, 1]
        amounts = [t.amount for p in pages for t in p.items]
        assert amounts == [Decimal(n) for n in range(1, 8)]


def test_duplicate_sort_values_fall_back_to_id_order() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        ids = [
            _add(
                service,
                TransactionType.expense,
                "10",
                category,
                datetime(2024, 3, 5),
            ).id
            for category in ("Rackets", "Badminton", "Healthcare")
        ]

        for order in ("asc", "desc"):
            first = service.list(sort=TransactionSort("amount", order))
            second = service.list(sort=TransactionSort("amount", order))
            assert [t.id for t in first.items] == ids
            assert [t.id for t in second.items] == ids

        by_category = service.list(sort=TransactionSort("category", "asc"))
        assert [t.category for t in by_category.items] == [
            "Badminton",
            "Healthcare",
            "Rackets",
        ]


def test_category_and_date_range_filters() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        _seed_march(service)
        _add(
            service,
            TransactionType.expense,
            "80",
            "Food & Dining",
            datetime(2024, 3, 2, 18, 30),
        )

        by_category = service.list(build_filters(category="Food & Dining"))
        assert by_category.total == 3

        # a date-only upper bound covers the whole day
        through_second = service.list(
            build_filters(start_date="2024-03-02", end_date="2024-03-02")
        )
        assert through_second.total == 2

        open_ended = service.list(build_filters(start_date="2024-03-02"))
        assert open_ended.total == 3

        up_to = service.list(build_filters(end_date="2024-03-01"))
        assert [t.category for t in up_to.items] == ["Salary"]


def test_description_search_is_case_insensitive_substring() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        _seed_march(service)
        _add(
            service,
            TransactionType.income,
            "15",
            "Other Income",
            datetime(2024, 3, 4),
            "100% refund",
        )

        result = service.list(build_filters(description="LUNCH"))
        assert [t.description for t in result.items] == ["Team lunch"]

        literal = service.list(build_filters(description="%"))
        assert [t.description for t in literal.items] == ["100% refund"]

        assert service.list(build_filters(description="rent")).total == 0


def test_all_type_filter_means_no_type_constraint() -> None:
    filters = build_filters(type="all")
    assert filters == TransactionFilters()


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"sort": TransactionSort("description", "desc")}, "sortBy"),
        ({"sort": TransactionSort("date", "sideways")}, "sortOrder"),
        ({"page": PageRequest(0, 20)}, "page"),
        ({"page": PageRequest(-1, 20)}, "page"),
        ({"page": PageRequest(1, 0)}, "limit"),
        (
            {
                "filters": TransactionFilters(
                    start=datetime(2024, 3, 5), end=datetime(2024, 3, 1)
                )
            },
            "endDate",
        ),
    ],
)
def test_invalid_parameters_fail_before_touching_the_store(kwargs, field) -> None:
    class UntouchableStore:
        def __getattr__(self, name):
            raise AssertionError(f"store.{name} must not be called")

    service = TransactionService(session=None, store=UntouchableStore())
    with pytest.raises(ValidationError) as excinfo:
        service.list(**kwargs)
    assert excinfo.value.field == field


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"type": "transfer"}, "type"),
        ({"start_date": "yesterday"}, "startDate"),
    ],
)
def test_build_filters_rejects_bad_criteria(kwargs, field) -> None:
    with pytest.raises(ValidationError) as excinfo:
        build_filters(**kwargs)
    assert excinfo.value.field == field


def test_description_search_folds_non_ascii_case() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        _add(
            service,
            TransactionType.expense,
            "18.40",
            "Food & Dining",
            datetime(2024, 3, 8),
            "Ćevapi Östra",
        )
        _add(
            service,
            TransactionType.expense,
            "9",
            "Transportation",
            datetime(2024, 3, 9),
            "Straße map",
        )

        assert service.list(build_filters(description="östra")).total == 1
        assert service.list(build_filters(description="ĆEVAPI")).total == 1
        assert service.list(build_filters(description="STRASSE")).total == 1


def test_reversed_date_range_is_rejected_by_the_listing() -> None:
    filters = build_filters(start_date="2024-03-05", end_date="2024-03-01")
    assert filters.end < filters.start

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        with pytest.raises(ValidationError) as excinfo:
            TransactionService(session).list(filters)
    assert excinfo.value.field == "endDate"
