from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from money import cents_to_amount
from periods import utcnow


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


INCOME_CATEGORIES: tuple[str, ...] = (
    "Salary",
    "Freelance",
    "Investment",
    "Gift",
    "Other Income",
)

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Shopee Spend",
    "Badminton",
    "Tech Stuff",
    "Rackets",
    "Food & Dining",
    "Transportation",
    "Bills & Utilities",
    "Entertainment",
    "Healthcare",
    "Other Expenses",
)

CATEGORIES_BY_TYPE: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.income: INCOME_CATEGORIES,
    TransactionType.expense: EXPENSE_CATEGORIES,
}

DESCRIPTION_MAX_LENGTH = 200


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(
        String(DESCRIPTION_MAX_LENGTH)
    )
    # naive UTC
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_type_date", "type", "date"),
        Index("ix_transactions_category_date", "category", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)
