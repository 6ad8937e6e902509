from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from models import CATEGORIES_BY_TYPE, DESCRIPTION_MAX_LENGTH, TransactionType
from money import MAX_AMOUNT, has_cent_precision
from periods import parse_instant, utcnow


class TransactionIn(BaseModel):
    """Create/replace payload. Field order matters: ``category`` is checked
    against the already-validated ``type``."""

    model_config = ConfigDict(extra="ignore")

    type: TransactionType
    amount: Decimal
    category: str
    description: Optional[str] = None
    date: Optional[datetime] = Field(default=None, validate_default=True)

    @field_validator("type", mode="before")
    @classmethod
    def check_type(cls, value: object) -> object:
        if isinstance(value, TransactionType):
            return value
        if value not in tuple(t.value for t in TransactionType):
            raise ValueError("Invalid type")
        return value

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, value: object) -> Decimal:
        if isinstance(value, bool) or value is None:
            raise ValueError("Amount must be a valid number")
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError("Amount must be a valid number") from exc
        if not amount.is_finite():
            raise ValueError("Amount must be a valid number")
        return amount

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("Amount must be greater than 0")
        if value >= MAX_AMOUNT:
            raise ValueError("Amount is too large")
        if not has_cent_precision(value):
            raise ValueError("Amount must have at most two decimal places")
        return value

    @field_validator("category", mode="before")
    @classmethod
    def strip_category(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("category")
    @classmethod
    def check_category(cls, value: str, info: ValidationInfo) -> str:
        if not value:
            raise ValueError("Category required")
        txn_type = info.data.get("type")
        if txn_type is not None and value not in CATEGORIES_BY_TYPE[txn_type]:
            raise ValueError(
                f"Category '{value}' is not valid for {txn_type.value} transactions"
            )
        return value

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            if len(value) > DESCRIPTION_MAX_LENGTH:
                raise ValueError(
                    f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters"
                )
        return value

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: object) -> object:
        if isinstance(value, (str, date)):
            return parse_instant(value)
        return value

    @field_validator("date")
    @classmethod
    def check_date(cls, value: Optional[datetime]) -> datetime:
        now = utcnow()
        if value is None:
            return now
        if value > now:
            raise ValueError("Date cannot be in the future")
        return value


class BulkDeleteIn(BaseModel):
    ids: list[int] = Field(..., min_length=1)
