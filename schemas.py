from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    icon: Optional[str] = Field(None, max_length=50)


class SavingsGoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_amount_cents: int = Field(..., gt=0)
    current_amount_cents: int = Field(0, ge=0)


class DepositIn(BaseModel):
    amount_cents: int
    # Without an offset, read as wall-clock time in the ledger timezone.
    occurred_at: Optional[datetime] = None


class TransactionIn(BaseModel):
    type: TransactionType
    # Positivity is checked by TransactionService so it surfaces as a ledger
    # ValidationError rather than a schema error.
    amount_cents: int
    description: Optional[str] = Field(None, max_length=200)
    category_id: Optional[int] = None
    savings_goal_id: Optional[int] = None
    # Without an offset, read as wall-clock time in the ledger timezone.
    occurred_at: Optional[datetime] = None


class TransactionPatch(BaseModel):
    """Partial update; only fields that were explicitly set are applied."""

    type: Optional[TransactionType] = None
    amount_cents: Optional[int] = None
    description: Optional[str] = Field(None, max_length=200)
    category_id: Optional[int] = None
    occurred_at: Optional[datetime] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    color: Optional[str]
    icon: Optional[str]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    amount_cents: int
    description: Optional[str]
    category_id: Optional[int]
    category: Optional[CategoryOut] = None
    savings_goal_id: Optional[int]
    occurred_at: datetime
    created_at: datetime
    updated_at: datetime


class TransactionPageOut(BaseModel):
    items: list[TransactionOut]
    has_more: bool
    next_cursor: Optional[str]


class TotalCountOut(BaseModel):
    total_cents: int
    count: int


class TodaySummaryOut(BaseModel):
    day: date
    weekday: int  # Monday is 0
    income: TotalCountOut
    expense: TotalCountOut
    savings: TotalCountOut


class DailyBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date
    balance_cents: int
    income_cents: int
    expense_cents: int
    savings_cents: int


class CategoryTotalOut(BaseModel):
    category_id: Optional[int]
    name: str
    count: int
    total_cents: int


class MonthSummaryOut(BaseModel):
    year: int
    month: int
    income_cents: int
    expense_cents: int
    savings_cents: int
    net_cents: int
    closing_balance_cents: int
    expense_by_category: list[CategoryTotalOut]
