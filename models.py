from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from periods import utcnow


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionSort(str, Enum):
    recent = "recent"
    oldest = "oldest"
    expensive = "expensive"
    cheapest = "cheapest"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(String(7))
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class SavingsGoal(Base, TimestampMixin):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="savings_goal"
    )

    __table_args__ = (
        CheckConstraint(
            "target_amount_cents > 0", name="ck_savings_goal_target_positive"
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    savings_goal_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("savings_goals.id")
    )
    # Naive UTC; the local calendar day is derived through periods.DayBuckets.
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    savings_goal: Mapped[Optional["SavingsGoal"]] = relationship(
        "SavingsGoal", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at", "id"),
        Index("ix_transactions_user_amount", "user_id", "amount_cents", "id"),
        Index("ix_transactions_user_category", "user_id", "category_id"),
        Index("ix_transactions_user_goal", "user_id", "savings_goal_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class DailyBalance(Base, TimestampMixin):
    __tablename__ = "daily_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "day", name="uq_daily_balance_user_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    income_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    expense_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    savings_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
