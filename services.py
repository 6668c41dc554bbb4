from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.sql import Select

from config import get_settings
from cursors import decode_cursor, encode_cursor
from database import atomic
from errors import ConsistencyError, NotFoundError, ValidationError
from models import (
    Category,
    DailyBalance,
    SavingsGoal,
    Transaction,
    TransactionSort,
    TransactionType,
)
from periods import DayBuckets, days_in_month, get_day_buckets, utcnow
from schemas import CategoryIn, SavingsGoalIn, TransactionIn, TransactionPatch


logger = logging.getLogger(__name__)

INVALID_CATEGORY = "Invalid category or category type mismatch"

# Dialects with INSERT ... ON CONFLICT DO NOTHING.
_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


def get_current_user_id() -> int:
    return 1


def _resolve_user_id(user_id: Optional[int]) -> int:
    return get_current_user_id() if user_id is None else user_id


def _check_amount(amount_cents: Optional[int]) -> int:
    if amount_cents is None or int(amount_cents) <= 0:
        raise ValidationError("Amount must be greater than 0")
    return int(amount_cents)


def _check_type(value: object) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError as exc:
        raise ValidationError("Type must be income or expense") from exc


def _live_transactions(user_id: int):
    return (Transaction.user_id == user_id, Transaction.deleted_at.is_(None))


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = _resolve_user_id(user_id)

    def list_all(self, include_archived: bool = False) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if not include_archived:
            stmt = stmt.where(Category.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def create(self, data: CategoryIn) -> Category:
        with atomic(self.session):
            existing = self.session.scalar(
                select(Category).where(
                    Category.user_id == self.user_id,
                    Category.type == data.type,
                    func.lower(Category.name) == data.name.strip().lower(),
                )
            )
            if existing:
                raise ValidationError("Category with this name already exists")
            category = Category(
                user_id=self.user_id,
                name=data.name.strip(),
                type=data.type,
                color=data.color,
                icon=data.icon,
            )
            self.session.add(category)
        return category

    def validate_category(
        self, category_id: int, txn_type: TransactionType
    ) -> Optional[Category]:
        """Return the category if it is live, owned by the user and of ``txn_type``."""
        return self.session.scalar(
            select(Category).where(
                Category.id == category_id,
                Category.user_id == self.user_id,
                Category.type == txn_type,
                Category.archived_at.is_(None),
            )
        )


class DailyBalanceService:
    """Maintains the per-day snapshot rows derived from the transaction log.

    A snapshot is always recomputed from the full set of live transactions of
    its day, never patched. Callers performing a mutation invoke
    ``recompute_days`` inside the same unit of work as the row change.
    """

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        days: Optional[DayBuckets] = None,
    ) -> None:
        self.session = session
        self.user_id = _resolve_user_id(user_id)
        self.days = days or get_day_buckets()

    def _carried_balance(self, day: date) -> int:
        # Days without a snapshot carry no transactions, so the nearest earlier
        # snapshot holds the balance at the end of the previous day.
        value = self.session.scalar(
            select(DailyBalance.balance_cents)
            .where(DailyBalance.user_id == self.user_id, DailyBalance.day < day)
            .order_by(DailyBalance.day.desc())
            .limit(1)
        )
        return int(value) if value is not None else 0

    def _day_totals(self, day: date) -> tuple[int, int, int]:
        start, end = self.days.day_range(day)
        plain = Transaction.savings_goal_id.is_(None)
        row = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (
                                and_(plain, Transaction.type == TransactionType.income),
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("income"),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                and_(
                                    plain, Transaction.type == TransactionType.expense
                                ),
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("expense"),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.savings_goal_id.isnot(None),
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("savings"),
            ).where(
                *_live_transactions(self.user_id),
                Transaction.occurred_at >= start,
                Transaction.occurred_at < end,
            )
        ).one()
        return int(row.income), int(row.expense), int(row.savings)

    def _claim_snapshot(self, day: date) -> DailyBalance:
        """Return the day's snapshot row, created if missing and locked.

        Concurrent writers on the same day queue on this row, so the totals
        read afterwards include every committed transaction of the day.
        """
        dialect = self.session.get_bind().dialect.name
        if dialect in _UPSERT_INSERTS:
            self.session.execute(
                _UPSERT_INSERTS[dialect](DailyBalance)
                .values(user_id=self.user_id, day=day)
                .on_conflict_do_nothing(index_elements=["user_id", "day"])
            )
        snapshot = self.session.scalar(
            select(DailyBalance)
            .where(DailyBalance.user_id == self.user_id, DailyBalance.day == day)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not snapshot:
            snapshot = DailyBalance(user_id=self.user_id, day=day)
            self.session.add(snapshot)
            self.session.flush()
        return snapshot

    def recompute_day(self, day: date) -> DailyBalance:
        snapshot = self._claim_snapshot(day)

        previous = self._carried_balance(day)
        income, expense, savings = self._day_totals(day)
        balance = previous + income - expense - savings

        snapshot.balance_cents = balance
        snapshot.income_cents = income
        snapshot.expense_cents = expense
        snapshot.savings_cents = savings
        self.session.flush()
        logger.debug(
            f"daily_balance_recomputed: user_id={self.user_id} day={day} "
            f"balance={balance} income={income} expense={expense} savings={savings}"
        )
        return snapshot

    def recompute_days(self, days: Iterable[date]) -> list[DailyBalance]:
        """Recompute ``days`` and every later snapshot, oldest first.

        Later balances depend on earlier ones, so an edit on one day is carried
        forward through all persisted snapshots after it.
        """
        touched = set(days)
        if not touched:
            return []
        later = self.session.scalars(
            select(DailyBalance.day).where(
                DailyBalance.user_id == self.user_id,
                DailyBalance.day > min(touched),
            )
        ).all()
        return [self.recompute_day(day) for day in sorted(touched | set(later))]

    def rebuild(self) -> int:
        """Drop and recompute every snapshot of the user from the log."""
        with atomic(self.session):
            self.session.execute(
                delete(DailyBalance).where(DailyBalance.user_id == self.user_id)
            )
            self.session.flush()
            instants = self.session.scalars(
                select(Transaction.occurred_at).where(
                    *_live_transactions(self.user_id)
                )
            ).all()
            days = sorted({self.days.day_bucket(instant) for instant in instants})
            for day in days:
                self.recompute_day(day)
        logger.info(f"daily_balances_rebuilt: user_id={self.user_id} days={len(days)}")
        return len(days)

    def get(self, day: date) -> Optional[DailyBalance]:
        return self.session.scalar(
            select(DailyBalance).where(
                DailyBalance.user_id == self.user_id, DailyBalance.day == day
            )
        )

    def _fill(self, first: date, count: int) -> list[DailyBalance]:
        last = first + timedelta(days=count - 1)
        rows = {
            row.day: row
            for row in self.session.scalars(
                select(DailyBalance).where(
                    DailyBalance.user_id == self.user_id,
                    DailyBalance.day.between(first, last),
                )
            )
        }
        carried = self._carried_balance(first)
        result: list[DailyBalance] = []
        for offset in range(count):
            day = first + timedelta(days=offset)
            row = rows.get(day)
            if row is None:
                # Transient, never added to the session.
                row = DailyBalance(
                    user_id=self.user_id,
                    day=day,
                    balance_cents=carried,
                    income_cents=0,
                    expense_cents=0,
                    savings_cents=0,
                )
            carried = row.balance_cents
            result.append(row)
        return result

    def month(self, year: int, month: int) -> list[DailyBalance]:
        try:
            count = days_in_month(year, month)
        except ValueError as exc:
            raise ValidationError("Month must be between 1 and 12") from exc
        return self._fill(date(year, month, 1), count)

    def recent(self, days: int, today: Optional[date] = None) -> list[DailyBalance]:
        if days < 1:
            raise ValidationError("Days must be at least 1")
        today = today or self.days.today()
        return self._fill(today - timedelta(days=days - 1), days)

    def month_summary(self, year: int, month: int) -> dict[str, object]:
        snapshots = self.month(year, month)
        income = sum(s.income_cents for s in snapshots)
        expense = sum(s.expense_cents for s in snapshots)
        savings = sum(s.savings_cents for s in snapshots)

        start, end = self.days.month_range(year, month)
        total = func.sum(Transaction.amount_cents)
        rows = self.session.execute(
            select(
                Transaction.category_id,
                Category.name,
                func.count(Transaction.id).label("count"),
                total.label("total"),
            )
            .outerjoin(Category, Transaction.category_id == Category.id)
            .where(
                *_live_transactions(self.user_id),
                Transaction.type == TransactionType.expense,
                Transaction.savings_goal_id.is_(None),
                Transaction.occurred_at >= start,
                Transaction.occurred_at < end,
            )
            .group_by(Transaction.category_id, Category.name)
            .order_by(total.desc(), Transaction.category_id)
        ).all()

        return {
            "year": year,
            "month": month,
            "income_cents": income,
            "expense_cents": expense,
            "savings_cents": savings,
            "net_cents": income - expense - savings,
            "closing_balance_cents": snapshots[-1].balance_cents,
            "expense_by_category": [
                {
                    "category_id": row.category_id,
                    "name": row.name or "Uncategorized",
                    "count": int(row.count),
                    "total_cents": int(row.total),
                }
                for row in rows
            ],
        }


class SavingsGoalService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        days: Optional[DayBuckets] = None,
    ) -> None:
        self.session = session
        self.user_id = _resolve_user_id(user_id)
        self.days = days or get_day_buckets()

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        goal = SavingsGoal(
            user_id=self.user_id,
            name=data.name.strip(),
            target_amount_cents=data.target_amount_cents,
            current_amount_cents=data.current_amount_cents,
        )
        with atomic(self.session):
            self.session.add(goal)
        return goal

    def find_live(self, goal_id: int) -> Optional[SavingsGoal]:
        return self.session.scalar(
            select(SavingsGoal).where(
                SavingsGoal.id == goal_id,
                SavingsGoal.user_id == self.user_id,
                SavingsGoal.archived_at.is_(None),
            )
        )

    def get(self, goal_id: int) -> SavingsGoal:
        goal = self.find_live(goal_id)
        if not goal:
            raise NotFoundError("Savings goal not found")
        return goal

    def adjust_amount(self, goal_id: int, delta: int) -> None:
        """Atomically add ``delta`` to the goal's accumulated amount.

        Must run inside the caller's unit of work; a missing goal raises
        ConsistencyError so the whole unit rolls back.
        """
        if delta == 0:
            return
        result = self.session.execute(
            update(SavingsGoal)
            .where(SavingsGoal.id == goal_id, SavingsGoal.user_id == self.user_id)
            .values(current_amount_cents=SavingsGoal.current_amount_cents + delta)
        )
        if result.rowcount != 1:
            raise ConsistencyError(f"Savings goal {goal_id} could not be adjusted")
        logger.info(
            f"savings_goal_adjusted: user_id={self.user_id} goal_id={goal_id} delta={delta}"
        )

    def deposit(
        self,
        goal_id: int,
        amount_cents: int,
        occurred_at: Optional[datetime] = None,
    ) -> Transaction:
        """Fund a goal and record the matching savings transaction in one unit."""
        amount_cents = _check_amount(amount_cents)
        with atomic(self.session):
            goal = self.get(goal_id)
            self.adjust_amount(goal.id, amount_cents)
            txn = Transaction(
                user_id=self.user_id,
                type=TransactionType.expense,
                amount_cents=amount_cents,
                description=f"{goal.name} savings",
                category_id=None,
                savings_goal_id=goal.id,
                occurred_at=(
                    self.days.normalize(occurred_at) if occurred_at else utcnow()
                ),
            )
            self.session.add(txn)
            self.session.flush()
            day = self.days.day_bucket(txn.occurred_at)
            DailyBalanceService(self.session, self.user_id, self.days).recompute_days(
                [day]
            )
        logger.info(
            f"savings_deposit: user_id={self.user_id} goal_id={goal_id} "
            f"transaction_id={txn.id} amount={amount_cents} day={day}"
        )
        return txn


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        days: Optional[DayBuckets] = None,
    ) -> None:
        self.session = session
        self.user_id = _resolve_user_id(user_id)
        self.days = days or get_day_buckets()
        self.balances = DailyBalanceService(session, self.user_id, self.days)
        self.categories = CategoryService(session, self.user_id)
        self.goals = SavingsGoalService(session, self.user_id, self.days)

    def _validate_category(
        self, category_id: Optional[int], txn_type: TransactionType
    ) -> None:
        if category_id is None:
            return
        if not self.categories.validate_category(category_id, txn_type):
            raise ValidationError(INVALID_CATEGORY)

    def _get_for_update(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .where(
                *_live_transactions(self.user_id),
                Transaction.id == transaction_id,
            )
            .with_for_update()
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        with atomic(self.session):
            amount = _check_amount(data.amount_cents)
            txn_type = _check_type(data.type)
            self._validate_category(data.category_id, txn_type)
            if data.savings_goal_id is not None:
                if not self.goals.find_live(data.savings_goal_id):
                    raise ValidationError("Invalid savings goal")

            txn = Transaction(
                user_id=self.user_id,
                type=txn_type,
                amount_cents=amount,
                description=data.description or None,
                category_id=data.category_id,
                savings_goal_id=data.savings_goal_id,
                occurred_at=(
                    self.days.normalize(data.occurred_at)
                    if data.occurred_at
                    else utcnow()
                ),
            )
            self.session.add(txn)
            self.session.flush()
            day = self.days.day_bucket(txn.occurred_at)
            self.balances.recompute_days([day])

        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} "
            f"type={txn.type.value} amount={txn.amount_cents} day={day}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                *_live_transactions(self.user_id),
                Transaction.id == transaction_id,
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        changes = patch.model_dump(exclude_unset=True)
        with atomic(self.session):
            txn = self._get_for_update(transaction_id)

            if "type" in changes:
                changes["type"] = _check_type(changes["type"])
            if "amount_cents" in changes:
                changes["amount_cents"] = _check_amount(changes["amount_cents"])
            if "occurred_at" in changes:
                if changes["occurred_at"] is None:
                    raise ValidationError("occurred_at cannot be cleared")
                changes["occurred_at"] = self.days.normalize(changes["occurred_at"])
            if "description" in changes:
                changes["description"] = changes["description"] or None

            type_changed = "type" in changes and changes["type"] != txn.type
            if "category_id" in changes or type_changed:
                self._validate_category(
                    changes.get("category_id", txn.category_id),
                    changes.get("type", txn.type),
                )

            old_day = self.days.day_bucket(txn.occurred_at)
            old_amount = txn.amount_cents

            for field, value in changes.items():
                setattr(txn, field, value)
            self.session.flush()

            new_day = self.days.day_bucket(txn.occurred_at)
            self.balances.recompute_days({old_day, new_day})

            if txn.savings_goal_id is not None and txn.amount_cents != old_amount:
                self.goals.adjust_amount(
                    txn.savings_goal_id, txn.amount_cents - old_amount
                )

        logger.info(
            f"transaction_updated: user_id={self.user_id} id={txn.id} "
            f"fields={','.join(sorted(changes))} old_day={old_day} new_day={new_day}"
        )
        return txn

    def soft_delete(self, transaction_id: int) -> None:
        with atomic(self.session):
            txn = self._get_for_update(transaction_id)
            txn.deleted_at = utcnow()
            self.session.flush()

            day = self.days.day_bucket(txn.occurred_at)
            self.balances.recompute_days([day])

            if txn.savings_goal_id is not None:
                self.goals.adjust_amount(txn.savings_goal_id, -txn.amount_cents)

        logger.info(
            f"transaction_deleted: user_id={self.user_id} id={transaction_id} day={day}"
        )

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*_live_transactions(self.user_id))
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def oldest_day(self) -> Optional[date]:
        oldest = self.session.scalar(
            select(func.min(Transaction.occurred_at)).where(
                *_live_transactions(self.user_id)
            )
        )
        return self.days.day_bucket(oldest) if oldest else None

    def today_summary(self, today: Optional[date] = None) -> dict[str, object]:
        """Totals and counts of the live transactions of the local day."""
        day = today or self.days.today()
        start, end = self.days.day_range(day)
        plain = Transaction.savings_goal_id.is_(None)
        kinds = {
            "income": and_(plain, Transaction.type == TransactionType.income),
            "expense": and_(plain, Transaction.type == TransactionType.expense),
            "savings": Transaction.savings_goal_id.isnot(None),
        }
        columns = []
        for name, matches in kinds.items():
            columns.append(
                func.coalesce(
                    func.sum(case((matches, Transaction.amount_cents), else_=0)), 0
                ).label(f"{name}_total")
            )
            columns.append(
                func.coalesce(func.sum(case((matches, 1), else_=0)), 0).label(
                    f"{name}_count"
                )
            )
        row = self.session.execute(
            select(*columns).where(
                *_live_transactions(self.user_id),
                Transaction.occurred_at >= start,
                Transaction.occurred_at < end,
            )
        ).one()

        summary: dict[str, object] = {"day": day, "weekday": day.weekday()}
        for name in kinds:
            summary[name] = {
                "total_cents": int(getattr(row, f"{name}_total")),
                "count": int(getattr(row, f"{name}_count")),
            }
        return summary


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_ids: Optional[list[int]] = None
    search: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    start_year: Optional[int] = None
    start_month: Optional[int] = None
    end_year: Optional[int] = None
    end_month: Optional[int] = None
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    savings_only: bool = False
    sort: TransactionSort = TransactionSort.recent
    limit: Optional[int] = None
    cursor: Optional[str] = None


@dataclass
class TransactionPage:
    items: list[Transaction]
    has_more: bool
    next_cursor: Optional[str]


# sort -> (column, descending); ``id`` breaks ties in the same direction.
SORT_KEYS = {
    TransactionSort.recent: (Transaction.occurred_at, True),
    TransactionSort.oldest: (Transaction.occurred_at, False),
    TransactionSort.expensive: (Transaction.amount_cents, True),
    TransactionSort.cheapest: (Transaction.amount_cents, False),
}


class TransactionQueryService:
    """Read-only, seek-paginated listing over the live transaction log."""

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        days: Optional[DayBuckets] = None,
    ) -> None:
        self.session = session
        self.user_id = _resolve_user_id(user_id)
        self.days = days or get_day_buckets()

    def _apply_filters(self, stmt: Select, filters: TransactionFilters) -> Select:
        window = None
        try:
            if None not in (
                filters.start_year,
                filters.start_month,
                filters.end_year,
                filters.end_month,
            ):
                window = self.days.months_range(
                    filters.start_year,
                    filters.start_month,
                    filters.end_year,
                    filters.end_month,
                )
            elif filters.year and filters.month:
                window = self.days.month_range(filters.year, filters.month)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if window:
            stmt = stmt.where(
                Transaction.occurred_at >= window[0],
                Transaction.occurred_at < window[1],
            )

        if filters.type:
            txn_type = _check_type(filters.type)
            stmt = stmt.where(Transaction.type == txn_type)
            if txn_type == TransactionType.expense:
                stmt = stmt.where(Transaction.savings_goal_id.is_(None))
        if filters.category_ids:
            stmt = stmt.where(Transaction.category_id.in_(filters.category_ids))
        if filters.search:
            stmt = stmt.where(
                func.lower(func.coalesce(Transaction.description, "")).contains(
                    filters.search.lower(), autoescape=True
                )
            )
        if filters.savings_only:
            stmt = stmt.where(Transaction.savings_goal_id.isnot(None))
        if filters.min_amount is not None:
            stmt = stmt.where(Transaction.amount_cents >= filters.min_amount)
        if filters.max_amount is not None:
            stmt = stmt.where(Transaction.amount_cents <= filters.max_amount)
        return stmt

    def _cursor_row(self, token: str) -> Transaction:
        transaction_id = decode_cursor(token, self.user_id)
        # Soft-deleted rows are retained, so a cursor keeps working after its
        # row is deleted.
        row = self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
        )
        if not row:
            raise ValidationError("Invalid cursor")
        return row

    def list(self, filters: TransactionFilters) -> TransactionPage:
        settings = get_settings()
        limit = filters.limit if filters.limit is not None else settings.page_limit
        if limit < 1:
            raise ValidationError("Limit must be at least 1")
        limit = min(limit, settings.page_limit_max)

        try:
            sort = TransactionSort(filters.sort)
        except ValueError as exc:
            raise ValidationError(f"Unknown sort: {filters.sort}") from exc
        column, descending = SORT_KEYS[sort]

        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*_live_transactions(self.user_id))
        )
        stmt = self._apply_filters(stmt, filters)

        if filters.cursor:
            anchor = self._cursor_row(filters.cursor)
            value = getattr(anchor, column.key)
            if descending:
                stmt = stmt.where(
                    or_(
                        column < value,
                        and_(column == value, Transaction.id < anchor.id),
                    )
                )
            else:
                stmt = stmt.where(
                    or_(
                        column > value,
                        and_(column == value, Transaction.id > anchor.id),
                    )
                )

        if descending:
            stmt = stmt.order_by(column.desc(), Transaction.id.desc())
        else:
            stmt = stmt.order_by(column.asc(), Transaction.id.asc())

        rows = self.session.scalars(stmt.limit(limit + 1)).all()
        has_more = len(rows) > limit
        items = list(rows[:limit])
        next_cursor = encode_cursor(items[-1].id, self.user_id) if has_more else None
        return TransactionPage(items=items, has_more=has_more, next_cursor=next_cursor)
