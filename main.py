import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import ConsistencyError, NotFoundError, StoreUnavailableError, ValidationError
from models import TransactionSort, TransactionType
from schemas import (
    DailyBalanceOut,
    DepositIn,
    MonthSummaryOut,
    TodaySummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionPageOut,
    TransactionPatch,
)
from services import (
    DailyBalanceService,
    SavingsGoalService,
    TransactionFilters,
    TransactionQueryService,
    TransactionService,
    get_current_user_id,
)


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Daily Ledger")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

RECENT_DAYS_MAX = 366


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    return get_current_user_id() if x_user_id is None else x_user_id


@app.exception_handler(StoreUnavailableError)
def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ConsistencyError)
def consistency_error_handler(request: Request, exc: ConsistencyError):
    logger.error(f"consistency_error: path={request.url.path} error={exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def _int_param(request: Request, name: str) -> Optional[int]:
    value = request.query_params.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{name} must be an integer") from exc


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"].lower())
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="type must be income or expense"
            ) from exc
    sort = TransactionSort.recent
    if params.get("sort"):
        try:
            sort = TransactionSort(params["sort"])
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Unknown sort") from exc

    category_ids: list[int] = []
    for raw in params.getlist("category_id"):
        for part in raw.split(","):
            if not part.strip():
                continue
            try:
                category_ids.append(int(part))
            except ValueError as exc:
                raise HTTPException(
                    status_code=400, detail="category_id must be an integer"
                ) from exc

    return TransactionFilters(
        type=txn_type,
        category_ids=category_ids or None,
        search=params.get("search") or None,
        year=_int_param(request, "year"),
        month=_int_param(request, "month"),
        start_year=_int_param(request, "start_year"),
        start_month=_int_param(request, "start_month"),
        end_year=_int_param(request, "end_year"),
        end_month=_int_param(request, "end_month"),
        min_amount=_int_param(request, "min_amount"),
        max_amount=_int_param(request, "max_amount"),
        savings_only=params.get("savings_only", "").lower() in ("1", "true", "on"),
        sort=sort,
        limit=_int_param(request, "limit"),
        cursor=params.get("cursor") or None,
    )


@app.get("/api/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).create(data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/transactions", response_model=TransactionPageOut)
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    filters = filters_from_request(request)
    try:
        page = TransactionQueryService(db, user_id).list(filters)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionPageOut(
        items=[TransactionOut.model_validate(txn) for txn in page.items],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


@app.get("/api/transactions/recent", response_model=list[TransactionOut])
def recent_transactions(
    limit: int = 5,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    limit = min(max(limit, 1), get_settings().page_limit_max)
    return TransactionService(db, user_id).recent(limit)


@app.get("/api/transactions/oldest-day")
def oldest_transaction_day(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    oldest = TransactionService(db, user_id).oldest_day()
    return {"day": oldest.isoformat() if oldest else None}


@app.get("/api/transactions/today", response_model=TodaySummaryOut)
def today_summary(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return TransactionService(db, user_id).today_summary()


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.patch("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    patch: TransactionPatch,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).update(transaction_id, patch)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).soft_delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/daily-balances", response_model=list[DailyBalanceOut])
def monthly_daily_balances(
    year: int,
    month: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return DailyBalanceService(db, user_id).month(year, month)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/daily-balances/recent", response_model=list[DailyBalanceOut])
def recent_daily_balances(
    days: int = 5,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    days = min(days, RECENT_DAYS_MAX)
    try:
        return DailyBalanceService(db, user_id).recent(days)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/daily-balances/rebuild")
def rebuild_daily_balances(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    count = DailyBalanceService(db, user_id).rebuild()
    return {"days": count}


@app.get("/api/daily-balances/{day}", response_model=DailyBalanceOut)
def daily_balance(
    day: date,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    snapshot = DailyBalanceService(db, user_id).get(day)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No balance recorded for this day")
    return snapshot


@app.get("/api/summary", response_model=MonthSummaryOut)
def month_summary(
    year: int,
    month: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return DailyBalanceService(db, user_id).month_summary(year, month)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post(
    "/api/savings-goals/{goal_id}/deposit",
    response_model=TransactionOut,
    status_code=201,
)
def deposit_to_goal(
    goal_id: int,
    data: DepositIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return SavingsGoalService(db, user_id).deposit(
            goal_id, data.amount_cents, data.occurred_at
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
