import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db
from models import Category, SavingsGoal, TransactionType


@pytest.fixture
def db_session():
    # StaticPool keeps every connection on the same in-memory database.
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def post_txn(client, **fields):
    body = {"type": "expense", "occurred_at": "2025-01-01T12:00:00+09:00"}
    body.update(fields)
    return client.post("/api/transactions", json=body)


def test_health(client) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_and_fetch_transaction(client) -> None:
    response = post_txn(client, type="income", amount_cents=100_000, description="Pay")
    assert response.status_code == 201
    created = response.json()
    assert created["amount_cents"] == 100_000
    assert created["occurred_at"] == "2025-01-01T03:00:00"

    fetched = client.get(f"/api/transactions/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["description"] == "Pay"

    day = client.get("/api/daily-balances/2025-01-01")
    assert day.status_code == 200
    assert day.json() == {
        "day": "2025-01-01",
        "balance_cents": 100_000,
        "income_cents": 100_000,
        "expense_cents": 0,
        "savings_cents": 0,
    }


def test_create_validation_errors_are_400(client, db_session) -> None:
    salary = Category(name="Salary", type=TransactionType.income)
    db_session.add(salary)
    db_session.commit()

    assert post_txn(client, amount_cents=0).status_code == 400
    assert post_txn(client, amount_cents=-5).status_code == 400
    mismatch = post_txn(client, amount_cents=500, category_id=salary.id)
    assert mismatch.status_code == 400
    assert "category" in mismatch.json()["detail"]
    assert client.get("/api/transactions").json()["items"] == []


def test_patch_and_delete(client) -> None:
    txn_id = post_txn(client, amount_cents=3_000).json()["id"]

    patched = client.patch(f"/api/transactions/{txn_id}", json={"amount_cents": 4_000})
    assert patched.status_code == 200
    assert patched.json()["amount_cents"] == 4_000
    assert client.patch(
        f"/api/transactions/{txn_id}", json={"amount_cents": 0}
    ).status_code == 400

    assert client.delete(f"/api/transactions/{txn_id}").status_code == 204
    assert client.get(f"/api/transactions/{txn_id}").status_code == 404
    assert client.delete(f"/api/transactions/{txn_id}").status_code == 404
    assert client.patch(
        f"/api/transactions/{txn_id}", json={"amount_cents": 1}
    ).status_code == 404

    day = client.get("/api/daily-balances/2025-01-01").json()
    assert day["balance_cents"] == 0
    assert day["expense_cents"] == 0


def test_list_paginates_with_cursor(client) -> None:
    for hour in range(5):
        post_txn(
            client,
            amount_cents=100 + hour,
            occurred_at=f"2025-01-01T{10 + hour:02d}:00:00+09:00",
        )

    first = client.get("/api/transactions", params={"limit": 2}).json()
    assert [t["amount_cents"] for t in first["items"]] == [104, 103]
    assert first["has_more"] is True

    second = client.get(
        "/api/transactions", params={"limit": 2, "cursor": first["next_cursor"]}
    ).json()
    assert [t["amount_cents"] for t in second["items"]] == [102, 101]

    third = client.get(
        "/api/transactions", params={"limit": 2, "cursor": second["next_cursor"]}
    ).json()
    assert [t["amount_cents"] for t in third["items"]] == [100]
    assert third["has_more"] is False
    assert third["next_cursor"] is None

    cheapest = client.get(
        "/api/transactions", params={"sort": "cheapest", "limit": 1}
    ).json()
    assert cheapest["items"][0]["amount_cents"] == 100


def test_list_rejects_bad_parameters(client) -> None:
    assert client.get("/api/transactions", params={"cursor": "junk"}).status_code == 400
    assert client.get("/api/transactions", params={"type": "gift"}).status_code == 400
    assert client.get("/api/transactions", params={"sort": "random"}).status_code == 400
    assert client.get("/api/transactions", params={"limit": "ten"}).status_code == 400
    assert client.get("/api/transactions", params={"limit": 0}).status_code == 400
    assert client.get(
        "/api/transactions", params={"category_id": "1,x"}
    ).status_code == 400


def test_list_accepts_repeated_and_comma_separated_categories(
    client, db_session
) -> None:
    food = Category(name="Food", type=TransactionType.expense)
    rent = Category(name="Rent", type=TransactionType.expense)
    fun = Category(name="Fun", type=TransactionType.expense)
    db_session.add_all([food, rent, fun])
    db_session.commit()
    for category in (food, rent, fun):
        post_txn(client, amount_cents=1_000, category_id=category.id)

    response = client.get(
        "/api/transactions",
        params=[("category_id", f"{food.id},{rent.id}"), ("category_id", str(fun.id))],
    )
    assert len(response.json()["items"]) == 3

    response = client.get("/api/transactions", params={"category_id": str(rent.id)})
    assert [t["category_id"] for t in response.json()["items"]] == [rent.id]


def test_daily_balance_views(client) -> None:
    post_txn(client, type="income", amount_cents=10_000)
    post_txn(client, amount_cents=2_500, occurred_at="2025-01-03T08:00:00+09:00")

    month = client.get("/api/daily-balances", params={"year": 2025, "month": 1})
    assert month.status_code == 200
    rows = month.json()
    assert len(rows) == 31
    assert [r["balance_cents"] for r in rows[:4]] == [10_000, 10_000, 7_500, 7_500]

    assert client.get("/api/daily-balances/2025-01-02").status_code == 404
    assert client.get(
        "/api/daily-balances", params={"year": 2025, "month": 13}
    ).status_code == 400
    assert client.get(
        "/api/daily-balances/recent", params={"days": 0}
    ).status_code == 400
    assert len(client.get("/api/daily-balances/recent").json()) == 5

    rebuilt = client.post("/api/daily-balances/rebuild")
    assert rebuilt.json() == {"days": 2}

    summary = client.get("/api/summary", params={"year": 2025, "month": 1}).json()
    assert summary["income_cents"] == 10_000
    assert summary["expense_cents"] == 2_500
    assert summary["closing_balance_cents"] == 7_500
    assert summary["expense_by_category"] == [
        {"category_id": None, "name": "Uncategorized", "count": 1, "total_cents": 2_500}
    ]


def test_deposit_to_goal(client, db_session) -> None:
    goal = SavingsGoal(name="Trip", target_amount_cents=50_000)
    db_session.add(goal)
    db_session.commit()

    response = client.post(
        f"/api/savings-goals/{goal.id}/deposit",
        json={"amount_cents": 20_000, "occurred_at": "2025-01-02T12:00:00+09:00"},
    )
    assert response.status_code == 201
    assert response.json()["savings_goal_id"] == goal.id

    db_session.refresh(goal)
    assert goal.current_amount_cents == 20_000
    day = client.get("/api/daily-balances/2025-01-02").json()
    assert day["savings_cents"] == 20_000
    assert day["balance_cents"] == -20_000

    assert client.post(
        f"/api/savings-goals/{goal.id + 1}/deposit", json={"amount_cents": 1}
    ).status_code == 404
    assert client.post(
        f"/api/savings-goals/{goal.id}/deposit", json={"amount_cents": 0}
    ).status_code == 400


def test_user_header_scopes_data(client) -> None:
    txn_id = post_txn(client, amount_cents=700).json()["id"]

    other = {"X-User-Id": "2"}
    assert client.get(f"/api/transactions/{txn_id}", headers=other).status_code == 404
    assert client.get("/api/transactions", headers=other).json()["items"] == []
    assert client.get("/api/transactions/oldest-day", headers=other).json() == {
        "day": None
    }
    assert client.get("/api/transactions/oldest-day").json() == {"day": "2025-01-01"}


def test_transactions_embed_their_category(client, db_session) -> None:
    food = Category(name="Food", type=TransactionType.expense, color="#ff8800")
    db_session.add(food)
    db_session.commit()

    created = post_txn(client, amount_cents=1_000, category_id=food.id).json()
    assert created["category"] == {
        "id": food.id,
        "name": "Food",
        "type": "expense",
        "color": "#ff8800",
        "icon": None,
    }
    post_txn(client, amount_cents=500)

    items = client.get("/api/transactions", params={"sort": "expensive"}).json()[
        "items"
    ]
    assert items[0]["category"]["name"] == "Food"
    assert items[1]["category"] is None


def test_recent_daily_balances_are_capped(client) -> None:
    response = client.get("/api/daily-balances/recent", params={"days": 100_000})
    assert response.status_code == 200
    assert len(response.json()) == 366


def test_today_summary(client) -> None:
    client.post("/api/transactions", json={"type": "income", "amount_cents": 4_000})
    client.post("/api/transactions", json={"type": "expense", "amount_cents": 1_500})
    post_txn(client, amount_cents=9_999, occurred_at="2001-01-01T12:00:00+09:00")

    summary = client.get("/api/transactions/today").json()

    assert summary["income"] == {"total_cents": 4_000, "count": 1}
    assert summary["expense"] == {"total_cents": 1_500, "count": 1}
    assert summary["savings"] == {"total_cents": 0, "count": 0}
    assert 0 <= summary["weekday"] <= 6
