from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # no context manager: the scheduler is not started
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert "state" in body["ai"]


def test_income_crud_round_trip(client: TestClient) -> None:
    created = client.post("/v1/incomes", json={"name": "Salary", "amount": 300000})
    assert created.status_code == 201
    income_id = created.json()["id"]
    assert created.json()["frequency"] == "MONTHLY"

    updated = client.put(
        f"/v1/incomes/{income_id}", json={"name": "Salary", "amount": 320000}
    )
    assert updated.json()["amount"] == 320000
    assert [i["name"] for i in client.get("/v1/incomes").json()] == ["Salary"]

    assert client.delete(f"/v1/incomes/{income_id}").json() == {
        "status": "deleted",
        "id": income_id,
    }
    assert client.get("/v1/incomes").json() == []


def test_errors_use_flat_payload(client: TestClient) -> None:
    response = client.get("/v1/goals/99")
    assert response.status_code == 404
    assert response.json() == {
        "code": "GOAL_NOT_FOUND",
        "message": "Goal 99 not found",
        "details": {"id": 99},
    }


def test_request_validation(client: TestClient) -> None:
    response = client.post("/v1/expenses", json={"date": "2024-03-01", "amount": -5})
    assert response.status_code == 422


def test_budget_status_and_rebalance(client: TestClient) -> None:
    today = date.today().isoformat()
    client.post("/v1/budgets", json={"category": "food-dining", "amount": 1000})
    client.post("/v1/budgets", json={"category": "shopping", "amount": 2000})
    client.post(
        "/v1/expenses", json={"date": today, "amount": 1250, "category": "food-dining"}
    )

    status = client.get("/v1/gps/budgets/Food-Dining").json()
    assert status["trigger"] == "BUDGET_CRITICAL"
    assert status["overage_percent"] == 25.0
    assert [s["category"] for s in client.get("/v1/gps/budgets").json()] == ["food-dining"]

    duplicate = client.post("/v1/budgets", json={"category": "FOOD-DINING", "amount": 5})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "BUDGET_ALREADY_EXISTS"

    moved = client.post(
        "/v1/gps/rebalance",
        json={"from_category": "shopping", "to_category": "food-dining", "amount": 300},
    )
    assert moved.status_code == 201
    assert moved.json()["to_category"] == "food-dining"
    assert client.get("/v1/gps/budgets/food-dining").json()["budgeted"] == 1300

    missing = client.get("/v1/gps/budgets/travel")
    assert missing.status_code == 404
    assert missing.json()["code"] == "GPS_NO_BUDGET_FOUND"
    assert missing.json()["details"]["available_categories"] == ["food-dining", "shopping"]


def test_finance_endpoints(client: TestClient) -> None:
    client.post("/v1/incomes", json={"name": "Salary", "amount": 300000})
    score = client.get("/v1/finance/cash-flow-score")
    assert score.status_code == 200
    assert 0 <= score.json()["final_score"] <= 100

    history = client.get("/v1/finance/score-history", params={"days": 9999})
    assert history.json()["points"] == []

    no_goal = client.post("/v1/finance/simulation")
    assert no_goal.status_code == 422
    assert no_goal.json()["code"] == "GPS_NO_ACTIVE_GOAL"


def test_ubuntu_dependency_ratio(client: TestClient) -> None:
    client.post("/v1/incomes", json={"name": "Salary", "amount": 300000})
    client.post(
        "/v1/family-support",
        json={"name": "Mum", "relationship": "PARENT", "amount": 60000},
    )
    body = client.get("/v1/ubuntu/dependency-ratio").json()
    assert body["total_ratio"] == 0.2
    assert body["risk_level"] == "ORANGE"


def test_commitment_flow(client: TestClient) -> None:
    goal = client.post("/v1/goals", json={"name": "Car", "target_amount": 2000000}).json()
    deadline = (datetime.utcnow() + timedelta(days=30)).isoformat()

    created = client.post(
        "/v1/commitments",
        json={
            "goal_id": goal["id"],
            "stake_type": "LOSS_POOL",
            "stake_amount": 10000,
            "deadline": deadline,
        },
    )
    assert created.status_code == 201
    contract_id = created.json()["id"]
    assert created.json()["status"] == "ACTIVE"

    risk = client.get("/v1/commitments/risk").json()
    assert risk["has_active_commitment"] is True
    assert risk["total_stake_at_risk"] == 10000

    verified = client.post(f"/v1/commitments/{contract_id}/verify", json={"achieved": True})
    assert verified.json()["status"] == "SUCCEEDED"

    again = client.post(f"/v1/commitments/{contract_id}/verify", json={"achieved": False})
    assert again.status_code == 409
    assert again.json()["code"] == "COMMITMENT_ALREADY_RESOLVED"

    listed = client.get("/v1/commitments", params={"status": "SUCCEEDED"}).json()
    assert [c["id"] for c in listed] == [contract_id]


def test_invalid_stake(client: TestClient) -> None:
    goal = client.post("/v1/goals", json={"name": "Car", "target_amount": 2000000}).json()
    response = client.post(
        "/v1/commitments",
        json={
            "goal_id": goal["id"],
            "stake_type": "SOCIAL",
            "deadline": (datetime.utcnow() + timedelta(days=2)).isoformat(),
        },
    )
    assert response.status_code == 400
    assert "at least 7 days" in response.json()["message"]


def test_csv_import(client: TestClient) -> None:
    day = (date.today() - timedelta(days=2)).isoformat()
    content = (
        "Date,Narration,Debit,Credit\n"
        f"{day},POS PURCHASE - SHOPRITE LEKKI 1234,5000,\n"
        f"{day},Salary,,250000\n"
        "bad,Something,100,\n"
    )
    body = client.post("/v1/import/csv", json={"content": content}).json()
    assert body["errors"] == ["Row 3: Unrecognised date 'bad'"]
    assert body["summary"]["received"] == 2
    assert body["summary"]["created"] == 1

    expenses = client.get("/v1/expenses").json()
    assert expenses[0]["amount"] == 5000
    assert expenses[0]["category"] == "food-dining"


def test_csv_import_reports_non_finite_amounts(client: TestClient) -> None:
    day = (date.today() - timedelta(days=2)).isoformat()
    content = (
        "Date,Narration,Debit,Credit\n"
        f"{day},POS PURCHASE - SHOPRITE,NaN,\n"
        f"{day},POS PURCHASE - SPAR,Infinity,\n"
        f"{day},Airtime,100,\n"
    )
    response = client.post("/v1/import/csv", json={"content": content})
    assert response.status_code == 200
    body = response.json()
    assert body["errors"] == ["Row 1: Invalid amount", "Row 2: Invalid amount"]
    assert body["summary"]["created"] == 1


def test_json_import_rejects_infinite_amount(client: TestClient) -> None:
    day = (date.today() - timedelta(days=2)).isoformat()
    response = client.post(
        "/v1/import/transactions",
        json={"transactions": [{"date": day, "amount": "-inf", "type": "debit"}]},
    )
    assert response.status_code == 422
    assert client.get("/v1/expenses").json() == []


def test_shark_audit_needs_data(client: TestClient) -> None:
    response = client.post("/v1/shark/audit")
    assert response.status_code == 422
    assert response.json()["code"] == "SHARK_INSUFFICIENT_DATA"
    assert client.get("/v1/shark/subscriptions/5").status_code == 404


def test_story_card_share_flow(client: TestClient) -> None:
    created = client.post(
        "/v1/story-cards",
        json={
            "type": "RECOVERY",
            "recovery": {
                "category": "food-dining",
                "selected_path": "freeze_protocol",
                "previous_probability": 0.6,
                "new_probability": 0.85,
            },
        },
    )
    assert created.status_code == 201
    card = created.json()
    assert card["key_metric"]["value"] == "+25%"
    token = card["share_url"].rsplit("/", 1)[1]

    public = client.get(f"/v1/share/{token}").json()
    assert public["id"] == card["id"]
    assert public["view_count"] == 1
    assert "share_url" not in public

    client.delete(f"/v1/story-cards/{card['id']}")
    assert client.get(f"/v1/story-cards/{card['id']}").status_code == 404
    assert client.get(f"/v1/share/{token}").json()["code"] == "STORY_CARD_INVALID_SHARE"


def test_story_card_requires_source(client: TestClient) -> None:
    assert client.post("/v1/story-cards", json={"type": "FUTURE_SELF"}).status_code == 422
    missing_goal = client.post("/v1/story-cards", json={"type": "MILESTONE", "source_id": 9})
    assert missing_goal.status_code == 404


def test_financial_safety_metric(client: TestClient) -> None:
    blocked = client.post(
        "/v1/metrics/financial-safety",
        json={"output": "Take a payday loan to cover it"},
    ).json()
    assert blocked["score"] == 0
    assert client.get("/v1/metrics/cache-stats").status_code == 200
