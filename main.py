import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cards import (
    FutureSelfSource,
    Privacy,
    RecoverySource,
    StoryCardService,
)
from config import get_settings
from database import SessionLocal
from errors import IkpaError
from importer import ImportService, RawTransaction, parse_statement_csv
from llm import get_llm_client
from local_cache import get_global_metrics_cache
from metrics import FinancialSafetyMetric, ToneEmpathyMetric
from models import CommitmentStatus, StoryCardType, SubscriptionStatus
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    CancelSubscriptionIn,
    CommitmentIn,
    CommitmentVerifyIn,
    CsvImportIn,
    DebtIn,
    EmergencyImpactIn,
    ExpenseIn,
    FamilySupportIn,
    GoalIn,
    GpsAnalyzeIn,
    ImportTransactionsIn,
    IncomeSourceIn,
    MetricEvaluationIn,
    RebalanceIn,
    SavingsAccountIn,
    SimulationIn,
    StoryCardIn,
    SwipeIn,
)
from services import (
    BudgetService,
    CommitmentService,
    DebtService,
    ExpenseService,
    FamilySupportService,
    FinanceService,
    GoalService,
    GpsService,
    IncomeService,
    SavingsService,
    UbuntuService,
)
from shark import SharkService


logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ikpa")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(IkpaError)
def ikpa_error_handler(request: Request, exc: IkpaError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"request_failed: path={request.url.path} code={exc.code} message={exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def row(record) -> dict:
    return {column.key: getattr(record, column.key) for column in record.__table__.columns}


def _register_crud(path: str, service_cls, schema: type[BaseModel]) -> None:
    """List, create, read, replace and delete routes for one user-owned resource."""

    def list_records(db: Session = Depends(get_db)):
        return [row(r) for r in service_cls(db).list_all()]

    def create_record(data: schema, db: Session = Depends(get_db)):  # type: ignore[valid-type]
        return row(service_cls(db).create(data))

    def get_record(record_id: int, db: Session = Depends(get_db)):
        return row(service_cls(db).get(record_id))

    def update_record(record_id: int, data: schema, db: Session = Depends(get_db)):  # type: ignore[valid-type]
        return row(service_cls(db).update(record_id, data))

    def delete_record(record_id: int, db: Session = Depends(get_db)):
        service_cls(db).delete(record_id)
        return {"status": "deleted", "id": record_id}

    name = path.strip("/").replace("-", "_")
    app.get(path, name=f"list_{name}")(list_records)
    app.post(path, status_code=201, name=f"create_{name}")(create_record)
    app.get(f"{path}/{{record_id}}", name=f"get_{name}")(get_record)
    app.put(f"{path}/{{record_id}}", name=f"update_{name}")(update_record)
    app.delete(f"{path}/{{record_id}}", name=f"delete_{name}")(delete_record)


_register_crud("/v1/incomes", IncomeService, IncomeSourceIn)
_register_crud("/v1/expenses", ExpenseService, ExpenseIn)
_register_crud("/v1/debts", DebtService, DebtIn)
_register_crud("/v1/savings", SavingsService, SavingsAccountIn)
_register_crud("/v1/goals", GoalService, GoalIn)
_register_crud("/v1/budgets", BudgetService, BudgetIn)
_register_crud("/v1/family-support", FamilySupportService, FamilySupportIn)


@app.get("/health")
def health():
    return {"status": "ok", "ai": get_llm_client().circuit_status()}


@app.post("/v1/finance/simulation")
def finance_simulation(
    data: Optional[SimulationIn] = None, db: Session = Depends(get_db)
):
    return FinanceService(db).simulation(data)


@app.get("/v1/finance/cash-flow-score")
def finance_cash_flow_score(db: Session = Depends(get_db)):
    return FinanceService(db).cash_flow_score()


@app.get("/v1/finance/score-history")
def finance_score_history(days: int = 30, db: Session = Depends(get_db)):
    days = min(max(days, 1), 365)
    return FinanceService(db).score_history(days)


@app.get("/v1/gps/budgets")
def gps_budget_alerts(db: Session = Depends(get_db)):
    return BudgetService(db).all_statuses()


@app.get("/v1/gps/budgets/{category}")
def gps_budget_status(category: str, db: Session = Depends(get_db)):
    return BudgetService(db).status(category)


@app.post("/v1/gps/analyze")
def gps_analyze(data: GpsAnalyzeIn, db: Session = Depends(get_db)):
    return GpsService(db).analyze(data.category, data.goal_id)


@app.post("/v1/gps/rebalance", status_code=201)
def gps_rebalance(data: RebalanceIn, db: Session = Depends(get_db)):
    move = BudgetService(db).rebalance(data.from_category, data.to_category, data.amount)
    return row(move)


@app.get("/v1/ubuntu/dependency-ratio")
def ubuntu_dependency_ratio(db: Session = Depends(get_db)):
    return UbuntuService(db).dependency_ratio()


@app.post("/v1/ubuntu/emergency-impact")
def ubuntu_emergency_impact(data: EmergencyImpactIn, db: Session = Depends(get_db)):
    return UbuntuService(db).emergency_impact(data.amount, data.goal_id)


@app.get("/v1/shark/subscriptions")
def shark_subscriptions(
    status: Optional[SubscriptionStatus] = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    limit = min(max(limit, 1), 100)
    return SharkService(db).list_subscriptions(status, limit=limit, offset=max(offset, 0))


@app.get("/v1/shark/subscriptions/{subscription_id}")
def shark_subscription(subscription_id: int, db: Session = Depends(get_db)):
    service = SharkService(db)
    return service.describe(service.get(subscription_id))


@app.post("/v1/shark/audit")
def shark_audit(db: Session = Depends(get_db)):
    return SharkService(db).audit()


@app.post("/v1/shark/swipe")
def shark_swipe(data: SwipeIn, db: Session = Depends(get_db)):
    return SharkService(db).record_swipe(data.subscription_id, data.action, data.reason)


@app.post("/v1/shark/subscriptions/{subscription_id}/cancel")
def shark_cancel(
    subscription_id: int,
    data: Optional[CancelSubscriptionIn] = None,
    db: Session = Depends(get_db),
):
    reason = data.reason if data else None
    return SharkService(db).cancel(subscription_id, reason)


@app.get("/v1/shark/overlaps")
def shark_overlaps(db: Session = Depends(get_db)):
    return SharkService(db).detect_overlaps()


@app.get("/v1/commitments")
def commitments_list(
    status: Optional[CommitmentStatus] = None, db: Session = Depends(get_db)
):
    return [row(c) for c in CommitmentService(db).list(status)]


@app.post("/v1/commitments", status_code=201)
def commitments_create(data: CommitmentIn, db: Session = Depends(get_db)):
    return row(CommitmentService(db).create(data))


@app.get("/v1/commitments/risk")
def commitments_risk(goal_id: Optional[int] = None, db: Session = Depends(get_db)):
    return CommitmentService(db).risk(goal_id)


@app.post("/v1/commitments/{contract_id}/verify")
def commitments_verify(
    contract_id: int, data: CommitmentVerifyIn, db: Session = Depends(get_db)
):
    return row(CommitmentService(db).verify(contract_id, data.achieved))


@app.post("/v1/commitments/{contract_id}/cancel")
def commitments_cancel(contract_id: int, db: Session = Depends(get_db)):
    return row(CommitmentService(db).cancel(contract_id))


@app.post("/v1/commitments/{contract_id}/debrief")
def commitments_debrief(contract_id: int, db: Session = Depends(get_db)):
    return row(CommitmentService(db).debrief(contract_id))


@app.post("/v1/import/transactions")
def import_transactions(data: ImportTransactionsIn, db: Session = Depends(get_db)):
    rows = [RawTransaction(**t.model_dump()) for t in data.transactions]
    return ImportService(db).import_transactions(rows, data.currency)


@app.post("/v1/import/csv")
def import_csv(data: CsvImportIn, db: Session = Depends(get_db)):
    rows, errors = parse_statement_csv(data.content)
    summary = ImportService(db).import_transactions(rows, data.currency)
    return {"summary": summary, "errors": errors}


@app.post("/v1/story-cards", status_code=201)
def story_cards_create(data: StoryCardIn, db: Session = Depends(get_db)):
    service = StoryCardService(db)
    if data.type == StoryCardType.future_self:
        if data.future_self is None:
            raise HTTPException(status_code=422, detail="future_self details are required")
        source = FutureSelfSource(**data.future_self.model_dump())
    elif data.type == StoryCardType.recovery:
        if data.recovery is None:
            raise HTTPException(status_code=422, detail="recovery details are required")
        source = RecoverySource(**data.recovery.model_dump())
    else:
        if data.source_id is None:
            raise HTTPException(status_code=422, detail="source_id is required")
        if data.type == StoryCardType.commitment:
            source = service.commitment_source(data.source_id)
        else:
            source = service.milestone_source(data.source_id)

    privacy = Privacy(data.anonymize_amounts, data.reveal_actual_numbers)
    card = service.create(data.type, source, privacy)
    return service.describe(card)


@app.get("/v1/story-cards/{card_id}")
def story_cards_get(card_id: int, db: Session = Depends(get_db)):
    service = StoryCardService(db)
    return service.describe(service.get(card_id))


@app.delete("/v1/story-cards/{card_id}")
def story_cards_delete(card_id: int, db: Session = Depends(get_db)):
    StoryCardService(db).deactivate(card_id)
    return {"status": "deleted", "id": card_id}


@app.get("/v1/share/{token}")
def share_view(token: str, db: Session = Depends(get_db)):
    service = StoryCardService(db)
    card = service.resolve_share(token)
    return service.describe(card, include_share=False)


@app.post("/v1/metrics/financial-safety")
def metrics_financial_safety(data: MetricEvaluationIn):
    return FinancialSafetyMetric().score(data.input, data.output)


@app.post("/v1/metrics/tone-empathy")
def metrics_tone_empathy(data: MetricEvaluationIn):
    return ToneEmpathyMetric().score(data.input, data.output)


@app.get("/v1/metrics/cache-stats")
def metrics_cache_stats():
    return get_global_metrics_cache().get_stats()
