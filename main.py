import logging
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.orm import Session

from aggregation import PeriodAggregator, PeriodStats
from billing import clean_description
from database import SessionLocal, session_scope
from errors import NotFoundError, ValidationError
from legacy_import import LegacyImportService
from models import Account, Category, Entry
from money import AmountInput
from periods import Period, resolve_period
from reconcile import ReconciliationView
from schemas import (
    AccountIn,
    AccountUpdate,
    CategoryIn,
    CategoryUpdate,
    EntryUpdate,
    PurchaseIntent,
    ReconcileCommand,
    ReconcileDraft,
)
from services import (
    AccountService,
    CategoryService,
    EntryService,
    LedgerService,
    ReconciliationService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Family Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        ledger = LedgerService(session)
        ledger.backfill_card_references()
        ledger.repair_orphans()


def period_from_request(request: Request) -> Period:
    try:
        return resolve_period(request.query_params.get("period"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def account_out(account: Account) -> dict[str, Any]:
    return {
        "id": account.id,
        "name": account.name,
        "is_active": account.is_active,
        "is_credit_card": account.is_credit_card,
        "initial_balance_cents": account.initial_balance_cents,
        "initial_balance_date": account.initial_balance_date,
        "closing_day": account.closing_day,
    }


def category_out(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "kind": category.kind.value,
        "is_active": category.is_active,
    }


def entry_out(entry: Entry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "date": entry.date,
        "kind": entry.kind.value,
        "amount_cents": entry.amount_cents,
        "description": clean_description(entry.description),
        "category_id": entry.category_id,
        "account_id": entry.account_id,
        "paid_card_id": entry.paid_card_id,
        "destination_account_id": entry.destination_account_id,
        "bill_items": entry.bill_items or [],
        "installment_number": entry.installment_number,
        "total_installments": entry.total_installments,
        "installment_group_id": entry.installment_group_id,
        "created_by": entry.created_by,
    }


def view_out(view: ReconciliationView) -> dict[str, Any]:
    return {
        "bill_id": view.bill_id,
        "card_id": view.card_id,
        "card_name": view.card_name,
        "paid_cents": view.paid_cents,
        "detected": [
            {**asdict(p), "amount_text": AmountInput.from_cents(p.amount_cents).render()}
            for p in view.detected
        ],
        "manual_items": [
            {
                **item.model_dump(),
                "amount_text": AmountInput.from_cents(item.amount_cents).render(),
            }
            for item in view.manual_items
        ],
        "detected_cents": view.detected_cents,
        "manual_cents": view.manual_cents,
        "composed_cents": view.composed_cents,
        "difference_cents": view.difference_cents,
        "is_complete": view.is_complete,
    }


def stats_out(stats: PeriodStats) -> dict[str, Any]:
    return {
        "period": asdict(stats.period),
        "total_income_cents": stats.total_income_cents,
        "total_expense_cents": stats.total_expense_cents,
        "balance_cents": stats.balance_cents,
        "expense_ranking": [asdict(row) for row in stats.expense_ranking],
        "income_ranking": [asdict(row) for row in stats.income_ranking],
        "daily_average_cents": stats.daily_average_cents,
        "historical_average_cents": stats.historical_average_cents,
        "pace": stats.pace.value,
        "monthly_history": [asdict(row) for row in stats.monthly_history],
    }


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [account_out(a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).create(data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return account_out(account)


@app.patch("/api/accounts/{account_id}")
def api_update_account(
    account_id: str, data: AccountUpdate, db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).update(account_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return account_out(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(account_id: str, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    return [category_out(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return category_out(category)


@app.patch("/api/categories/{category_id}")
def api_update_category(
    category_id: str, data: CategoryUpdate, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return category_out(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(category_id: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/entries")
def api_entries(db: Session = Depends(get_db)):
    return [entry_out(e) for e in EntryService(db).list_all()]


@app.post("/api/entries", status_code=201)
def api_create_entry(
    intent: PurchaseIntent, request: Request, db: Session = Depends(get_db)
):
    created_by = request.headers.get("x-ledger-user")
    try:
        entries = EntryService(db).create(intent, created_by=created_by)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [entry_out(e) for e in entries]


@app.patch("/api/entries/{entry_id}")
def api_update_entry(entry_id: str, data: EntryUpdate, db: Session = Depends(get_db)):
    try:
        entry = EntryService(db).update(entry_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return entry_out(entry)


@app.delete("/api/entries/{entry_id}", status_code=204)
def api_delete_entry(entry_id: str, db: Session = Depends(get_db)):
    try:
        EntryService(db).delete(entry_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/entries/{entry_id}/postpone")
def api_postpone_entry(entry_id: str, db: Session = Depends(get_db)):
    try:
        entries = EntryService(db).postpone(entry_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [entry_out(e) for e in entries]


@app.get("/api/bills/{bill_id}/reconciliation")
def api_reconciliation(bill_id: str, db: Session = Depends(get_db)):
    try:
        view = ReconciliationService(db).view(bill_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return view_out(view)


@app.post("/api/bills/{bill_id}/reconciliation/preview")
def api_reconciliation_preview(
    bill_id: str, draft: ReconcileDraft, db: Session = Depends(get_db)
):
    try:
        view = ReconciliationService(db).view(
            bill_id,
            manual_items=draft.manual_items,
            purchase_edits=draft.purchase_edits,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return view_out(view)


@app.post("/api/bills/{bill_id}/reconciliation")
def api_save_reconciliation(
    bill_id: str, draft: ReconcileDraft, db: Session = Depends(get_db)
):
    command = ReconcileCommand(
        bill_id=bill_id,
        manual_items=draft.manual_items,
        purchase_edits=draft.purchase_edits,
    )
    try:
        view = ReconciliationService(db).save(command)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return view_out(view)


@app.get("/api/stats")
def api_stats(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    snapshot = LedgerService(db).load_snapshot()
    aggregator = PeriodAggregator(
        snapshot.categories, snapshot.accounts, snapshot.roles
    )
    return stats_out(aggregator.aggregate(snapshot.entries, period))


@app.get("/api/stats/drill-down")
def api_drill_down(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    category = (request.query_params.get("category") or "").strip()
    if not category:
        raise HTTPException(status_code=400, detail="Category is required")
    snapshot = LedgerService(db).load_snapshot()
    aggregator = PeriodAggregator(
        snapshot.categories, snapshot.accounts, snapshot.roles
    )
    rows = aggregator.drill_down(snapshot.entries, period, category)
    return [asdict(row) for row in rows]


@app.get("/api/balances")
def api_balances(db: Session = Depends(get_db)):
    snapshot = LedgerService(db).load_snapshot()
    aggregator = PeriodAggregator(
        snapshot.categories, snapshot.accounts, snapshot.roles
    )
    return [asdict(row) for row in aggregator.account_balances(snapshot.entries)]


@app.post("/api/admin/repair")
def api_repair(db: Session = Depends(get_db)):
    ledger = LedgerService(db)
    backfilled = ledger.backfill_card_references()
    repaired = ledger.repair_orphans()
    logger.info(f"admin_repair: backfilled={backfilled} repaired={repaired}")
    return {"backfilled": backfilled, "repaired": repaired}


@app.post("/api/admin/legacy-import/preview")
def api_legacy_preview(payload: dict[str, Any], db: Session = Depends(get_db)):
    try:
        preview = LegacyImportService(db).preview(payload)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return asdict(preview)


@app.post("/api/admin/legacy-import/commit")
def api_legacy_commit(payload: dict[str, Any], db: Session = Depends(get_db)):
    try:
        counts = LegacyImportService(db).commit(payload)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    repaired = LedgerService(db).repair_orphans()
    return {**counts, "repaired": repaired}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
