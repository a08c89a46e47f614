from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import NotFoundError, ValidationError
from models import Entry, EntryKind
from schemas import (
    AccountIn,
    AccountUpdate,
    BillItem,
    CategoryIn,
    EntryUpdate,
    PurchaseEdit,
    PurchaseIntent,
    ReconcileCommand,
)
from services import (
    AccountService,
    CategoryService,
    EntryService,
    LedgerService,
    ReconciliationService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session):
    categories = CategoryService(session)
    accounts = AccountService(session)
    return {
        "bill": categories.create(CategoryIn(name="Cartão de Crédito", kind="expense")),
        "food": categories.create(CategoryIn(name="Mercado", kind="expense")),
        "card": accounts.create(AccountIn(name="Nubank", is_credit_card=True, closing_day=5)),
        "bank": accounts.create(AccountIn(name="Itaú", initial_balance_cents=100000)),
    }


def test_card_requires_valid_closing_day() -> None:
    session = make_session()
    accounts = AccountService(session)

    with pytest.raises(ValidationError):
        accounts.create(AccountIn(name="Sem fechamento", is_credit_card=True))
    with pytest.raises(ValidationError):
        accounts.create(AccountIn(name="Dia 31", is_credit_card=True, closing_day=31))

    bank = accounts.create(AccountIn(name="Conta", closing_day=12))
    assert bank.closing_day is None

    card = accounts.create(AccountIn(name="Cartão", is_credit_card=True, closing_day=8))
    updated = accounts.update(card.id, AccountUpdate(closing_day=20, name=" Visa "))
    assert (updated.closing_day, updated.name) == (20, "Visa")


def test_category_names_are_unique_per_kind() -> None:
    session = make_session()
    categories = CategoryService(session)
    categories.create(CategoryIn(name="Mercado", kind="expense"))

    with pytest.raises(ValidationError):
        categories.create(CategoryIn(name="mercado ", kind="DESPESA"))
    income = categories.create(CategoryIn(name="Mercado", kind="RECEITA"))
    assert income.kind == EntryKind.income


def test_create_installment_purchase_persists_every_installment() -> None:
    session = make_session()
    data = seed(session)

    created = EntryService(session).create(
        PurchaseIntent(
            date=date(2025, 5, 7),
            kind="expense",
            amount_cents=30000,
            description="TV",
            category_id=data["food"].id,
            account_id=data["card"].id,
            total_installments=3,
        ),
        created_by="Ana",
    )

    stored = EntryService(session).list_all()
    assert len(stored) == 3
    assert [e.date for e in created] == [date(2025, 6, 1), date(2025, 7, 1), date(2025, 8, 1)]
    assert {e.created_by for e in stored} == {"Ana"}


def test_create_rejects_unknown_category_and_account() -> None:
    session = make_session()
    data = seed(session)
    service = EntryService(session)
    base = {"date": date(2025, 5, 7), "kind": "expense", "amount_cents": 100}

    with pytest.raises(ValidationError, match="Category not found"):
        service.create(PurchaseIntent(**base, category_id="nope", account_id=data["bank"].id))
    with pytest.raises(ValidationError, match="Account not found"):
        service.create(PurchaseIntent(**base, category_id=data["food"].id, account_id="nope"))
    assert service.list_all() == []


def test_update_moves_whole_installment_group() -> None:
    session = make_session()
    data = seed(session)
    service = EntryService(session)
    fees = CategoryService(session).create(CategoryIn(name="Casa", kind="expense"))
    other_card = AccountService(session).create(
        AccountIn(name="Inter", is_credit_card=True, closing_day=10)
    )
    first, second, third = service.create(
        PurchaseIntent(
            date=date(2025, 1, 2),
            kind="expense",
            amount_cents=5000,
            description="Geladeira",
            category_id=data["food"].id,
            account_id=data["card"].id,
            total_installments=3,
        )
    )

    service.update(
        second.id,
        EntryUpdate(
            category_id=fees.id, account_id=other_card.id, description="Geladeira nova"
        ),
    )

    group = [service.get(e.id) for e in (first, second, third)]
    assert {e.category_id for e in group} == {fees.id}
    assert {e.account_id for e in group} == {other_card.id}
    assert [e.description for e in group] == [
        "Geladeira (1/3)",
        "Geladeira nova",
        "Geladeira (3/3)",
    ]


def test_update_rejects_unknown_category_and_account() -> None:
    session = make_session()
    data = seed(session)
    service = EntryService(session)
    (entry,) = service.create(
        PurchaseIntent(
            date=date(2025, 5, 7),
            kind="expense",
            amount_cents=100,
            category_id=data["food"].id,
            account_id=data["bank"].id,
        )
    )

    with pytest.raises(ValidationError, match="Category not found"):
        service.update(entry.id, EntryUpdate(category_id="nope"))
    with pytest.raises(ValidationError, match="Account not found"):
        service.update(entry.id, EntryUpdate(account_id="nope"))
    stored = service.get(entry.id)
    assert (stored.category_id, stored.account_id) == (data["food"].id, data["bank"].id)


def test_postpone_moves_later_installments() -> None:
    session = make_session()
    data = seed(session)
    service = EntryService(session)
    first, second, third = service.create(
        PurchaseIntent(
            date=date(2025, 1, 2),
            kind="expense",
            amount_cents=5000,
            category_id=data["food"].id,
            account_id=data["card"].id,
            total_installments=3,
        )
    )

    moved = service.postpone(second.id)

    assert {e.id for e in moved} == {second.id, third.id}
    assert service.get(first.id).date == date(2025, 1, 1)
    assert service.get(second.id).date == date(2025, 3, 1)
    assert service.get(third.id).date == date(2025, 4, 1)


def test_postpone_unknown_entry() -> None:
    session = make_session()

    with pytest.raises(NotFoundError):
        EntryService(session).postpone("missing")


def test_reconciliation_save_round_trip() -> None:
    session = make_session()
    data = seed(session)
    entries = EntryService(session)
    (purchase,) = entries.create(
        PurchaseIntent(
            date=date(2025, 6, 2),
            kind="expense",
            amount_cents=9000,
            description="Feira",
            category_id=data["food"].id,
            account_id=data["card"].id,
        )
    )
    (bill,) = entries.create(
        PurchaseIntent(
            date=date(2025, 6, 10),
            kind="expense",
            amount_cents=10000,
            description="Fatura",
            category_id=data["bill"].id,
            account_id=data["bank"].id,
            paid_card_id=data["card"].id,
        )
    )
    service = ReconciliationService(session)

    assert service.view(bill.id).difference_cents == 1000

    view = service.save(
        ReconcileCommand(
            bill_id=bill.id,
            manual_items=[BillItem(description="Anuidade", amount_cents=500, category_id=data["food"].id)],
            purchase_edits=[PurchaseEdit(entry_id=purchase.id, amount_cents=9500)],
        )
    )

    assert view.is_complete
    stored = entries.get(purchase.id)
    assert (stored.amount_cents, stored.date) == (9500, date(2025, 6, 10))
    assert entries.get(bill.id).bill_items[0]["amount_cents"] == 500


def test_reconciliation_requires_bill_payment() -> None:
    session = make_session()
    data = seed(session)
    (plain,) = EntryService(session).create(
        PurchaseIntent(
            date=date(2025, 6, 2),
            kind="expense",
            amount_cents=100,
            category_id=data["food"].id,
            account_id=data["bank"].id,
        )
    )

    with pytest.raises(ValidationError):
        ReconciliationService(session).view(plain.id)


def test_load_snapshot_repairs_orphans_first() -> None:
    session = make_session()
    data = seed(session)
    session.add_all(
        [
            Entry(
                id="orphan",
                date=None,
                kind=EntryKind.expense,
                amount_cents=700,
                description="Antiga",
                category_id=data["food"].id,
                account_id=data["card"].id,
                created_at=datetime(2025, 2, 14, 10, 0),
            ),
            Entry(
                id="tagged",
                date=date(2025, 2, 20),
                kind=EntryKind.expense,
                amount_cents=700,
                description=f"[CARD:{data['card'].id}] Fatura fevereiro",
                category_id=data["bill"].id,
                account_id=data["bank"].id,
            ),
        ]
    )
    session.commit()

    ledger = LedgerService(session)
    assert ledger.backfill_card_references() == 1
    snapshot = ledger.load_snapshot()

    entries = {e.id: e for e in snapshot.entries}
    assert entries["orphan"].date == date(2025, 2, 20)
    assert entries["tagged"].paid_card_id == data["card"].id
    assert entries["tagged"].description == "Fatura fevereiro"
    assert snapshot.roles.card_bill_category_id == data["bill"].id
    assert ledger.repair_orphans() == 0
