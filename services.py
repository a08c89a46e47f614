from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billing import EntryPatch, expand_purchase, postpone
from errors import NotFoundError, ValidationError
from models import Account, Category, Entry
from reconcile import ReconciliationView, plan_save, reconcile
from repair import backfill_paid_card_ids, migrate
from roles import CategoryRoles
from schemas import (
    AccountIn,
    AccountUpdate,
    BillItem,
    CategoryIn,
    CategoryUpdate,
    EntryUpdate,
    PurchaseEdit,
    PurchaseIntent,
    ReconcileCommand,
)

logger = logging.getLogger(__name__)


def apply_patches(session: Session, patches: Iterable[EntryPatch]) -> int:
    """Apply entry patches to the session; the caller commits."""
    applied = 0
    for patch in patches:
        entry = session.get(Entry, patch.entry_id)
        if entry is None:
            logger.warning(f"apply_patches: entry not found id={patch.entry_id}")
            continue
        for name, value in patch.changes.items():
            setattr(entry, name, value)
        applied += 1
    session.flush()
    return applied


def _validate_closing_day(is_credit_card: bool, closing_day: Optional[int]) -> None:
    if not is_credit_card:
        return
    if closing_day is None or not 1 <= closing_day <= 30:
        raise ValidationError("Card closing day must be between 1 and 30")


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, include_inactive: bool = True) -> list[Account]:
        stmt = select(Account).order_by(Account.name)
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: str) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        _validate_closing_day(data.is_credit_card, data.closing_day)
        account = Account(
            name=data.name.strip(),
            is_active=data.is_active,
            is_credit_card=data.is_credit_card,
            initial_balance_cents=data.initial_balance_cents,
            initial_balance_date=data.initial_balance_date,
            closing_day=data.closing_day if data.is_credit_card else None,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: str, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        changes = data.model_dump(exclude_unset=True)
        if "closing_day" in changes:
            _validate_closing_day(account.is_credit_card, changes["closing_day"])
            if not account.is_credit_card:
                changes["closing_day"] = None
        if "name" in changes and changes["name"] is not None:
            changes["name"] = changes["name"].strip()
        for name, value in changes.items():
            setattr(account, name, value)
        self.session.commit()
        return account

    def delete(self, account_id: str) -> None:
        self.session.delete(self.get(account_id))
        self.session.commit()


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, include_inactive: bool = True) -> list[Category]:
        stmt = select(Category).order_by(Category.kind, Category.name)
        if not include_inactive:
            stmt = stmt.where(Category.is_active.is_(True))
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        return category

    def _ensure_unique(self, name: str, kind, exclude_id: Optional[str] = None) -> None:
        stmt = select(Category).where(
            Category.kind == kind,
            func.lower(Category.name) == name.strip().lower(),
        )
        existing = self.session.scalar(stmt)
        if existing is not None and existing.id != exclude_id:
            raise ValidationError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique(data.name, data.kind)
        category = Category(
            name=data.name.strip(), kind=data.kind, is_active=data.is_active
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: str, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)
        name = changes.get("name") or category.name
        kind = changes.get("kind") or category.kind
        self._ensure_unique(name, kind, exclude_id=category.id)
        if "name" in changes and changes["name"] is not None:
            changes["name"] = changes["name"].strip()
        for field_name, value in changes.items():
            if value is not None:
                setattr(category, field_name, value)
        self.session.commit()
        return category

    def delete(self, category_id: str) -> None:
        self.session.delete(self.get(category_id))
        self.session.commit()


class EntryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Entry]:
        stmt = select(Entry).order_by(
            Entry.date.is_(None), Entry.date.desc(), Entry.created_at.desc()
        )
        return list(self.session.scalars(stmt).all())

    def get(self, entry_id: str) -> Entry:
        entry = self.session.get(Entry, entry_id)
        if entry is None:
            raise NotFoundError("Entry not found")
        return entry

    def _roles(self) -> CategoryRoles:
        return CategoryRoles.resolve(CategoryService(self.session).list_all())

    def create(
        self, intent: PurchaseIntent, *, created_by: Optional[str] = None
    ) -> list[Entry]:
        account = (
            self.session.get(Account, intent.account_id) if intent.account_id else None
        )
        if intent.category_id and self.session.get(Category, intent.category_id) is None:
            raise ValidationError("Category not found")
        entries = expand_purchase(
            intent, account, self._roles(), created_by=created_by
        )
        self.session.add_all(entries)
        self.session.commit()
        for entry in entries:
            self.session.refresh(entry)
        logger.info(
            f"entry_create: account={intent.account_id} installments={len(entries)}"
        )
        return entries

    def update(self, entry_id: str, data: EntryUpdate) -> Entry:
        """Edit one entry.

        Category and account are properties of the whole purchase, so a change
        to either reaches every installment of the group.
        """
        entry = self.get(entry_id)
        changes = {
            name: value
            for name, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        category_id = changes.get("category_id")
        if category_id and self.session.get(Category, category_id) is None:
            raise ValidationError("Category not found")
        account_id = changes.get("account_id")
        if account_id and self.session.get(Account, account_id) is None:
            raise ValidationError("Account not found")

        shared = {
            name: changes.pop(name)
            for name in ("category_id", "account_id")
            if name in changes
        }
        targets = [entry]
        if shared and entry.installment_group_id:
            targets = list(
                self.session.scalars(
                    select(Entry).where(
                        Entry.installment_group_id == entry.installment_group_id
                    )
                ).all()
            )
        for target in targets:
            for name, value in shared.items():
                setattr(target, name, value)
        for name, value in changes.items():
            setattr(entry, name, value)
        self.session.commit()
        if len(targets) > 1:
            logger.info(
                f"entry_update: group={entry.installment_group_id} "
                f"fields={','.join(sorted(shared))} installments={len(targets)}"
            )
        return entry

    def delete(self, entry_id: str) -> None:
        self.session.delete(self.get(entry_id))
        self.session.commit()

    def postpone(self, entry_id: str) -> list[Entry]:
        entry = self.get(entry_id)
        siblings: list[Entry] = []
        if entry.installment_group_id:
            siblings = list(
                self.session.scalars(
                    select(Entry).where(
                        Entry.installment_group_id == entry.installment_group_id
                    )
                ).all()
            )
        patches = postpone(entry, siblings)
        apply_patches(self.session, patches)
        self.session.commit()
        logger.info(f"entry_postpone: id={entry_id} moved={len(patches)}")
        return [self.get(patch.entry_id) for patch in patches]


class ReconciliationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _bill(self, bill_id: str) -> Entry:
        bill = EntryService(self.session).get(bill_id)
        roles = CategoryRoles.resolve(CategoryService(self.session).list_all())
        if not roles.is_card_bill_payment(bill):
            raise ValidationError("Entry is not a card bill payment")
        return bill

    def view(
        self,
        bill_id: str,
        *,
        manual_items: Optional[list[BillItem]] = None,
        purchase_edits: Optional[list[PurchaseEdit]] = None,
    ) -> ReconciliationView:
        bill = self._bill(bill_id)
        return reconcile(
            bill,
            EntryService(self.session).list_all(),
            AccountService(self.session).list_all(),
            manual_items=manual_items,
            purchase_edits=purchase_edits,
        )

    def save(self, command: ReconcileCommand) -> ReconciliationView:
        bill = self._bill(command.bill_id)
        entries = EntryService(self.session).list_all()
        patches = plan_save(bill, entries, command)
        try:
            apply_patches(self.session, patches)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"reconcile_save: bill={bill.id} items={len(command.manual_items)} "
            f"purchases={len(patches) - 1}"
        )
        return self.view(bill.id)


@dataclass(frozen=True)
class LedgerSnapshot:
    entries: list[Entry]
    categories: list[Category]
    accounts: list[Account]
    roles: CategoryRoles


class LedgerService:
    """Loads the snapshot every read-only view works from."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _fetch(self) -> LedgerSnapshot:
        categories = CategoryService(self.session).list_all()
        return LedgerSnapshot(
            entries=EntryService(self.session).list_all(),
            categories=categories,
            accounts=AccountService(self.session).list_all(),
            roles=CategoryRoles.resolve(categories),
        )

    def repair_orphans(self) -> int:
        snapshot = self._fetch()
        patches = migrate(
            snapshot.entries, snapshot.categories, snapshot.accounts, snapshot.roles
        )
        if not patches:
            return 0
        applied = apply_patches(self.session, patches)
        self.session.commit()
        return applied

    def backfill_card_references(self) -> int:
        patches = backfill_paid_card_ids(EntryService(self.session).list_all())
        if not patches:
            return 0
        applied = apply_patches(self.session, patches)
        self.session.commit()
        logger.info(f"card_tag_backfill: patched={applied}")
        return applied

    def load_snapshot(self) -> LedgerSnapshot:
        # Orphans must be dated before any period filter sees them.
        self.repair_orphans()
        return self._fetch()
