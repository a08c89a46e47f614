"""Card-bill reconciliation.

A bill payment is reconciled when the purchases detected on the paid card
for the bill's month, plus the manual adjustment items stored on the bill,
add up to the amount actually paid. A nonzero difference is an ordinary,
displayable state rather than an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

from billing import EntryPatch, card_reference, clean_description
from errors import ValidationError
from models import Account, Entry
from money import same_month
from schemas import BillItem, PurchaseEdit, ReconcileCommand

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedPurchase:
    id: str
    date: Optional[date]
    description: str
    amount_cents: int


@dataclass(frozen=True)
class ReconciliationView:
    bill_id: str
    card_id: Optional[str]
    card_name: Optional[str]
    paid_cents: int
    detected: list[DetectedPurchase]
    manual_items: list[BillItem]
    detected_cents: int
    manual_cents: int

    @property
    def composed_cents(self) -> int:
        return self.detected_cents + self.manual_cents

    @property
    def difference_cents(self) -> int:
        return self.paid_cents - self.composed_cents

    @property
    def is_complete(self) -> bool:
        # Under one cent of difference counts as settled.
        return abs(self.difference_cents) < 1


def load_bill_items(entry: Entry) -> list[BillItem]:
    return [BillItem.model_validate(raw) for raw in (entry.bill_items or [])]


def detect_purchases(
    bill: Entry, card_id: Optional[str], all_entries: Iterable[Entry]
) -> list[Entry]:
    if not card_id or bill.date is None:
        return []
    found: list[Entry] = []
    for entry in all_entries:
        if entry.id == bill.id or entry.account_id != card_id:
            continue
        if entry.date is not None and same_month(entry.date, bill.date):
            found.append(entry)
    return found


def reconcile(
    bill: Entry,
    all_entries: Iterable[Entry],
    accounts: Iterable[Account] = (),
    *,
    manual_items: Optional[Sequence[BillItem]] = None,
    purchase_edits: Optional[Sequence[PurchaseEdit]] = None,
) -> ReconciliationView:
    """Compose ``bill`` from detected purchases and manual items.

    ``manual_items`` and ``purchase_edits`` preview unsaved changes; when
    omitted the stored bill items and purchase values are used.
    """
    card_id = card_reference(bill)
    card = next((a for a in accounts if a.id == card_id), None) if card_id else None
    edits = {edit.entry_id: edit for edit in (purchase_edits or [])}

    detected: list[DetectedPurchase] = []
    for entry in detect_purchases(bill, card_id, all_entries):
        edit = edits.get(entry.id)
        description = entry.description
        amount = entry.amount_cents
        if edit is not None:
            if edit.description is not None:
                description = edit.description
            if edit.amount_cents is not None:
                amount = edit.amount_cents
        detected.append(
            DetectedPurchase(
                id=entry.id,
                date=entry.date,
                description=clean_description(description),
                amount_cents=int(amount or 0),
            )
        )

    items = list(manual_items) if manual_items is not None else load_bill_items(bill)
    return ReconciliationView(
        bill_id=bill.id,
        card_id=card_id,
        card_name=card.name if card else None,
        paid_cents=int(bill.amount_cents or 0),
        detected=detected,
        manual_items=items,
        detected_cents=sum(p.amount_cents for p in detected),
        manual_cents=sum(item.amount_cents for item in items),
    )


def plan_save(
    bill: Entry, all_entries: Iterable[Entry], command: ReconcileCommand
) -> list[EntryPatch]:
    """Render a reconcile command as entry patches.

    Edited purchases are moved onto the bill's date, which realigns them to
    the bill's statement month.
    """
    if command.bill_id != bill.id:
        raise ValidationError("Command does not target this bill")
    if bill.date is None:
        raise ValidationError("Bill has no date")

    card_id = card_reference(bill)
    by_id = {entry.id: entry for entry in all_entries}
    patches = [
        EntryPatch(
            entry_id=bill.id,
            changes={
                "bill_items": [item.model_dump() for item in command.manual_items]
            },
            source="reconcile",
        )
    ]
    for edit in command.purchase_edits:
        purchase = by_id.get(edit.entry_id)
        if purchase is None:
            logger.warning(f"reconcile_save: purchase not found id={edit.entry_id}")
            continue
        if purchase.id == bill.id or purchase.account_id != card_id:
            logger.warning(
                f"reconcile_save: purchase not on card id={edit.entry_id} card={card_id}"
            )
            continue
        changes: dict[str, object] = {"date": bill.date}
        if edit.description is not None:
            changes["description"] = edit.description
        if edit.amount_cents is not None:
            changes["amount_cents"] = edit.amount_cents
        patches.append(
            EntryPatch(entry_id=purchase.id, changes=changes, source="reconcile")
        )
    return patches
