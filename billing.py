from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional
from uuid import uuid4

from config import get_settings
from errors import ValidationError
from models import Account, Entry
from money import add_months, month_start
from roles import CategoryRoles
from schemas import PurchaseIntent

logger = logging.getLogger(__name__)

CARD_TAG_PATTERN = re.compile(r"\[CARD:([\w-]+)\]", re.IGNORECASE)
_CARD_TAG_STRIP = re.compile(r"\[CARD:.*?\]\s*", re.IGNORECASE)


@dataclass(frozen=True)
class EntryPatch:
    """Field changes for one persisted entry, applied by the data source."""

    entry_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    source: str = ""


def tag_description(description: str, card_id: str) -> str:
    return f"[CARD:{card_id}] {description}".strip()


def clean_description(description: Optional[str]) -> str:
    if not description:
        return ""
    return _CARD_TAG_STRIP.sub("", description).strip()


def tagged_card_id(description: Optional[str]) -> Optional[str]:
    if not description:
        return None
    match = CARD_TAG_PATTERN.search(description)
    return match.group(1) if match else None


def card_reference(entry: Entry) -> Optional[str]:
    """Card paid by ``entry``: the column first, the legacy tag second."""
    return entry.paid_card_id or tagged_card_id(entry.description)


def resolve_effective_date(purchase_date: date, account: Optional[Account]) -> date:
    if account is None or not account.is_credit_card or not account.closing_day:
        return purchase_date
    resolved = purchase_date
    if purchase_date.day >= account.closing_day:
        resolved = add_months(purchase_date, 1)
    return month_start(resolved)


def validate_intent(
    intent: PurchaseIntent, roles: Optional[CategoryRoles] = None
) -> None:
    if intent.total_installments < 1:
        raise ValidationError("Installments must be at least 1")
    if intent.amount_cents <= 0:
        raise ValidationError("Amount must be greater than zero")
    if not intent.category_id:
        raise ValidationError("Category is required")
    if not intent.account_id:
        raise ValidationError("Account is required")
    if roles is None:
        return
    if roles.is_card_bill(intent.category_id) and not intent.paid_card_id:
        raise ValidationError("Card bill payments must name the card being paid")
    if roles.is_transfer(intent.category_id) and not intent.destination_account_id:
        raise ValidationError("Transfers require a destination account")


def expand_purchase(
    intent: PurchaseIntent,
    account: Optional[Account],
    roles: Optional[CategoryRoles] = None,
    *,
    created_by: Optional[str] = None,
    tag_card: Optional[bool] = None,
) -> list[Entry]:
    """Turn one purchase into its installment entries.

    Every installment repeats the full purchase amount. Nothing is returned
    unless the whole batch validates.
    """
    validate_intent(intent, roles)
    if account is None or account.id != intent.account_id:
        raise ValidationError("Account not found")
    if tag_card is None:
        tag_card = get_settings().tag_card_in_description

    total = intent.total_installments
    group_id = str(uuid4()) if total > 1 else None
    first_date = resolve_effective_date(intent.date, account)

    description = intent.description.strip()
    if intent.paid_card_id and tag_card:
        description = tag_description(description, intent.paid_card_id)

    entries: list[Entry] = []
    for number in range(1, total + 1):
        text = description
        if total > 1:
            text = f"{description} ({number}/{total})".strip()
        entries.append(
            Entry(
                date=add_months(first_date, number - 1),
                created_by=created_by,
                kind=intent.kind,
                amount_cents=intent.amount_cents,
                description=text,
                category_id=intent.category_id,
                account_id=intent.account_id,
                paid_card_id=intent.paid_card_id,
                destination_account_id=intent.destination_account_id,
                bill_items=[],
                installment_number=number,
                total_installments=total,
                installment_group_id=group_id,
            )
        )
    return entries


def postpone(entry: Entry, all_entries: Iterable[Entry]) -> list[EntryPatch]:
    """Push ``entry`` one month forward along with its later installments."""
    if entry.date is None:
        raise ValidationError("Entry has no billing date to postpone")

    targets = [entry]
    if entry.installment_group_id:
        number = entry.installment_number or 1
        for other in all_entries:
            if other.id == entry.id:
                continue
            if other.installment_group_id != entry.installment_group_id:
                continue
            if (other.installment_number or 1) > number:
                targets.append(other)

    patches: list[EntryPatch] = []
    for target in targets:
        if target.date is None:
            logger.warning(f"postpone: skipped undated sibling id={target.id}")
            continue
        patches.append(
            EntryPatch(
                entry_id=target.id,
                changes={"date": add_months(target.date, 1)},
                source="postpone",
            )
        )
    return patches
