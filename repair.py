from __future__ import annotations

import logging
from typing import Iterable, Optional

from billing import EntryPatch, card_reference, clean_description, tagged_card_id
from config import get_settings
from models import Account, Category, Entry
from money import same_month
from roles import CategoryRoles

logger = logging.getLogger(__name__)


def migrate(
    all_entries: Iterable[Entry],
    categories: Iterable[Category],
    accounts: Iterable[Account],
    roles: Optional[CategoryRoles] = None,
) -> list[EntryPatch]:
    """Assign a billing date to card purchases that never got one.

    An orphan takes the date of the bill payment for its card made in the
    orphan's creation month, or its own creation day when no such payment
    exists. Entries that already have a date are never touched.
    """
    entries = list(all_entries)
    roles = roles or CategoryRoles.resolve(categories)
    cards = {account.id: account for account in accounts if account.is_credit_card}
    known_accounts = {account.id for account in accounts}

    payments = [
        entry
        for entry in entries
        if roles.is_card_bill_payment(entry) and entry.date is not None
    ]

    patches: list[EntryPatch] = []
    skipped = 0
    for entry in entries:
        if entry.date is not None:
            continue
        if entry.account_id not in cards:
            if entry.account_id not in known_accounts:
                skipped += 1
                logger.warning(
                    f"orphan_repair: account not found id={entry.id} account={entry.account_id}"
                )
            continue
        if entry.created_at is None:
            skipped += 1
            logger.warning(f"orphan_repair: no creation time id={entry.id}")
            continue

        created_day = entry.created_at.date()
        match = next(
            (
                payment
                for payment in payments
                if card_reference(payment) == entry.account_id
                and same_month(payment.date, created_day)
            ),
            None,
        )
        if match is not None:
            patches.append(
                EntryPatch(
                    entry_id=entry.id,
                    changes={"date": match.date},
                    source="bill_payment",
                )
            )
        else:
            patches.append(
                EntryPatch(
                    entry_id=entry.id,
                    changes={"date": created_day},
                    source="created_at",
                )
            )

    if patches or skipped:
        logger.info(f"orphan_repair: patched={len(patches)} skipped={skipped}")
    return patches


def backfill_paid_card_ids(
    all_entries: Iterable[Entry], *, keep_tags: Optional[bool] = None
) -> list[EntryPatch]:
    """Move legacy ``[CARD:<id>]`` description tags into ``paid_card_id``.

    With ``keep_tags`` (default: the card tagging setting) only the column is
    filled and the description keeps its tag.
    """
    if keep_tags is None:
        keep_tags = get_settings().tag_card_in_description
    patches: list[EntryPatch] = []
    for entry in all_entries:
        tagged = tagged_card_id(entry.description)
        if tagged is None:
            continue
        changes: dict[str, object] = {}
        if not keep_tags:
            changes["description"] = clean_description(entry.description)
        if not entry.paid_card_id:
            changes["paid_card_id"] = tagged
        if not changes:
            continue
        patches.append(
            EntryPatch(entry_id=entry.id, changes=changes, source="card_tag_backfill")
        )
    return patches
