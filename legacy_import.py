"""One-time import of a JSON dump taken from the old hosted backend.

The dump holds the three tables the previous client read (``contas``,
``categorias``, ``transacoes``) as lists of snake_case rows. Amounts were
stored as decimal reais and the paid card of a bill payment only survived as
a ``[CARD:<id>]`` tag inside the description.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing import clean_description, tagged_card_id
from models import Account, Category, Entry, EntryKind
from money import parse_amount
from schemas import BillItem

logger = logging.getLogger(__name__)

LEGACY_INITIAL_BALANCE_DATE = date(2026, 1, 1)


@dataclass(frozen=True)
class LegacyDumpPreview:
    accounts_count: int
    categories_count: int
    entries_count: int
    undated_entries: int
    tagged_card_payments: int
    min_entry_date: Optional[date]
    max_entry_date: Optional[date]
    warnings: list[str]


def _parse_legacy_cents(value: Any, *, allow_negative: bool = False) -> int:
    if value is None or value == "":
        return 0
    # The hosted backend stored decimal reais as JSON numbers.
    return parse_amount(str(value), allow_negative=allow_negative)


def _parse_legacy_date(value: Any) -> Optional[date]:
    text = str(value or "").strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


def _parse_legacy_datetime(value: Any) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Invalid legacy datetime: {text}") from exc
    return parsed.replace(tzinfo=None)


def _optional_id(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def map_legacy_account(row: dict[str, Any]) -> Account:
    is_card = bool(row.get("is_credit_card") or False)
    closing_day = int(row.get("closing_day") or 0)
    return Account(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        is_active=bool(row.get("is_active", True)),
        is_credit_card=is_card,
        initial_balance_cents=_parse_legacy_cents(
            row.get("initial_balance"), allow_negative=True
        ),
        initial_balance_date=_parse_legacy_date(row.get("initial_balance_date"))
        or LEGACY_INITIAL_BALANCE_DATE,
        closing_day=closing_day if is_card and 1 <= closing_day <= 30 else None,
    )


def map_legacy_category(row: dict[str, Any]) -> Category:
    return Category(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        kind=EntryKind.normalize(row.get("type")),
        is_active=bool(row.get("is_active", True)),
    )


def map_legacy_bill_item(raw: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "description": str(raw.get("description") or ""),
        "amount_cents": _parse_legacy_cents(raw.get("amount"), allow_negative=True),
        "category_id": str(raw.get("categoryId") or raw.get("category_id") or ""),
    }
    if raw.get("id"):
        fields["id"] = str(raw["id"])
    return BillItem(**fields).model_dump()


def map_legacy_entry(row: dict[str, Any]) -> Entry:
    """Map one ``transacoes`` row.

    A blank date stays empty so the orphan repair can assign it; the card
    tag moves into ``paid_card_id`` and out of the description.
    """
    description = str(row.get("description") or "")
    total = int(row.get("total_installments") or 1)
    entry = Entry(
        id=str(row["id"]),
        date=_parse_legacy_date(row.get("date")),
        created_by=str(row.get("created_by") or "Sistema"),
        kind=EntryKind.normalize(row.get("type")),
        amount_cents=_parse_legacy_cents(row.get("amount")),
        description=clean_description(description),
        category_id=_optional_id(row.get("category_id")),
        account_id=_optional_id(row.get("account_id")),
        paid_card_id=_optional_id(row.get("card_id")) or tagged_card_id(description),
        bill_items=[map_legacy_bill_item(raw) for raw in row.get("bill_items") or []],
        installment_number=int(row.get("installment_number") or 1),
        total_installments=total,
        installment_group_id=_optional_id(row.get("installment_group_id"))
        if total > 1
        else None,
    )
    created_at = _parse_legacy_datetime(row.get("created_at"))
    if created_at is not None:
        entry.created_at = created_at
        entry.updated_at = created_at
    return entry


class LegacyImportService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def preview(self, payload: dict[str, Any]) -> LegacyDumpPreview:
        accounts = payload.get("contas") or []
        categories = payload.get("categorias") or []
        rows = payload.get("transacoes") or []
        warnings: list[str] = []

        entries = [map_legacy_entry(row) for row in rows]
        dates = [e.date for e in entries if e.date is not None]
        undated = len(entries) - len(dates)
        tagged = sum(
            1 for row in rows if tagged_card_id(str(row.get("description") or ""))
        )

        account_ids = {str(a["id"]) for a in accounts}
        dangling = {
            e.account_id for e in entries if e.account_id and e.account_id not in account_ids
        }
        if dangling:
            warnings.append(
                f"{len(dangling)} account reference(s) missing from the dump: "
                + ", ".join(sorted(dangling))
            )
        if undated:
            warnings.append(
                f"{undated} entr{'y' if undated == 1 else 'ies'} without a date; "
                "they will be repaired after import."
            )
        bad_cards = [
            str(a.get("name") or a["id"])
            for a in accounts
            if a.get("is_credit_card") and not 1 <= int(a.get("closing_day") or 0) <= 30
        ]
        if bad_cards:
            warnings.append(
                "Cards without a valid closing day: " + ", ".join(sorted(bad_cards))
            )

        return LegacyDumpPreview(
            accounts_count=len(accounts),
            categories_count=len(categories),
            entries_count=len(entries),
            undated_entries=undated,
            tagged_card_payments=tagged,
            min_entry_date=min(dates) if dates else None,
            max_entry_date=max(dates) if dates else None,
            warnings=warnings,
        )

    def commit(self, payload: dict[str, Any]) -> dict[str, int]:
        """Insert rows not yet present; existing ids are left untouched."""
        counts = {"accounts": 0, "categories": 0, "entries": 0, "skipped": 0}
        existing_accounts = set(self.session.scalars(select(Account.id)).all())
        existing_categories = set(self.session.scalars(select(Category.id)).all())
        existing_entries = set(self.session.scalars(select(Entry.id)).all())

        try:
            for row in payload.get("contas") or []:
                account = map_legacy_account(row)
                if account.id in existing_accounts:
                    counts["skipped"] += 1
                    continue
                self.session.add(account)
                counts["accounts"] += 1
            for row in payload.get("categorias") or []:
                category = map_legacy_category(row)
                if category.id in existing_categories:
                    counts["skipped"] += 1
                    continue
                self.session.add(category)
                counts["categories"] += 1
            for row in payload.get("transacoes") or []:
                entry = map_legacy_entry(row)
                if entry.id in existing_entries:
                    counts["skipped"] += 1
                    continue
                self.session.add(entry)
                counts["entries"] += 1
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "legacy_import: "
            + " ".join(f"{key}={value}" for key, value in counts.items())
        )
        return counts
