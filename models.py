from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def new_id() -> str:
    return str(uuid4())


class EntryKind(str, Enum):
    income = "income"
    expense = "expense"

    @classmethod
    def normalize(cls, value: Any) -> "EntryKind":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().upper()
        if raw in {"INCOME", "RECEITA", "ENTRADA"}:
            return cls.income
        return cls.expense


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_credit_card: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    initial_balance_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    initial_balance_date: Mapped[Optional[date]] = mapped_column(Date)
    # Day of month the card statement closes; unused for bank accounts.
    closing_day: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint(
            "closing_day IS NULL OR (closing_day >= 1 AND closing_day <= 30)",
            name="ck_account_closing_day_range",
        ),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[EntryKind] = mapped_column(SAEnum(EntryKind), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Entry(Base, TimestampMixin):
    """One ledger line.

    ``date`` is the billing/effective day and may be empty for historical
    card purchases that were never assigned one (see ``repair.migrate``).
    ``account_id`` is the funding account or card; ``paid_card_id`` is set
    only on card-bill payments and names the card being paid.

    Account and category references are plain columns: a snapshot may hold
    entries whose account or category was deleted, and the engine skips them
    instead of failing.
    """

    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    date: Mapped[Optional[date]] = mapped_column(Date)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    kind: Mapped[EntryKind] = mapped_column(SAEnum(EntryKind), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String(36))
    account_id: Mapped[Optional[str]] = mapped_column(String(36))
    paid_card_id: Mapped[Optional[str]] = mapped_column(String(36))
    destination_account_id: Mapped[Optional[str]] = mapped_column(String(36))
    bill_items: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(
        JSON, default=list
    )
    installment_number: Mapped[int] = mapped_column(
        Integer, default=1, nullable=False
    )
    total_installments: Mapped[int] = mapped_column(
        Integer, default=1, nullable=False
    )
    installment_group_id: Mapped[Optional[str]] = mapped_column(String(36))

    __table_args__ = (
        Index("ix_entries_date", "date"),
        Index("ix_entries_account_date", "account_id", "date"),
        Index("ix_entries_category_date", "category_id", "date"),
        Index("ix_entries_installment_group", "installment_group_id"),
        CheckConstraint(
            "installment_number >= 1 AND total_installments >= 1",
            name="ck_entries_installments_positive",
        ),
    )
