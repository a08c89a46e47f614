"""Period statistics over an in-memory ledger snapshot.

Card purchases count toward their own category and are taken back out of
the card-bill payment category, so paying the bill does not count the same
money twice. Internal transfers never reach the totals. A single malformed
entry is logged and counted as zero instead of failing the whole view.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from billing import clean_description
from config import get_settings
from models import Account, Category, Entry, EntryKind
from money import ROUNDING_TOLERANCE_CENTS, month_end, month_key, round_half_up, shift_month
from periods import Period, local_today
from reconcile import load_bill_items
from roles import CategoryRoles

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Sem grupo"


class Pace(str, Enum):
    above_average = "ABOVE_AVERAGE"
    stable = "STABLE"
    below_average = "BELOW_AVERAGE"


class ContributionSource(str, Enum):
    direct = "direct"
    card_purchase = "card_purchase"
    bill_item = "bill_item"


@dataclass(frozen=True)
class CategoryTotal:
    category_name: str
    amount_cents: int
    percent: float
    cumulative_percent: float


@dataclass(frozen=True)
class MonthTotals:
    month: str
    income_cents: int
    expense_cents: int


@dataclass(frozen=True)
class Contribution:
    id: str
    date: Optional[date]
    description: str
    amount_cents: int
    source: ContributionSource


@dataclass(frozen=True)
class AccountBalance:
    account_id: str
    name: str
    balance_cents: int


@dataclass(frozen=True)
class PeriodStats:
    period: Period
    total_income_cents: int
    total_expense_cents: int
    expense_ranking: list[CategoryTotal]
    income_ranking: list[CategoryTotal]
    daily_average_cents: int
    historical_average_cents: int
    pace: Pace
    monthly_history: list[MonthTotals] = field(default_factory=list)

    @property
    def balance_cents(self) -> int:
        return self.total_income_cents - self.total_expense_cents


def _amount(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"amount must be integer cents, got {value!r}")
    return value


def rank(totals: dict[str, int]) -> list[CategoryTotal]:
    """Pareto ranking: descending totals with a running cumulative share."""
    kept = [
        (name, amount)
        for name, amount in totals.items()
        if amount > ROUNDING_TOLERANCE_CENTS
    ]
    kept.sort(key=lambda row: (-row[1], row[0]))
    grand_total = sum(amount for _, amount in kept)
    rows: list[CategoryTotal] = []
    running = 0
    for name, amount in kept:
        running += amount
        rows.append(
            CategoryTotal(
                category_name=name,
                amount_cents=amount,
                percent=(amount / grand_total * 100) if grand_total else 0,
                cumulative_percent=(running / grand_total * 100) if grand_total else 0,
            )
        )
    return rows


class PeriodAggregator:
    def __init__(
        self,
        categories: Iterable[Category],
        accounts: Iterable[Account],
        roles: Optional[CategoryRoles] = None,
        *,
        today: Optional[date] = None,
        history_months: Optional[int] = None,
    ) -> None:
        self.categories = list(categories)
        self.accounts = list(accounts)
        self.roles = roles or CategoryRoles.resolve(self.categories)
        self.today = today or local_today()
        self.history_months = history_months or get_settings().history_months
        self._names = {c.id: c.name for c in self.categories}
        self._card_ids = {a.id for a in self.accounts if a.is_credit_card}

    def _name(self, category_id: Optional[str]) -> str:
        return self._names.get(category_id or "", UNCATEGORIZED)

    def _is_card_purchase(self, entry: Entry) -> bool:
        return entry.account_id in self._card_ids

    def category_totals(
        self, entries: Iterable[Entry]
    ) -> tuple[dict[str, int], dict[str, int]]:
        """Return ``(expense, income)`` totals keyed by category name."""
        expense: dict[str, int] = defaultdict(int)
        income: dict[str, int] = defaultdict(int)
        card_bill = 0
        for entry in entries:
            try:
                if self.roles.is_transfer(entry.category_id):
                    continue
                amount = _amount(entry.amount_cents)
                if entry.kind == EntryKind.income:
                    income[self._name(entry.category_id)] += amount
                elif self._is_card_purchase(entry):
                    expense[self._name(entry.category_id)] += amount
                    card_bill -= amount
                elif self.roles.is_card_bill_payment(entry):
                    items = [
                        (self._name(item.category_id), _amount(item.amount_cents))
                        for item in load_bill_items(entry)
                    ]
                    card_bill += amount
                    for name, item_amount in items:
                        expense[name] += item_amount
                        card_bill -= item_amount
                else:
                    expense[self._name(entry.category_id)] += amount
            except (TypeError, ValueError) as exc:
                logger.warning(f"aggregate: malformed entry id={entry.id} error={exc}")

        if self.roles.card_bill_category_id:
            if abs(card_bill) <= ROUNDING_TOLERANCE_CENTS:
                card_bill = 0
            expense[self._name(self.roles.card_bill_category_id)] += card_bill
        return dict(expense), dict(income)

    def _window(self, entries: Iterable[Entry], start: date, end: date) -> list[Entry]:
        return [e for e in entries if e.date is not None and start <= e.date <= end]

    def _totals(self, entries: list[Entry]) -> tuple[list[CategoryTotal], list[CategoryTotal]]:
        expense, income = self.category_totals(entries)
        return rank(expense), rank(income)

    def historical_average(self, entries: Iterable[Entry]) -> int:
        current_month = self.today.replace(day=1)
        by_month: dict[str, int] = defaultdict(int)
        for entry in entries:
            if entry.date is None or entry.date >= current_month:
                continue
            if entry.kind != EntryKind.expense:
                continue
            if self.roles.is_transfer(entry.category_id) or self._is_card_purchase(entry):
                continue
            try:
                by_month[month_key(entry.date)] += _amount(entry.amount_cents)
            except TypeError as exc:
                logger.warning(f"aggregate: malformed entry id={entry.id} error={exc}")
        if not by_month:
            return 0
        return round_half_up(sum(by_month.values()), len(by_month))

    def monthly_history(self, entries: list[Entry], period: Period) -> list[MonthTotals]:
        series: list[MonthTotals] = []
        last = period.end.replace(day=1)
        for offset in range(self.history_months - 1, -1, -1):
            start = shift_month(last, -offset)
            expense_rows, income_rows = self._totals(
                self._window(entries, start, month_end(start))
            )
            series.append(
                MonthTotals(
                    month=month_key(start),
                    income_cents=sum(r.amount_cents for r in income_rows),
                    expense_cents=sum(r.amount_cents for r in expense_rows),
                )
            )
        return series

    def aggregate(self, entries: Iterable[Entry], period: Period) -> PeriodStats:
        snapshot = list(entries)
        expense_rows, income_rows = self._totals(
            self._window(snapshot, period.start, period.end)
        )
        total_expense = sum(r.amount_cents for r in expense_rows)
        total_income = sum(r.amount_cents for r in income_rows)
        average = self.historical_average(snapshot)
        return PeriodStats(
            period=period,
            total_income_cents=total_income,
            total_expense_cents=total_expense,
            expense_ranking=expense_rows,
            income_ranking=income_rows,
            daily_average_cents=round_half_up(total_expense, max(period.elapsed_days, 1)),
            historical_average_cents=average,
            pace=classify_pace(total_expense, average),
            monthly_history=self.monthly_history(snapshot, period),
        )

    def drill_down(
        self, entries: Iterable[Entry], period: Period, category_name: str
    ) -> list[Contribution]:
        """Entries behind one category total, newest first.

        For the card-bill category each card purchase and each bill item also
        yields a negative offset row, so the rows add up to the ranked total
        before the one-cent residual is dropped.
        """
        bill_id = self.roles.card_bill_category_id
        with_offsets = bool(bill_id) and self._name(bill_id) == category_name
        rows: list[Contribution] = []
        for entry in self._window(entries, period.start, period.end):
            if self.roles.is_transfer(entry.category_id):
                continue
            matches = self._name(entry.category_id) == category_name
            card_purchase = self._is_card_purchase(entry) and entry.kind == EntryKind.expense
            if (
                self.roles.is_card_bill_payment(entry)
                and entry.kind == EntryKind.expense
                and not self._is_card_purchase(entry)
            ):
                try:
                    items = load_bill_items(entry)
                except ValueError as exc:
                    logger.warning(f"drill_down: malformed bill items id={entry.id} error={exc}")
                    items = []
                for item in items:
                    description = clean_description(item.description)
                    if with_offsets:
                        rows.append(
                            Contribution(
                                id=f"{entry.id}:{item.id}:offset",
                                date=entry.date,
                                description=description,
                                amount_cents=-item.amount_cents,
                                source=ContributionSource.bill_item,
                            )
                        )
                    if self._name(item.category_id) != category_name:
                        continue
                    rows.append(
                        Contribution(
                            id=f"{entry.id}:{item.id}",
                            date=entry.date,
                            description=description,
                            amount_cents=item.amount_cents,
                            source=ContributionSource.bill_item,
                        )
                    )
            if with_offsets and card_purchase:
                rows.append(
                    Contribution(
                        id=f"{entry.id}:offset",
                        date=entry.date,
                        description=clean_description(entry.description),
                        amount_cents=-int(entry.amount_cents or 0),
                        source=ContributionSource.card_purchase,
                    )
                )
            if not matches:
                continue
            source = ContributionSource.direct
            if card_purchase:
                source = ContributionSource.card_purchase
            rows.append(
                Contribution(
                    id=entry.id,
                    date=entry.date,
                    description=clean_description(entry.description),
                    amount_cents=int(entry.amount_cents or 0),
                    source=source,
                )
            )
        rows.sort(key=lambda row: (row.date or date.min, row.id), reverse=True)
        return rows

    def account_balances(self, entries: Iterable[Entry]) -> list[AccountBalance]:
        """Running balance of each active bank account (cards excluded)."""
        balances = {
            account.id: account.initial_balance_cents or 0
            for account in self.accounts
            if account.is_active and not account.is_credit_card
        }
        for entry in entries:
            amount = entry.amount_cents if isinstance(entry.amount_cents, int) else 0
            if entry.account_id in balances:
                if entry.kind == EntryKind.income:
                    balances[entry.account_id] += amount
                else:
                    balances[entry.account_id] -= amount
            if (
                entry.destination_account_id in balances
                and self.roles.is_transfer(entry.category_id)
            ):
                balances[entry.destination_account_id] += amount
        names = {account.id: account.name for account in self.accounts}
        result = [
            AccountBalance(account_id=account_id, name=names[account_id], balance_cents=cents)
            for account_id, cents in balances.items()
        ]
        result.sort(key=lambda row: row.balance_cents, reverse=True)
        return result


def classify_pace(current_cents: int, average_cents: int) -> Pace:
    if average_cents <= 0:
        return Pace.stable
    if current_cents * 100 > average_cents * 110:
        return Pace.above_average
    if current_cents * 100 < average_cents * 90:
        return Pace.below_average
    return Pace.stable


def aggregate(
    entries: Iterable[Entry],
    categories: Iterable[Category],
    accounts: Iterable[Account],
    period: Period,
    *,
    roles: Optional[CategoryRoles] = None,
    today: Optional[date] = None,
) -> PeriodStats:
    return PeriodAggregator(categories, accounts, roles, today=today).aggregate(
        entries, period
    )
