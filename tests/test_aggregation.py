from datetime import date

from aggregation import (
    ContributionSource,
    Pace,
    PeriodAggregator,
    aggregate,
    classify_pace,
    rank,
)
from models import Account, Category, Entry, EntryKind
from periods import resolve_period

TODAY = date(2025, 6, 18)

CATEGORIES = [
    Category(id="cat-bill", name="Cartão de Crédito", kind=EntryKind.expense),
    Category(id="cat-transfer", name="Transferências entre contas", kind=EntryKind.expense),
    Category(id="cat-food", name="Mercado", kind=EntryKind.expense),
    Category(id="cat-fees", name="Tarifas", kind=EntryKind.expense),
    Category(id="cat-salary", name="Salário", kind=EntryKind.income),
]
ACCOUNTS = [
    Account(id="card-1", name="Nubank", is_credit_card=True, closing_day=5, is_active=True),
    Account(id="bank-1", name="Itaú", is_credit_card=False, is_active=True, initial_balance_cents=100000),
    Account(id="bank-2", name="Caixa", is_credit_card=False, is_active=True, initial_balance_cents=0),
]


def entry(entry_id: str, amount, *, day: date = date(2025, 6, 1), **fields) -> Entry:
    data = {
        "id": entry_id,
        "date": day,
        "kind": EntryKind.expense,
        "amount_cents": amount,
        "description": entry_id,
        "category_id": "cat-food",
        "account_id": "bank-1",
    }
    data.update(fields)
    return Entry(**data)


def bill_payment(entry_id: str, amount: int, **fields) -> Entry:
    return entry(
        entry_id,
        amount,
        category_id="cat-bill",
        paid_card_id="card-1",
        day=fields.pop("day", date(2025, 6, 10)),
        **fields,
    )


def make_aggregator() -> PeriodAggregator:
    return PeriodAggregator(CATEGORIES, ACCOUNTS, today=TODAY, history_months=3)


def stats_for(entries, selector: str = "2025-06"):
    return make_aggregator().aggregate(entries, resolve_period(selector, today=TODAY))


def test_card_purchase_and_bill_payment_are_not_double_counted() -> None:
    entries = [
        entry("p1", 10000, account_id="card-1"),
        bill_payment("bill", 10000),
    ]

    stats = stats_for(entries)

    assert [(r.category_name, r.amount_cents) for r in stats.expense_ranking] == [("Mercado", 10000)]
    assert stats.total_expense_cents == 10000


def test_bill_residual_within_one_cent_is_dropped() -> None:
    entries = [entry("p1", 10000, account_id="card-1"), bill_payment("bill", 10001)]

    stats = stats_for(entries)

    assert [r.category_name for r in stats.expense_ranking] == ["Mercado"]


def test_unexplained_bill_amount_stays_in_card_category() -> None:
    entries = [entry("p1", 10000, account_id="card-1"), bill_payment("bill", 10500)]

    stats = stats_for(entries)

    totals = {r.category_name: r.amount_cents for r in stats.expense_ranking}
    assert totals == {"Mercado": 10000, "Cartão de Crédito": 500}
    assert stats.total_expense_cents == 10500


def test_bill_items_move_money_into_their_category() -> None:
    bill = bill_payment(
        "bill",
        1200,
        bill_items=[{"id": "i1", "description": "Anuidade", "amount_cents": 1200, "category_id": "cat-fees"}],
    )

    stats = stats_for([bill])

    assert [(r.category_name, r.amount_cents) for r in stats.expense_ranking] == [("Tarifas", 1200)]


def test_transfers_never_reach_totals() -> None:
    entries = [
        entry("t1", 5000, category_id="cat-transfer", destination_account_id="bank-2"),
        entry("salary", 700000, kind=EntryKind.income, category_id="cat-salary"),
    ]

    stats = stats_for(entries)

    assert stats.expense_ranking == []
    assert stats.total_expense_cents == 0
    assert stats.total_income_cents == 700000
    assert stats.balance_cents == 700000


def test_unknown_category_is_grouped() -> None:
    stats = stats_for([entry("x", 300, category_id="deleted")])

    assert stats.expense_ranking[0].category_name == "Sem grupo"


def test_malformed_entry_counts_as_zero() -> None:
    entries = [entry("bad", "12,00"), entry("ok", 500)]

    stats = stats_for(entries)

    assert stats.total_expense_cents == 500


def test_pareto_ranking() -> None:
    rows = rank({"A": 600, "B": 300, "C": 100, "D": 1})

    assert [r.category_name for r in rows] == ["A", "B", "C"]
    assert [round(r.percent) for r in rows] == [60, 30, 10]
    assert [round(r.cumulative_percent) for r in rows] == [60, 90, 100]


def test_pace_thresholds() -> None:
    assert classify_pace(111, 100) == Pace.above_average
    assert classify_pace(110, 100) == Pace.stable
    assert classify_pace(90, 100) == Pace.stable
    assert classify_pace(89, 100) == Pace.below_average
    assert classify_pace(500, 0) == Pace.stable


def test_daily_and_historical_averages() -> None:
    entries = [
        entry("apr", 2000, day=date(2025, 4, 10)),
        entry(
            "apr-transfer",
            7777,
            day=date(2025, 4, 15),
            category_id="cat-transfer",
            destination_account_id="bank-2",
        ),
        entry("may", 4000, day=date(2025, 5, 10)),
        entry("may-card", 9999, day=date(2025, 5, 1), account_id="card-1"),
        entry("jun", 1800, day=date(2025, 6, 2)),
    ]

    stats = stats_for(entries)

    assert stats.daily_average_cents == 100
    assert stats.historical_average_cents == 3000
    assert stats.pace == Pace.below_average
    assert [m.month for m in stats.monthly_history] == ["2025-04", "2025-05", "2025-06"]
    assert [m.expense_cents for m in stats.monthly_history] == [2000, 13999, 1800]


def test_rolling_window_uses_window_length() -> None:
    entries = [entry("old", 999, day=date(2025, 5, 1)), entry("recent", 1500, day=date(2025, 6, 10))]

    stats = stats_for(entries, "15d")

    assert stats.total_expense_cents == 1500
    assert stats.daily_average_cents == 100


def test_module_level_aggregate() -> None:
    stats = aggregate(
        [entry("x", 100)],
        CATEGORIES,
        ACCOUNTS,
        resolve_period("2025-06", today=TODAY),
        today=TODAY,
    )

    assert stats.total_expense_cents == 100


def test_drill_down_lists_every_contribution() -> None:
    entries = [
        entry("direct", 500, day=date(2025, 6, 3)),
        entry("card", 700, day=date(2025, 6, 1), account_id="card-1"),
        bill_payment(
            "bill",
            1000,
            bill_items=[{"id": "i1", "description": "Ajuste", "amount_cents": 300, "category_id": "cat-food"}],
        ),
        entry("other", 900, category_id="cat-fees"),
    ]

    rows = make_aggregator().drill_down(entries, resolve_period("2025-06", today=TODAY), "Mercado")

    assert [(r.id, r.source) for r in rows] == [
        ("bill:i1", ContributionSource.bill_item),
        ("direct", ContributionSource.direct),
        ("card", ContributionSource.card_purchase),
    ]
    assert sum(r.amount_cents for r in rows) == 1500


def test_card_bill_drill_down_adds_up_to_ranked_total() -> None:
    entries = [
        entry("p1", 10000, account_id="card-1"),
        bill_payment(
            "bill",
            10500,
            bill_items=[{"id": "i1", "description": "Anuidade", "amount_cents": 200, "category_id": "cat-fees"}],
        ),
    ]
    period = resolve_period("2025-06", today=TODAY)
    aggregator = make_aggregator()

    ranked = {r.category_name: r.amount_cents for r in aggregator.aggregate(entries, period).expense_ranking}
    rows = aggregator.drill_down(entries, period, "Cartão de Crédito")

    assert ranked["Cartão de Crédito"] == 300
    assert [(r.id, r.amount_cents) for r in rows] == [
        ("bill:i1:offset", -200),
        ("bill", 10500),
        ("p1:offset", -10000),
    ]
    assert sum(r.amount_cents for r in rows) == 300


def test_account_balances_exclude_cards_and_follow_transfers() -> None:
    entries = [
        entry("salary", 50000, kind=EntryKind.income, category_id="cat-salary"),
        entry("food", 2000),
        entry("t1", 5000, category_id="cat-transfer", destination_account_id="bank-2"),
        entry("card", 3000, account_id="card-1"),
    ]

    balances = make_aggregator().account_balances(entries)

    assert [(b.account_id, b.balance_cents) for b in balances] == [
        ("bank-1", 143000),
        ("bank-2", 5000),
    ]
