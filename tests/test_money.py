from datetime import date

import pytest

from money import (
    AmountInput,
    add_months,
    format_cents,
    parse_amount,
    round_half_up,
    shift_month,
)
from schemas import BillItem, PurchaseEdit


def test_parse_amount_accepts_brazilian_and_plain_formats() -> None:
    assert parse_amount("1.234,56") == 123456
    assert parse_amount("1234.56") == 123456
    assert parse_amount("R$ 10") == 1000
    assert parse_amount("0,005") == 1


def test_parse_amount_rejects_negative_unless_allowed() -> None:
    with pytest.raises(ValueError):
        parse_amount("-5,00")
    assert parse_amount("-5,00", allow_negative=True) == -500


def test_parse_amount_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_amount("abc")


def test_format_cents_uses_brazilian_separators() -> None:
    assert format_cents(123456789) == "1.234.567,89"
    assert format_cents(500) == "5,00"
    assert format_cents(-1999) == "-19,99"


def test_lone_minus_sign_survives_rerender() -> None:
    typed = AmountInput.from_text("-")
    assert typed.cents == 0
    assert typed.render() == "-"

    typed = AmountInput.from_text(typed.render() + "5")
    assert typed.cents == -5
    assert typed.render() == "-0,05"


def test_amount_input_strips_leading_zeros_and_symbols() -> None:
    typed = AmountInput.from_text("R$ 0012,34")
    assert typed.cents == 1234
    assert AmountInput.from_cents(-250).render() == "-2,50"
    assert AmountInput.from_cents(0).render() == ""


def test_add_months_overflows_like_the_calendar() -> None:
    assert add_months(date(2025, 1, 31), 1) == date(2025, 3, 3)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 3, 2)
    assert add_months(date(2025, 11, 15), 2) == date(2026, 1, 15)
    assert add_months(date(2025, 1, 1), 0) == date(2025, 1, 1)


def test_shift_month_returns_first_day() -> None:
    assert shift_month(date(2025, 3, 31), -1) == date(2025, 2, 1)
    assert shift_month(date(2025, 1, 10), -13) == date(2023, 12, 1)


def test_round_half_up() -> None:
    assert round_half_up(5, 2) == 3
    assert round_half_up(10, 3) == 3
    with pytest.raises(ValueError):
        round_half_up(1, 0)


def test_typed_bill_amounts_keep_their_sign() -> None:
    assert BillItem(amount_cents="-").amount_cents == 0
    assert BillItem(amount_cents="-12,50").amount_cents == -1250
    assert BillItem(amount_cents=300).amount_cents == 300
    assert PurchaseEdit(entry_id="p1", amount_cents="-0,05").amount_cents == -5
    assert PurchaseEdit(entry_id="p1").amount_cents is None
