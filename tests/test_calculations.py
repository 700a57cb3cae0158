"""Unit tests for the pure stock and cash calculators."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from wine_ledger import calculations, constants, data_manager


DAY = date(2026, 10, 1)


def _line(**overrides) -> data_manager.StockLineRow:
    values = dict(line_id="S1:2026-10-01:P1", shop_id="S1", product_id="P1", entry_date=DAY)
    values.update(overrides)
    return data_manager.StockLineRow(**values)


def _ledger(**overrides) -> data_manager.CashLedgerRow:
    values = dict(ledger_id="S1:2026-10-01", shop_id="S1", entry_date=DAY)
    values.update(overrides)
    return data_manager.CashLedgerRow(**values)


# ---------------------------------------------------------------------------
# Stock movement
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("opening", "purchases", "transfer", "closing", "mrp"),
    [
        (40, 0, 0, 30, Decimal("500.00")),
        (0, 24, 4, 12, Decimal("150.00")),
        (10, 5, 0, 0, Decimal("99.50")),
        (5, 0, 0, 8, Decimal("120.00")),
        (0, 0, 0, 0, Decimal("75.25")),
    ],
)
def test_derive_stock_figures_follows_movement_formula(opening, purchases, transfer, closing, mrp):
    """Sold quantity, sale value and closing value derive from the movements."""

    figures = calculations.derive_stock_figures(opening, purchases, transfer, closing, mrp)

    expected_sold = opening + purchases - transfer - closing
    assert figures.sold_qty == expected_sold
    assert figures.sale_value == expected_sold * mrp
    assert figures.closing_stock_value == closing * mrp


def test_derive_stock_figures_surfaces_negative_sales():
    """An overcount yields a negative sold quantity rather than an error."""

    figures = calculations.derive_stock_figures(5, 0, 0, 8, Decimal("120.00"))

    assert figures.sold_qty == -3
    assert figures.sale_value == Decimal("-360.00")
    assert figures.closing_stock_value == Decimal("960.00")


@pytest.mark.parametrize(
    ("field", "value", "expected_sold"),
    [
        (constants.StockField.PURCHASES, 12, 22),
        (constants.StockField.TRANSFER, 3, 7),
        (constants.StockField.CLOSING_STOCK, 0, 20),
        ("closing_stock", 25, -5),
    ],
)
def test_recompute_applies_single_field_edit(field, value, expected_sold):
    """recompute swaps in the edited value and leaves the others untouched."""

    line = _line(opening_stock=20, purchases=0, transfer=0, closing_stock=10)

    figures = calculations.recompute(line, field, value, Decimal("100.00"))

    assert figures.sold_qty == expected_sold
    assert figures.sale_value == Decimal(expected_sold) * Decimal("100.00")


def test_recompute_rejects_opening_stock_edits():
    """Opening stock belongs to the carry-forward and is not user editable."""

    with pytest.raises(ValueError):
        calculations.recompute(_line(), "opening_stock", 5, Decimal("1.00"))


def test_apply_stock_edit_returns_updated_copy():
    line = _line(opening_stock=40, closing_stock=40)

    edited = calculations.apply_stock_edit(line, constants.StockField.CLOSING_STOCK, 30, Decimal("500.00"))

    assert edited.closing_stock == 30
    assert edited.sold_qty == 10
    assert edited.sale_value == Decimal("5000.00")
    assert edited.closing_stock_value == Decimal("15000.00")
    assert line.closing_stock == 40


def test_refresh_stock_line_ignores_stale_derived_values():
    stale = _line(opening_stock=10, purchases=2, closing_stock=4, sold_qty=99, sale_value=Decimal("1.00"))

    refreshed = calculations.refresh_stock_line(stale, Decimal("10.00"))

    assert refreshed.sold_qty == 8
    assert refreshed.sale_value == Decimal("80.00")


# ---------------------------------------------------------------------------
# Cash reconciliation
# ---------------------------------------------------------------------------


def test_physical_cash_sums_notes_and_coins():
    counts = {500: 2, 200: 1, 100: 3, 50: 0, 20: 4, 10: 5}

    assert calculations.physical_cash(counts, Decimal("7.50")) == Decimal("1637.50")


@pytest.mark.parametrize(
    ("difference", "status", "amount"),
    [
        (Decimal("0"), constants.CashStatus.BALANCED, Decimal("0.00")),
        (Decimal("150.00"), constants.CashStatus.EXCESS, Decimal("150.00")),
        (Decimal("-1000.00"), constants.CashStatus.SHORTAGE, Decimal("1000.00")),
    ],
)
def test_classify_difference(difference, status, amount):
    assert calculations.classify_difference(difference) == (status, amount)


def test_reconcile_counter_closing_example():
    """Opening 1000, sales 5000, income 200, expenses 100, digital 2000, house 500."""

    ledger = _ledger(
        counter_opening=Decimal("1000.00"),
        digital_payments={"Digital Payments": Decimal("2000.00")},
        cash_to_house=Decimal("500.00"),
    )
    lines = [_line(sale_value=Decimal("5000.00"))]
    extras = [
        data_manager.ExtraTransactionRow("income", "Empty bottles", Decimal("200.00")),
        data_manager.ExtraTransactionRow("expense", "Ice", Decimal("100.00")),
    ]

    result = calculations.reconcile(ledger, lines, extras, [])

    assert result.total_amount == Decimal("6200.00")
    assert result.counter_closing == Decimal("3600.00")


def test_reconcile_cash_status_example():
    """Physical 3000, bank 200, house 500, credit 300 against a 3600 closing."""

    ledger = _ledger(
        counter_opening=Decimal("1000.00"),
        denominations={500: 6},
        digital_payments={"Digital Payments": Decimal("2000.00")},
        bank_deposit=Decimal("200.00"),
        cash_to_house=Decimal("500.00"),
    )
    lines = [_line(sale_value=Decimal("5000.00"))]
    extras = [
        data_manager.ExtraTransactionRow("income", "", Decimal("200.00")),
        data_manager.ExtraTransactionRow("expense", "", Decimal("100.00")),
    ]
    credits = [data_manager.CreditEntryRow("Ravi", Decimal("300.00"))]

    result = calculations.reconcile(ledger, lines, extras, credits)

    assert result.physical_cash == Decimal("3000.00")
    assert result.physical_cash_after_deductions == Decimal("2300.00")
    assert result.cash_status_value == Decimal("2600.00")
    assert result.cash_difference == Decimal("-1000.00")
    assert result.cash_status is constants.CashStatus.SHORTAGE
    assert result.status_amount == Decimal("1000.00")


def test_reconcile_credit_does_not_change_counter_closing():
    ledger = _ledger(counter_opening=Decimal("100.00"))
    without_credit = calculations.reconcile(ledger, [], [], [])
    with_credit = calculations.reconcile(ledger, [], [], [data_manager.CreditEntryRow("A", Decimal("50.00"))])

    assert without_credit.counter_closing == with_credit.counter_closing
    assert with_credit.cash_difference - without_credit.cash_difference == Decimal("50.00")


def test_reconcile_sums_every_digital_channel():
    ledger = _ledger(
        digital_payments={
            "Google Pay": Decimal("120.00"),
            "PhonePe": Decimal("80.00"),
            "Bank": Decimal("300.00"),
        }
    )

    result = calculations.reconcile(ledger, [], [], [])

    assert result.total_digital == Decimal("500.00")
    assert result.counter_closing == Decimal("-500.00")


def test_reconcile_totals_bottles_and_stock_value():
    lines = [
        _line(product_id="P1", sold_qty=3, closing_stock_value=Decimal("1000.00")),
        _line(product_id="P2", sold_qty=-1, closing_stock_value=Decimal("450.00")),
    ]

    result = calculations.reconcile(_ledger(), lines, [], [])

    assert result.total_bottles_sold == 2
    assert result.total_closing_stock_value == Decimal("1450.00")


def test_reconcile_balanced_when_cash_matches():
    ledger = _ledger(counter_opening=Decimal("500.00"), denominations={500: 1})

    result = calculations.reconcile(ledger, [], [], [])

    assert result.cash_status is constants.CashStatus.BALANCED
    assert result.status_amount == Decimal("0.00")


def test_apply_reconciliation_copies_snapshot_fields():
    ledger = _ledger(counter_opening=Decimal("10.00"), denominations={10: 3})
    result = calculations.reconcile(ledger, [_line(sale_value=Decimal("40.00"), sold_qty=2)], [], [])

    updated = calculations.apply_reconciliation(ledger, result)

    assert updated.total_sale_value == Decimal("40.00")
    assert updated.counter_closing == Decimal("50.00")
    assert updated.physical_cash == Decimal("30.00")
    assert updated.cash_difference == Decimal("-20.00")
    assert updated.cash_status == constants.CashStatus.SHORTAGE.value
    assert updated.total_bottles_sold == 2
