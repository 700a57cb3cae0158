"""Pure stock and cash calculators for a single shop-day.

Nothing in this module performs I/O or raises for numeric input: negative sold
quantities and negative cash totals are valid results that callers surface to
a human reviewer.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Mapping, Sequence, Union

from .constants import (
    MONEY_QUANTUM,
    ZERO_MONEY,
    CashStatus,
    ExtraTransactionType,
    StockField,
)
from .data_manager import (
    CashLedgerRow,
    CreditEntryRow,
    ExtraTransactionRow,
    StockLineRow,
)


def money(value: Union[Decimal, int, str]) -> Decimal:
    """Quantize ``value`` to currency precision."""

    return Decimal(value).quantize(MONEY_QUANTUM)


@dataclass(frozen=True)
class StockFigures:
    """Derived fields of a stock line."""

    sold_qty: int
    sale_value: Decimal
    closing_stock_value: Decimal


@dataclass(frozen=True)
class ReconciliationResult:
    """Every derived cash figure for a shop-day, computed in a single pass."""

    physical_cash: Decimal
    total_digital: Decimal
    total_sale_value: Decimal
    total_extra_income: Decimal
    total_expenses: Decimal
    total_credit: Decimal
    total_amount: Decimal
    counter_closing: Decimal
    physical_cash_after_deductions: Decimal
    cash_status_value: Decimal
    cash_difference: Decimal
    cash_status: CashStatus
    status_amount: Decimal
    total_bottles_sold: int
    total_closing_stock_value: Decimal


def derive_stock_figures(
    opening_stock: int,
    purchases: int,
    transfer: int,
    closing_stock: int,
    mrp: Decimal,
) -> StockFigures:
    """Derive sold quantity, sale value and closing stock value.

    Args:
        opening_stock (int): Units on hand at day start.
        purchases (int): Units received during the day.
        transfer (int): Units moved out of the shop.
        closing_stock (int): Units counted at day end.
        mrp (Decimal): Unit retail price of the product.

    Returns:
        StockFigures: ``sold_qty`` may be negative when the closing count
            exceeds what was available.
    """

    sold_qty = opening_stock + purchases - transfer - closing_stock
    return StockFigures(
        sold_qty=sold_qty,
        sale_value=money(sold_qty * mrp),
        closing_stock_value=money(closing_stock * mrp),
    )


def recompute(
    line: StockLineRow,
    edited_field: Union[StockField, str],
    new_value: int,
    mrp: Decimal,
) -> StockFigures:
    """Return the derived figures of ``line`` after one user edit.

    Only purchases, transfer and closing stock are user-editable; opening stock
    is owned by the carry-forward routine.

    Raises:
        ValueError: If ``edited_field`` is not an editable stock field.
    """

    edited = StockField(edited_field)
    values = {
        StockField.PURCHASES: line.purchases,
        StockField.TRANSFER: line.transfer,
        StockField.CLOSING_STOCK: line.closing_stock,
    }
    values[edited] = new_value
    return derive_stock_figures(
        line.opening_stock,
        values[StockField.PURCHASES],
        values[StockField.TRANSFER],
        values[StockField.CLOSING_STOCK],
        mrp,
    )


def apply_stock_edit(
    line: StockLineRow,
    edited_field: Union[StockField, str],
    new_value: int,
    mrp: Decimal,
) -> StockLineRow:
    """Return a copy of ``line`` with the edit applied and figures recomputed."""

    edited = StockField(edited_field)
    figures = recompute(line, edited, new_value, mrp)
    return replace(
        line,
        **{edited.value: new_value},
        sold_qty=figures.sold_qty,
        sale_value=figures.sale_value,
        closing_stock_value=figures.closing_stock_value,
    )


def refresh_stock_line(line: StockLineRow, mrp: Decimal) -> StockLineRow:
    """Recompute the derived fields of ``line`` from its current movements."""

    figures = derive_stock_figures(
        line.opening_stock,
        line.purchases,
        line.transfer,
        line.closing_stock,
        mrp,
    )
    return replace(
        line,
        sold_qty=figures.sold_qty,
        sale_value=figures.sale_value,
        closing_stock_value=figures.closing_stock_value,
    )


def physical_cash(denominations: Mapping[int, int], coins: Decimal) -> Decimal:
    """Sum counted notes by face value plus the coins amount."""

    total = sum((Decimal(face) * count for face, count in denominations.items()), ZERO_MONEY)
    return money(total + coins)


def classify_difference(difference: Decimal) -> tuple[CashStatus, Decimal]:
    """Classify a cash difference and return ``(status, absolute amount)``."""

    if difference > 0:
        return CashStatus.EXCESS, money(difference)
    if difference < 0:
        return CashStatus.SHORTAGE, money(-difference)
    return CashStatus.BALANCED, ZERO_MONEY


def _sum_money(amounts: Iterable[Decimal]) -> Decimal:
    return money(sum(amounts, ZERO_MONEY))


def reconcile(
    ledger: CashLedgerRow,
    stock_lines: Sequence[StockLineRow],
    extra_transactions: Sequence[ExtraTransactionRow],
    credit_entries: Sequence[CreditEntryRow],
) -> ReconciliationResult:
    """Reconcile counted cash against the expected counter closing.

    ``counter_closing`` is the cash that should remain at the counter once
    digital receipts, owner withdrawals and expenses are taken out of the day's
    takings. Credit sales do not enter it; they offset the counted cash when
    the cash status is computed.

    Args:
        ledger (CashLedgerRow): Ledger carrying opening balance, denomination
            counts, digital channel amounts and deductions.
        stock_lines (Sequence[StockLineRow]): The day's stock lines with their
            derived sale values already computed.
        extra_transactions (Sequence[ExtraTransactionRow]): Ad-hoc income and
            expenses.
        credit_entries (Sequence[CreditEntryRow]): Goods given on credit.

    Returns:
        ReconciliationResult: Every derived total for the day.
    """

    counted = physical_cash(ledger.denominations, ledger.coins)
    total_digital = _sum_money(ledger.digital_payments.values())
    total_sale_value = _sum_money(line.sale_value for line in stock_lines)
    total_extra_income = _sum_money(
        tx.amount for tx in extra_transactions if tx.transaction_type == ExtraTransactionType.INCOME.value
    )
    total_expenses = _sum_money(
        tx.amount for tx in extra_transactions if tx.transaction_type == ExtraTransactionType.EXPENSE.value
    )
    total_credit = _sum_money(entry.amount for entry in credit_entries)

    total_amount = money(ledger.counter_opening + total_sale_value + total_extra_income)
    counter_closing = money(total_amount - total_digital - ledger.cash_to_house - total_expenses)
    after_deductions = money(counted - ledger.bank_deposit - ledger.cash_to_house)
    status_value = money(after_deductions + total_credit)
    difference = money(status_value - counter_closing)
    status, status_amount = classify_difference(difference)

    return ReconciliationResult(
        physical_cash=counted,
        total_digital=total_digital,
        total_sale_value=total_sale_value,
        total_extra_income=total_extra_income,
        total_expenses=total_expenses,
        total_credit=total_credit,
        total_amount=total_amount,
        counter_closing=counter_closing,
        physical_cash_after_deductions=after_deductions,
        cash_status_value=status_value,
        cash_difference=difference,
        cash_status=status,
        status_amount=status_amount,
        total_bottles_sold=sum(line.sold_qty for line in stock_lines),
        total_closing_stock_value=_sum_money(line.closing_stock_value for line in stock_lines),
    )


def apply_reconciliation(ledger: CashLedgerRow, result: ReconciliationResult) -> CashLedgerRow:
    """Copy the derived totals of ``result`` onto ``ledger``."""

    return replace(
        ledger,
        total_sale_value=result.total_sale_value,
        physical_cash=result.physical_cash,
        total_digital=result.total_digital,
        total_extra_income=result.total_extra_income,
        total_expenses=result.total_expenses,
        total_credit=result.total_credit,
        total_amount=result.total_amount,
        counter_closing=result.counter_closing,
        cash_difference=result.cash_difference,
        cash_status=result.cash_status.value,
        total_bottles_sold=result.total_bottles_sold,
    )
