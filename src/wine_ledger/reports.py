"""Read-side reports built on top of the business logic layer.

Reports never mutate ledger data. The single exception is
:func:`record_pdf_archive`, which appends to the archive index after the
presentation layer has rendered a daily report.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from . import data_manager, log
from .constants import ZERO_MONEY, CashStatus, RequestStatus
from .core_logic import RuntimeContext, credit_entries_available, get_product, get_shop


ARCHIVE_ROOT = "/archives"


@dataclass(frozen=True)
class DepositTotals:
    """Cash taken off the counter, split by destination."""

    bank_deposit: Decimal = ZERO_MONEY
    cash_to_house: Decimal = ZERO_MONEY

    @property
    def total(self) -> Decimal:
        return self.bank_deposit + self.cash_to_house

    def __add__(self, other: "DepositTotals") -> "DepositTotals":
        return DepositTotals(
            bank_deposit=self.bank_deposit + other.bank_deposit,
            cash_to_house=self.cash_to_house + other.cash_to_house,
        )


@dataclass(frozen=True)
class DepositRow:
    shop_id: str
    entry_date: date
    amounts: DepositTotals


@dataclass(frozen=True)
class DepositsReport:
    """Deposit rows plus grand, per-day and per-month (``YYYY-MM``) totals."""

    rows: List[DepositRow]
    grand_total: DepositTotals
    by_day: Dict[date, DepositTotals]
    by_month: Dict[str, DepositTotals]


@dataclass(frozen=True)
class BrandSales:
    brand_name: str
    sold_qty: int
    sale_value: Decimal


@dataclass(frozen=True)
class TrendPoint:
    entry_date: date
    total_sale_value: Decimal


@dataclass(frozen=True)
class DailySummary:
    """Dashboard figures for one shop-day."""

    shop_id: str
    entry_date: date
    counter_opening: Decimal
    counter_closing: Decimal
    total_sale_value: Decimal
    closing_stock_value: Decimal
    total_bottles_sold: int
    cash_status: str
    cash_difference: Decimal
    top_brands: List[BrandSales] = field(default_factory=list)
    sales_by_product_type: Dict[str, Decimal] = field(default_factory=dict)
    trend: List[TrendPoint] = field(default_factory=list)


@dataclass(frozen=True)
class DebtorHistory:
    person_name: str
    entries: List[tuple[date, Decimal]]

    @property
    def total(self) -> Decimal:
        return sum((amount for _, amount in self.entries), ZERO_MONEY)


def deposits_report(
    context: RuntimeContext,
    *,
    shop_id: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> DepositsReport:
    """Collect bank deposits and cash handed to the owner.

    Filters combine: shop, inclusive date range and calendar month/year may all
    be given at once. Ledgers with neither a bank deposit nor cash to house are
    left out.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        shop_id (str | None): Restrict to one shop.
        start (date | None): Earliest entry date to include.
        end (date | None): Latest entry date to include.
        month (int | None): Calendar month (1-12) to include.
        year (int | None): Calendar year to include.

    Returns:
        DepositsReport: Rows sorted by date then shop, with totals.
    """

    rows: List[DepositRow] = []
    for ledger in data_manager.iter_cash_ledgers(context.workbook):
        if shop_id is not None and ledger.shop_id != shop_id:
            continue
        if start is not None and ledger.entry_date < start:
            continue
        if end is not None and ledger.entry_date > end:
            continue
        if month is not None and ledger.entry_date.month != month:
            continue
        if year is not None and ledger.entry_date.year != year:
            continue
        if ledger.bank_deposit == 0 and ledger.cash_to_house == 0:
            continue
        rows.append(
            DepositRow(
                shop_id=ledger.shop_id,
                entry_date=ledger.entry_date,
                amounts=DepositTotals(bank_deposit=ledger.bank_deposit, cash_to_house=ledger.cash_to_house),
            )
        )
    rows.sort(key=lambda row: (row.entry_date, row.shop_id))

    grand = DepositTotals()
    by_day: Dict[date, DepositTotals] = defaultdict(DepositTotals)
    by_month: Dict[str, DepositTotals] = defaultdict(DepositTotals)
    for row in rows:
        grand = grand + row.amounts
        by_day[row.entry_date] = by_day[row.entry_date] + row.amounts
        month_key = row.entry_date.strftime("%Y-%m")
        by_month[month_key] = by_month[month_key] + row.amounts

    log.debug("Deposits report: %d rows, total=%s", len(rows), grand.total)
    return DepositsReport(rows=rows, grand_total=grand, by_day=dict(by_day), by_month=dict(by_month))


def sales_trend(context: RuntimeContext, shop_id: str, end_date: date, *, days: int = 7) -> List[TrendPoint]:
    """Total sale value per day for the ``days`` days ending at ``end_date``.

    Days without a ledger are reported as zero.
    """

    start = end_date - timedelta(days=days - 1)
    totals = {
        ledger.entry_date: ledger.total_sale_value
        for ledger in data_manager.iter_cash_ledgers(context.workbook)
        if ledger.shop_id == shop_id and start <= ledger.entry_date <= end_date
    }
    return [
        TrendPoint(entry_date=day, total_sale_value=totals.get(day, ZERO_MONEY))
        for day in (start + timedelta(days=offset) for offset in range(days))
    ]


def daily_summary(
    context: RuntimeContext,
    shop_id: str,
    entry_date: date,
    *,
    top_n: int = 10,
    trend_days: int = 7,
) -> DailySummary:
    """Build the dashboard view of one shop-day from its stored snapshot.

    A day that was never opened yields zero figures rather than an error.

    Raises:
        MissingReferenceError: If ``shop_id`` is unknown.
    """

    get_shop(context, shop_id)
    ledger = data_manager.find_cash_ledger(context.workbook, shop_id, entry_date)
    lines = data_manager.find_stock_lines(context.workbook, shop_id, entry_date)

    brands: Dict[str, List] = {}
    by_type: Dict[str, Decimal] = defaultdict(lambda: ZERO_MONEY)
    for line in lines:
        product = get_product(context, line.product_id)
        sold, value = brands.get(product.brand_name, [0, ZERO_MONEY])
        brands[product.brand_name] = [sold + line.sold_qty, value + line.sale_value]
        by_type[product.product_type] += line.sale_value

    top_brands = sorted(
        (BrandSales(brand_name=name, sold_qty=sold, sale_value=value) for name, (sold, value) in brands.items()),
        key=lambda item: item.sale_value,
        reverse=True,
    )[:top_n]

    return DailySummary(
        shop_id=shop_id,
        entry_date=entry_date,
        counter_opening=ledger.counter_opening if ledger else ZERO_MONEY,
        counter_closing=ledger.counter_closing if ledger else ZERO_MONEY,
        total_sale_value=ledger.total_sale_value if ledger else ZERO_MONEY,
        closing_stock_value=sum((line.closing_stock_value for line in lines), ZERO_MONEY),
        total_bottles_sold=ledger.total_bottles_sold if ledger else 0,
        cash_status=ledger.cash_status if ledger else CashStatus.BALANCED.value,
        cash_difference=ledger.cash_difference if ledger else ZERO_MONEY,
        top_brands=top_brands,
        sales_by_product_type=dict(by_type),
        trend=sales_trend(context, shop_id, entry_date, days=trend_days),
    )


def pending_approvals(context: RuntimeContext, *, shop_id: Optional[str] = None) -> List[data_manager.ApprovalRequestRow]:
    """Return pending approval requests, most recent first."""

    pending = [
        request
        for request in data_manager.iter_approval_requests(context.workbook)
        if request.status == RequestStatus.PENDING.value and (shop_id is None or request.shop_id == shop_id)
    ]
    pending.sort(key=lambda request: request.created_at, reverse=True)
    return pending


def debtor_names(context: RuntimeContext, shop_id: str, prefix: str = "") -> List[str]:
    """Registered debtor names for autocomplete, filtered by ``prefix``.

    Returns an empty list when the credit subsystem is unavailable.
    """

    if not credit_entries_available(context):
        log.warning("Credit subsystem unavailable; no debtors listed for '%s'", shop_id)
        return []
    needle = prefix.strip().casefold()
    return sorted(
        debtor.person_name
        for debtor in data_manager.iter_debtors(context.workbook, shop_id)
        if debtor.person_name.casefold().startswith(needle)
    )


def debtor_history(context: RuntimeContext, shop_id: str, person_name: str) -> DebtorHistory:
    """Every credit entry recorded for ``person_name`` at ``shop_id``, oldest first."""

    name = person_name.strip()
    if not credit_entries_available(context):
        log.warning("Credit subsystem unavailable; empty history for '%s'", name)
        return DebtorHistory(person_name=name, entries=[])
    entries = sorted(
        (
            (entry_date, entry.amount)
            for entry_date, entry in data_manager.iter_credit_history(context.workbook, shop_id)
            if entry.person_name.casefold() == name.casefold()
        ),
        key=lambda item: item[0],
    )
    return DebtorHistory(person_name=name, entries=entries)


def archive_file_name(shop_name: str, entry_date: date) -> str:
    """Name of the rendered daily report, e.g. ``05-10-2026-Main-Shop.pdf``."""

    return f"{entry_date.strftime('%d-%m-%Y')}-{shop_name.replace(' ', '-')}.pdf"


def record_pdf_archive(
    context: RuntimeContext,
    shop_id: str,
    entry_date: date,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.PdfArchiveRow:
    """Append a rendered daily report to the archive index.

    Raises:
        MissingReferenceError: If ``shop_id`` is unknown.
    """

    shop = get_shop(context, shop_id)
    file_name = archive_file_name(shop.shop_name, entry_date)
    record = data_manager.PdfArchiveRow(
        shop_id=shop_id,
        entry_date=entry_date,
        file_path=f"{ARCHIVE_ROOT}/{file_name}",
        file_name=file_name,
        month_year=entry_date.strftime("%B %Y"),
        created_at=(timestamp or datetime.now(UTC)).isoformat(),
    )
    data_manager.append_pdf_archive(context.workbook, record)
    log.info("Archived report '%s' for shop '%s'", file_name, shop_id)
    return record


def list_pdf_archives(
    context: RuntimeContext,
    *,
    shop_id: Optional[str] = None,
    month_year: Optional[str] = None,
) -> List[data_manager.PdfArchiveRow]:
    """Archive index entries, newest entry date first."""

    archives = [
        record
        for record in data_manager.iter_pdf_archives(context.workbook)
        if (shop_id is None or record.shop_id == shop_id) and (month_year is None or record.month_year == month_year)
    ]
    archives.sort(key=lambda record: record.entry_date, reverse=True)
    return archives
