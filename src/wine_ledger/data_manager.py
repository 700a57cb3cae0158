"""Data access layer for the wine shop ledger.

This module provides low-level helpers that read from and write to the master
ledger workbook. Business logic belongs elsewhere; the functions here form the
record store the reconciliation core consumes.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record operations: filtered reads, batched upserts and replacements for
   stock lines, cash ledgers, extra transactions, credit entries, debtors,
   approval requests and the PDF archive index.
"""


from __future__ import annotations

import configparser
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import (
    CREDIT_SHEETS,
    DEFAULT_DIGITAL_CHANNELS,
    DENOMINATIONS,
    MONEY_QUANTUM,
    SHEET_COLUMNS,
    ZERO_MONEY,
    CashStatus,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
SHOPS_SHEET = SheetName.SHOPS.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
STOCK_LINES_SHEET = SheetName.STOCK_LINES.value
CASH_LEDGERS_SHEET = SheetName.CASH_LEDGERS.value
DIGITAL_PAYMENTS_SHEET = SheetName.DIGITAL_PAYMENTS.value
EXTRA_TRANSACTIONS_SHEET = SheetName.EXTRA_TRANSACTIONS.value
CREDIT_ENTRIES_SHEET = SheetName.CREDIT_ENTRIES.value
DEBTORS_SHEET = SheetName.DEBTORS.value
APPROVAL_REQUESTS_SHEET = SheetName.APPROVAL_REQUESTS.value
PDF_ARCHIVES_SHEET = SheetName.PDF_ARCHIVES.value


class SubsystemNotConfigured(LookupError):
    """Raised when an optional subsystem's sheets are absent from the workbook."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    default_shop_id: str
    digital_channels: tuple[str, ...] = DEFAULT_DIGITAL_CHANNELS
    credit_entries_enabled: bool = True


@dataclass(frozen=True)
class ShopRow:
    """In-memory view of a row from the ``Shops`` sheet."""

    shop_id: str
    shop_name: str


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    shop_id: str
    brand_name: str
    product_type: str
    size_ml: int
    mrp: Decimal
    is_active: bool


@dataclass(frozen=True)
class StockLineRow:
    """One product's stock movement for one shop-day."""

    line_id: str
    shop_id: str
    product_id: str
    entry_date: date
    opening_stock: int = 0
    purchases: int = 0
    transfer: int = 0
    closing_stock: int = 0
    sold_qty: int = 0
    sale_value: Decimal = ZERO_MONEY
    closing_stock_value: Decimal = ZERO_MONEY


def _empty_denominations() -> Dict[int, int]:
    return {face: 0 for face in DENOMINATIONS}


@dataclass(frozen=True)
class CashLedgerRow:
    """Cash register snapshot for one shop-day.

    Input fields (opening, denominations, digital payments, deductions) are
    captured from staff; the totals below them are the persisted reconciliation
    snapshot and are always rewritten from a fresh recompute on save.
    """

    ledger_id: str
    shop_id: str
    entry_date: date
    counter_opening: Decimal = ZERO_MONEY
    denominations: Dict[int, int] = field(default_factory=_empty_denominations)
    coins: Decimal = ZERO_MONEY
    digital_payments: Dict[str, Decimal] = field(default_factory=dict)
    bank_deposit: Decimal = ZERO_MONEY
    cash_to_house: Decimal = ZERO_MONEY
    total_sale_value: Decimal = ZERO_MONEY
    physical_cash: Decimal = ZERO_MONEY
    total_digital: Decimal = ZERO_MONEY
    total_extra_income: Decimal = ZERO_MONEY
    total_expenses: Decimal = ZERO_MONEY
    total_credit: Decimal = ZERO_MONEY
    total_amount: Decimal = ZERO_MONEY
    counter_closing: Decimal = ZERO_MONEY
    cash_difference: Decimal = ZERO_MONEY
    cash_status: str = CashStatus.BALANCED.value
    total_bottles_sold: int = 0
    is_locked: bool = False
    is_approved: bool = False
    unlock_requested: bool = False
    locked_at: Optional[str] = None
    approved_at: Optional[str] = None


@dataclass(frozen=True)
class ExtraTransactionRow:
    """Ad-hoc income or expense recorded against a cash ledger."""

    transaction_type: str
    description: str
    amount: Decimal


@dataclass(frozen=True)
class CreditEntryRow:
    """Goods taken by ``person_name`` without immediate payment."""

    person_name: str
    amount: Decimal


@dataclass(frozen=True)
class DebtorRow:
    """Entry of the per-shop debtor registry."""

    shop_id: str
    person_name: str


@dataclass(frozen=True)
class ApprovalRequestRow:
    """In-memory view of a row from the ``ApprovalRequests`` sheet."""

    request_id: str
    shop_id: str
    entry_date: date
    request_type: str
    requested_by: str
    status: str
    created_at: str
    resolved_at: Optional[str] = None


@dataclass(frozen=True)
class PdfArchiveRow:
    """Index entry describing a generated daily report."""

    shop_id: str
    entry_date: date
    file_path: str
    file_name: str
    month_year: str
    created_at: str


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. When no explicit path is given the function walks
    up from the current working directory toward the filesystem root looking
    for a file named ``CONFIG_FILE_NAME``. The first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory. ``[Cash]
    DigitalChannels`` and ``[Features] CreditEntries`` are optional and fall
    back to a single digital channel and an enabled credit subsystem. Relative
    ``DataFile`` entries are anchored to ``base_path`` (or the working
    directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
        default_shop = parser.get("Defaults", "DefaultShop")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    channels_raw = parser.get("Cash", "DigitalChannels", fallback="")
    channels = tuple(part.strip() for part in channels_raw.split(",") if part.strip())
    credit_enabled = parser.getboolean("Features", "CreditEntries", fallback=True)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_shop_id=default_shop,
        digital_channels=channels or DEFAULT_DIGITAL_CHANNELS,
        credit_entries_enabled=credit_enabled,
    )


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def has_sheets(workbook: Workbook, names: Iterable[str]) -> bool:
    """Return ``True`` when every sheet in ``names`` exists in ``workbook``."""

    available = set(workbook.sheetnames)
    return all(name in available for name in names)


def credit_subsystem_available(workbook: Workbook) -> bool:
    """Report whether the optional credit/debtor sheets are present."""

    return has_sheets(workbook, CREDIT_SHEETS)


def _require_credit_subsystem(workbook: Workbook) -> None:
    if not credit_subsystem_available(workbook):
        raise SubsystemNotConfigured("Credit entries are not configured for this workbook")


# ---------------------------------------------------------------------------
# Generic sheet helpers
# ---------------------------------------------------------------------------


def header_map(sheet: Worksheet) -> Dict[str, int]:
    """Map header titles to their 1-based column indices."""

    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    headers = header_map(sheet)
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = headers[key_column]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def _iter_records(workbook: Workbook, sheet_name: str) -> Iterable[tuple[int, tuple]]:
    """Yield ``(row_index, values)`` for every non-empty data row."""

    sheet = workbook[sheet_name]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield row_idx, raw


def _write_row(sheet: Worksheet, row_index: int, values: Sequence[object]) -> None:
    for column_index, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column_index, value=value)


def _upsert_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, values: Sequence[object]) -> bool:
    """Overwrite the row keyed by ``key_value`` or append a new one.

    Returns ``True`` when a new row was appended.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    sheet = workbook[sheet_name]
    if row_index is None:
        sheet.append(list(values))
        return True
    _write_row(sheet, row_index, values)
    return False


def _delete_rows(sheet: Worksheet, row_indices: Iterable[int]) -> int:
    """Delete rows bottom-up so earlier indices stay valid."""

    ordered = sorted(set(row_indices), reverse=True)
    for row_index in ordered:
        sheet.delete_rows(row_index)
    return len(ordered)


def _column_index(sheet_name: str, column: str) -> int:
    """Return the 0-based position of ``column`` in the sheet schema."""

    return list(SHEET_COLUMNS[sheet_name]).index(column)


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def to_money(raw: object) -> Decimal:
    """Coerce a cell value into a currency :class:`~decimal.Decimal`.

    Blank cells become ``0.00``. Values are quantized to two places so that
    repeated save/load cycles never drift.
    """

    if raw is None or raw == "":
        return ZERO_MONEY
    try:
        return Decimal(str(raw)).quantize(MONEY_QUANTUM)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid monetary value: {raw!r}") from exc


def to_units(raw: object) -> int:
    """Coerce a cell value into a whole number of units."""

    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def to_date(raw: object) -> date:
    """Coerce an ISO string (or a date/datetime cell) into a :class:`date`."""

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw))


def _optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None and raw != "" else None


# ---------------------------------------------------------------------------
# Shops and products
# ---------------------------------------------------------------------------


def iter_shops(workbook: Workbook) -> Iterable[ShopRow]:
    """Iterate over shop records stored on the ``Shops`` worksheet."""

    for _, raw in _iter_records(workbook, SHOPS_SHEET):
        yield ShopRow(shop_id=str(raw[0]), shop_name=str(raw[1] or ""))


def append_shop(workbook: Workbook, record: ShopRow) -> None:
    """Append a shop record to the ``Shops`` worksheet."""

    workbook[SHOPS_SHEET].append([record.shop_id, record.shop_name])


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    Each non-empty row is converted into a :class:`ProductRow` via
    :func:`deserialize_product`.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    for _, raw in _iter_records(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Args:
        workbook (Workbook): Workbook containing the products sheet.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")

    sheet = workbook[PRODUCTS_SHEET]
    headers = header_map(sheet)
    for column, value in field_values.items():
        if column not in headers:
            raise KeyError(f"Unknown product field: {column}")
        sheet.cell(row=row_index, column=headers[column], value=value)


# ---------------------------------------------------------------------------
# Stock lines
# ---------------------------------------------------------------------------


def stock_line_id(shop_id: str, entry_date: date, product_id: str) -> str:
    """Build the surrogate identifier for a stock line."""

    return f"{shop_id}:{entry_date.isoformat()}:{product_id}"


def find_stock_lines(workbook: Workbook, shop_id: str, entry_date: date) -> List[StockLineRow]:
    """Return every stock line recorded for ``(shop_id, entry_date)``.

    Args:
        workbook (Workbook): Workbook containing the ``StockLines`` sheet.
        shop_id (str): Shop whose lines should be returned.
        entry_date (date): Ledger date to filter on.

    Returns:
        list[StockLineRow]: Lines in sheet order; empty when the shop-day has
            not been opened yet.
    """

    shop_col = _column_index(STOCK_LINES_SHEET, "ShopID")
    date_col = _column_index(STOCK_LINES_SHEET, "EntryDate")
    wanted_date = entry_date.isoformat()
    return [
        deserialize_stock_line(raw)
        for _, raw in _iter_records(workbook, STOCK_LINES_SHEET)
        if str(raw[shop_col]) == shop_id and str(raw[date_col]) == wanted_date
    ]


def find_stock_line(workbook: Workbook, shop_id: str, entry_date: date, product_id: str) -> Optional[StockLineRow]:
    """Return the single stock line for a product on a shop-day, if any."""

    row_index = locate_row(
        workbook,
        STOCK_LINES_SHEET,
        "LineID",
        stock_line_id(shop_id, entry_date, product_id),
    )
    if row_index is None:
        return None
    raw = next(workbook[STOCK_LINES_SHEET].iter_rows(min_row=row_index, max_row=row_index, values_only=True))
    return deserialize_stock_line(raw)


def upsert_stock_lines(workbook: Workbook, records: Sequence[StockLineRow]) -> int:
    """Insert or overwrite a batch of stock lines keyed by ``line_id``.

    The sheet's line identifiers are indexed once for the whole batch so large
    shop-days cost a single scan rather than one per product.

    Args:
        workbook (Workbook): Workbook containing the ``StockLines`` sheet.
        records (Sequence[StockLineRow]): Lines to persist.

    Returns:
        int: Number of lines that were newly appended.
    """

    sheet = workbook[STOCK_LINES_SHEET]
    id_col = _column_index(STOCK_LINES_SHEET, "LineID")
    index = {str(raw[id_col]): row_idx for row_idx, raw in _iter_records(workbook, STOCK_LINES_SHEET)}

    inserted = 0
    for record in records:
        values = serialize_stock_line(record)
        row_index = index.get(record.line_id)
        if row_index is None:
            sheet.append(values)
            index[record.line_id] = sheet.max_row
            inserted += 1
        else:
            _write_row(sheet, row_index, values)
    log.debug("Upserted %d stock lines (%d inserted)", len(records), inserted)
    return inserted


# ---------------------------------------------------------------------------
# Cash ledgers and digital payments
# ---------------------------------------------------------------------------


def cash_ledger_id(shop_id: str, entry_date: date) -> str:
    """Build the surrogate identifier for a cash ledger."""

    return f"{shop_id}:{entry_date.isoformat()}"


def _digital_payments_index(workbook: Workbook) -> Dict[str, Dict[str, Decimal]]:
    index: Dict[str, Dict[str, Decimal]] = {}
    for _, raw in _iter_records(workbook, DIGITAL_PAYMENTS_SHEET):
        ledger_id, channel, amount = raw[0], raw[1], raw[2]
        index.setdefault(str(ledger_id), {})[str(channel)] = to_money(amount)
    return index


def find_cash_ledger(workbook: Workbook, shop_id: str, entry_date: date) -> Optional[CashLedgerRow]:
    """Return the cash ledger for ``(shop_id, entry_date)`` with its digital payments.

    Returns:
        CashLedgerRow | None: Hydrated ledger, or ``None`` when the shop-day has
            no ledger yet.
    """

    ledger_id = cash_ledger_id(shop_id, entry_date)
    row_index = locate_row(workbook, CASH_LEDGERS_SHEET, "LedgerID", ledger_id)
    if row_index is None:
        return None
    raw = next(workbook[CASH_LEDGERS_SHEET].iter_rows(min_row=row_index, max_row=row_index, values_only=True))
    digital = _digital_payments_index(workbook).get(ledger_id, {})
    return deserialize_cash_ledger(raw, digital_payments=digital)


def iter_cash_ledgers(workbook: Workbook) -> Iterable[CashLedgerRow]:
    """Stream every cash ledger in sheet order, digital payments included."""

    digital = _digital_payments_index(workbook)
    for _, raw in _iter_records(workbook, CASH_LEDGERS_SHEET):
        ledger_id = str(raw[0])
        yield deserialize_cash_ledger(raw, digital_payments=digital.get(ledger_id, {}))


def upsert_cash_ledger(workbook: Workbook, record: CashLedgerRow) -> None:
    """Insert or overwrite a cash ledger and replace its digital payment rows.

    Args:
        workbook (Workbook): Workbook containing the ledger sheets.
        record (CashLedgerRow): Ledger snapshot to persist.
    """

    created = _upsert_row(
        workbook,
        CASH_LEDGERS_SHEET,
        "LedgerID",
        record.ledger_id,
        serialize_cash_ledger(record),
    )

    sheet = workbook[DIGITAL_PAYMENTS_SHEET]
    stale = [row_idx for row_idx, raw in _iter_records(workbook, DIGITAL_PAYMENTS_SHEET) if str(raw[0]) == record.ledger_id]
    _delete_rows(sheet, stale)
    for channel, amount in record.digital_payments.items():
        sheet.append([record.ledger_id, channel, amount])
    log.debug("%s cash ledger '%s'", "Inserted" if created else "Updated", record.ledger_id)


# ---------------------------------------------------------------------------
# Extra transactions
# ---------------------------------------------------------------------------


def find_extra_transactions(workbook: Workbook, ledger_id: str) -> List[ExtraTransactionRow]:
    """Return the income/expense rows attached to ``ledger_id``."""

    return [
        ExtraTransactionRow(
            transaction_type=str(raw[1]),
            description=str(raw[2] or ""),
            amount=to_money(raw[3]),
        )
        for _, raw in _iter_records(workbook, EXTRA_TRANSACTIONS_SHEET)
        if str(raw[0]) == ledger_id
    ]


def replace_extra_transactions(workbook: Workbook, ledger_id: str, records: Sequence[ExtraTransactionRow]) -> None:
    """Replace every extra transaction of ``ledger_id`` with ``records``.

    An empty ``records`` sequence clears the ledger's extra transactions.
    """

    sheet = workbook[EXTRA_TRANSACTIONS_SHEET]
    stale = [row_idx for row_idx, raw in _iter_records(workbook, EXTRA_TRANSACTIONS_SHEET) if str(raw[0]) == ledger_id]
    removed = _delete_rows(sheet, stale)
    for record in records:
        sheet.append([ledger_id, record.transaction_type, record.description, record.amount])
    log.debug(
        "Replaced extra transactions for '%s' (%d removed, %d written)",
        ledger_id,
        removed,
        len(records),
    )


# ---------------------------------------------------------------------------
# Credit entries and debtors
# ---------------------------------------------------------------------------


def find_credit_entries(workbook: Workbook, shop_id: str, entry_date: date) -> List[CreditEntryRow]:
    """Return the credit sales recorded for a shop-day.

    Raises:
        SubsystemNotConfigured: If the credit sheets are absent.
    """

    _require_credit_subsystem(workbook)
    wanted_date = entry_date.isoformat()
    return [
        CreditEntryRow(person_name=str(raw[2]), amount=to_money(raw[3]))
        for _, raw in _iter_records(workbook, CREDIT_ENTRIES_SHEET)
        if str(raw[0]) == shop_id and str(raw[1]) == wanted_date
    ]


def iter_credit_history(workbook: Workbook, shop_id: str) -> Iterable[tuple[date, CreditEntryRow]]:
    """Yield ``(entry_date, entry)`` for every credit entry of ``shop_id``."""

    _require_credit_subsystem(workbook)
    for _, raw in _iter_records(workbook, CREDIT_ENTRIES_SHEET):
        if str(raw[0]) == shop_id:
            yield to_date(raw[1]), CreditEntryRow(person_name=str(raw[2]), amount=to_money(raw[3]))


def upsert_credit_entries(workbook: Workbook, shop_id: str, entry_date: date, records: Sequence[CreditEntryRow]) -> None:
    """Replace the credit entries of a shop-day with ``records``.

    Raises:
        SubsystemNotConfigured: If the credit sheets are absent.
    """

    _require_credit_subsystem(workbook)
    sheet = workbook[CREDIT_ENTRIES_SHEET]
    wanted_date = entry_date.isoformat()
    stale = [
        row_idx
        for row_idx, raw in _iter_records(workbook, CREDIT_ENTRIES_SHEET)
        if str(raw[0]) == shop_id and str(raw[1]) == wanted_date
    ]
    _delete_rows(sheet, stale)
    for record in records:
        sheet.append([shop_id, wanted_date, record.person_name, record.amount])


def iter_debtors(workbook: Workbook, shop_id: Optional[str] = None) -> Iterable[DebtorRow]:
    """Iterate over registered debtors, optionally restricted to one shop."""

    _require_credit_subsystem(workbook)
    for _, raw in _iter_records(workbook, DEBTORS_SHEET):
        record = DebtorRow(shop_id=str(raw[0]), person_name=str(raw[1]))
        if shop_id is None or record.shop_id == shop_id:
            yield record


def upsert_debtor(workbook: Workbook, shop_id: str, person_name: str) -> bool:
    """Register ``person_name`` for ``shop_id`` unless already present.

    Names are matched case-insensitively after trimming whitespace.

    Returns:
        bool: ``True`` when a new debtor row was appended.
    """

    _require_credit_subsystem(workbook)
    normalized = person_name.strip()
    for existing in iter_debtors(workbook, shop_id):
        if existing.person_name.strip().casefold() == normalized.casefold():
            return False
    workbook[DEBTORS_SHEET].append([shop_id, normalized])
    return True


# ---------------------------------------------------------------------------
# Approval requests
# ---------------------------------------------------------------------------


def generate_request_id(prefix: str = "AR") -> str:
    """Generate a unique approval request identifier."""

    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def create_approval_request(workbook: Workbook, record: ApprovalRequestRow) -> str:
    """Append an approval request and return its identifier."""

    workbook[APPROVAL_REQUESTS_SHEET].append(serialize_approval_request(record))
    return record.request_id


def find_approval_request(workbook: Workbook, request_id: str) -> Optional[ApprovalRequestRow]:
    """Return the approval request with ``request_id`` if it exists."""

    row_index = locate_row(workbook, APPROVAL_REQUESTS_SHEET, "RequestID", request_id)
    if row_index is None:
        return None
    raw = next(workbook[APPROVAL_REQUESTS_SHEET].iter_rows(min_row=row_index, max_row=row_index, values_only=True))
    return deserialize_approval_request(raw)


def iter_approval_requests(workbook: Workbook) -> Iterable[ApprovalRequestRow]:
    """Stream approval requests in creation order."""

    for _, raw in _iter_records(workbook, APPROVAL_REQUESTS_SHEET):
        yield deserialize_approval_request(raw)


def resolve_approval_request(workbook: Workbook, request_id: str, status: str, *, resolved_at: str) -> None:
    """Set the status and resolution timestamp of an approval request.

    Raises:
        KeyError: If no request carries ``request_id``.
    """

    row_index = locate_row(workbook, APPROVAL_REQUESTS_SHEET, "RequestID", request_id)
    if row_index is None:
        raise KeyError(f"Approval request not found: {request_id}")
    sheet = workbook[APPROVAL_REQUESTS_SHEET]
    headers = header_map(sheet)
    sheet.cell(row=row_index, column=headers["Status"], value=status)
    sheet.cell(row=row_index, column=headers["ResolvedAt"], value=resolved_at)


# ---------------------------------------------------------------------------
# PDF archive index
# ---------------------------------------------------------------------------


def append_pdf_archive(workbook: Workbook, record: PdfArchiveRow) -> None:
    """Append an entry to the PDF archive index."""

    workbook[PDF_ARCHIVES_SHEET].append(
        [
            record.shop_id,
            record.entry_date.isoformat(),
            record.file_path,
            record.file_name,
            record.month_year,
            record.created_at,
        ]
    )


def iter_pdf_archives(workbook: Workbook) -> Iterable[PdfArchiveRow]:
    """Stream the PDF archive index."""

    for _, raw in _iter_records(workbook, PDF_ARCHIVES_SHEET):
        yield PdfArchiveRow(
            shop_id=str(raw[0]),
            entry_date=to_date(raw[1]),
            file_path=str(raw[2]),
            file_name=str(raw[3]),
            month_year=str(raw[4]),
            created_at=str(raw[5]),
        )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.shop_id,
        record.brand_name,
        record.product_type,
        record.size_ml,
        record.mrp,
        record.is_active,
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifiers and names are coerced to ``str`` to avoid surprises caused by
    Excel interpreting numbers, and the MRP becomes a currency Decimal.
    """

    product_id, shop_id, brand_name, product_type, size_ml, mrp, is_active = raw_row[:7]
    return ProductRow(
        product_id=str(product_id),
        shop_id=str(shop_id),
        brand_name=str(brand_name or ""),
        product_type=str(product_type or ""),
        size_ml=to_units(size_ml),
        mrp=to_money(mrp),
        is_active=bool(is_active),
    )


def serialize_stock_line(record: StockLineRow) -> list[object]:
    """Convert a stock line into the ``StockLines`` column order."""

    return [
        record.line_id,
        record.shop_id,
        record.product_id,
        record.entry_date.isoformat(),
        record.opening_stock,
        record.purchases,
        record.transfer,
        record.closing_stock,
        record.sold_qty,
        record.sale_value,
        record.closing_stock_value,
    ]


def deserialize_stock_line(raw_row: Sequence[object]) -> StockLineRow:
    """Convert a raw worksheet row into a :class:`StockLineRow`."""

    (
        line_id,
        shop_id,
        product_id,
        entry_date,
        opening_stock,
        purchases,
        transfer,
        closing_stock,
        sold_qty,
        sale_value,
        closing_stock_value,
    ) = raw_row[:11]
    return StockLineRow(
        line_id=str(line_id),
        shop_id=str(shop_id),
        product_id=str(product_id),
        entry_date=to_date(entry_date),
        opening_stock=to_units(opening_stock),
        purchases=to_units(purchases),
        transfer=to_units(transfer),
        closing_stock=to_units(closing_stock),
        sold_qty=to_units(sold_qty),
        sale_value=to_money(sale_value),
        closing_stock_value=to_money(closing_stock_value),
    )


def serialize_cash_ledger(record: CashLedgerRow) -> list[object]:
    """Convert a cash ledger into the ``CashLedgers`` column order.

    Digital payments live on their own sheet and are written by
    :func:`upsert_cash_ledger`.
    """

    return [
        record.ledger_id,
        record.shop_id,
        record.entry_date.isoformat(),
        record.counter_opening,
        *[record.denominations.get(face, 0) for face in DENOMINATIONS],
        record.coins,
        record.bank_deposit,
        record.cash_to_house,
        record.total_sale_value,
        record.physical_cash,
        record.total_digital,
        record.total_extra_income,
        record.total_expenses,
        record.total_credit,
        record.total_amount,
        record.counter_closing,
        record.cash_difference,
        record.cash_status,
        record.total_bottles_sold,
        record.is_locked,
        record.is_approved,
        record.unlock_requested,
        record.locked_at,
        record.approved_at,
    ]


def deserialize_cash_ledger(raw_row: Sequence[object], *, digital_payments: Optional[Dict[str, Decimal]] = None) -> CashLedgerRow:
    """Convert a raw ``CashLedgers`` row into a :class:`CashLedgerRow`.

    Columns are addressed by name through the shared schema so the denomination
    block can grow without reshuffling positional unpacking.
    """

    columns = list(SHEET_COLUMNS[CASH_LEDGERS_SHEET])
    values = dict(zip(columns, raw_row))
    denominations = {face: to_units(values.get(f"Denom{face}")) for face in DENOMINATIONS}
    return CashLedgerRow(
        ledger_id=str(values["LedgerID"]),
        shop_id=str(values["ShopID"]),
        entry_date=to_date(values["EntryDate"]),
        counter_opening=to_money(values.get("CounterOpening")),
        denominations=denominations,
        coins=to_money(values.get("Coins")),
        digital_payments=dict(digital_payments or {}),
        bank_deposit=to_money(values.get("BankDeposit")),
        cash_to_house=to_money(values.get("CashToHouse")),
        total_sale_value=to_money(values.get("TotalSaleValue")),
        physical_cash=to_money(values.get("PhysicalCash")),
        total_digital=to_money(values.get("TotalDigital")),
        total_extra_income=to_money(values.get("TotalExtraIncome")),
        total_expenses=to_money(values.get("TotalExpenses")),
        total_credit=to_money(values.get("TotalCredit")),
        total_amount=to_money(values.get("TotalAmount")),
        counter_closing=to_money(values.get("CounterClosing")),
        cash_difference=to_money(values.get("CashDifference")),
        cash_status=str(values.get("CashStatus") or CashStatus.BALANCED.value),
        total_bottles_sold=to_units(values.get("TotalBottlesSold")),
        is_locked=bool(values.get("IsLocked")),
        is_approved=bool(values.get("IsApproved")),
        unlock_requested=bool(values.get("UnlockRequested")),
        locked_at=_optional_text(values.get("LockedAt")),
        approved_at=_optional_text(values.get("ApprovedAt")),
    )


def serialize_approval_request(record: ApprovalRequestRow) -> list[object]:
    """Convert an approval request into the ``ApprovalRequests`` column order."""

    return [
        record.request_id,
        record.shop_id,
        record.entry_date.isoformat(),
        record.request_type,
        record.requested_by,
        record.status,
        record.created_at,
        record.resolved_at,
    ]


def deserialize_approval_request(raw_row: Sequence[object]) -> ApprovalRequestRow:
    """Convert a raw worksheet row into an :class:`ApprovalRequestRow`."""

    request_id, shop_id, entry_date, request_type, requested_by, status, created_at, resolved_at = raw_row[:8]
    return ApprovalRequestRow(
        request_id=str(request_id),
        shop_id=str(shop_id),
        entry_date=to_date(entry_date),
        request_type=str(request_type),
        requested_by=str(requested_by or ""),
        status=str(status),
        created_at=str(created_at or ""),
        resolved_at=_optional_text(resolved_at),
    )
