"""Enumerations and schema definitions shared across the wine ledger modules.

Centralises domain constants so that the record store, the pure calculators,
the business logic layer and the CLI rely on a single source of truth for
sheet names, column layouts, cash denominations and workflow states.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Currency notes counted at the counter, highest first. Coins are captured as a
# direct amount rather than a count.
DENOMINATIONS: tuple[int, ...] = (500, 200, 100, 50, 20, 10)

DEFAULT_DIGITAL_CHANNELS: tuple[str, ...] = ("Digital Payments",)

MONEY_QUANTUM = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the record store."""

    SHOPS = "Shops"
    PRODUCTS = "Products"
    STOCK_LINES = "StockLines"
    CASH_LEDGERS = "CashLedgers"
    DIGITAL_PAYMENTS = "DigitalPayments"
    EXTRA_TRANSACTIONS = "ExtraTransactions"
    CREDIT_ENTRIES = "CreditEntries"
    DEBTORS = "Debtors"
    APPROVAL_REQUESTS = "ApprovalRequests"
    PDF_ARCHIVES = "PdfArchives"


class ExtraTransactionType(str, Enum):
    """Direction of an ad-hoc cash movement recorded against a ledger."""

    INCOME = "income"
    EXPENSE = "expense"


class CashStatus(str, Enum):
    """Classification of counted cash against the expected counter closing."""

    BALANCED = "BALANCED"
    EXCESS = "EXCESS"
    SHORTAGE = "SHORTAGE"


class LedgerState(str, Enum):
    """Lock/approval state of a single shop-day."""

    OPEN = "OPEN"
    LOCKED_PENDING = "LOCKED_PENDING"
    APPROVED = "APPROVED"


class RequestType(str, Enum):
    """Kinds of approval requests staff can raise."""

    LOCK = "lock"
    UNLOCK = "unlock"


class RequestStatus(str, Enum):
    """Lifecycle of an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Role(str, Enum):
    """Roles that may act on a ledger."""

    STAFF = "staff"
    ADMIN = "admin"


class StockField(str, Enum):
    """Stock line fields a user may edit directly."""

    PURCHASES = "purchases"
    TRANSFER = "transfer"
    CLOSING_STOCK = "closing_stock"


class CashDeduction(str, Enum):
    """Cash removed from the counter during the day."""

    BANK_DEPOSIT = "bank_deposit"
    CASH_TO_HOUSE = "cash_to_house"


def denomination_column(face_value: int) -> str:
    """Return the CashLedgers column that stores the count for ``face_value``."""

    return f"Denom{face_value}"


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.SHOPS.value: ["ShopID", "ShopName"],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ShopID",
        "BrandName",
        "ProductType",
        "SizeMl",
        "MRP",
        "IsActive",
    ],
    SheetName.STOCK_LINES.value: [
        "LineID",
        "ShopID",
        "ProductID",
        "EntryDate",
        "OpeningStock",
        "Purchases",
        "Transfer",
        "ClosingStock",
        "SoldQty",
        "SaleValue",
        "ClosingStockValue",
    ],
    SheetName.CASH_LEDGERS.value: [
        "LedgerID",
        "ShopID",
        "EntryDate",
        "CounterOpening",
        *[denomination_column(face) for face in DENOMINATIONS],
        "Coins",
        "BankDeposit",
        "CashToHouse",
        "TotalSaleValue",
        "PhysicalCash",
        "TotalDigital",
        "TotalExtraIncome",
        "TotalExpenses",
        "TotalCredit",
        "TotalAmount",
        "CounterClosing",
        "CashDifference",
        "CashStatus",
        "TotalBottlesSold",
        "IsLocked",
        "IsApproved",
        "UnlockRequested",
        "LockedAt",
        "ApprovedAt",
    ],
    SheetName.DIGITAL_PAYMENTS.value: ["LedgerID", "Channel", "Amount"],
    SheetName.EXTRA_TRANSACTIONS.value: [
        "LedgerID",
        "TransactionType",
        "Description",
        "Amount",
    ],
    SheetName.CREDIT_ENTRIES.value: ["ShopID", "EntryDate", "PersonName", "Amount"],
    SheetName.DEBTORS.value: ["ShopID", "PersonName"],
    SheetName.APPROVAL_REQUESTS.value: [
        "RequestID",
        "ShopID",
        "EntryDate",
        "RequestType",
        "RequestedBy",
        "Status",
        "CreatedAt",
        "ResolvedAt",
    ],
    SheetName.PDF_ARCHIVES.value: [
        "ShopID",
        "EntryDate",
        "FilePath",
        "FileName",
        "MonthYear",
        "CreatedAt",
    ],
}

# Sheets that belong to the optional credit/debtor subsystem.
CREDIT_SHEETS: tuple[str, ...] = (
    SheetName.CREDIT_ENTRIES.value,
    SheetName.DEBTORS.value,
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DENOMINATIONS",
    "DEFAULT_DIGITAL_CHANNELS",
    "MONEY_QUANTUM",
    "ZERO_MONEY",
    "SheetName",
    "ExtraTransactionType",
    "CashStatus",
    "LedgerState",
    "RequestType",
    "RequestStatus",
    "Role",
    "StockField",
    "CashDeduction",
    "denomination_column",
    "SHEET_COLUMNS",
    "CREDIT_SHEETS",
]
