"""Business logic layer for the wine shop ledger.

This module owns the daily ledger workflow: opening a shop-day (including the
carry-forward of stock and counter cash from the previous day), applying edits
through a pure reducer, persisting the reconciled snapshot, and driving the
lock/approval state machine. It consumes the Data Access Layer (DAL) for all
I/O and the pure calculators for every derived figure.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from openpyxl.workbook import Workbook

from . import calculations, data_manager, log
from .constants import (
    DENOMINATIONS,
    EXPECTED_SCHEMA_VERSION,
    ZERO_MONEY,
    CashDeduction,
    ExtraTransactionType,
    LedgerState,
    RequestStatus,
    RequestType,
    Role,
    StockField,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced shop, product, ledger or request is unknown."""


class PermissionDeniedError(BusinessRuleViolation):
    """Raised when the acting role may not perform the requested action."""


class InvalidTransitionError(BusinessRuleViolation):
    """Raised when the ledger's lock state does not allow the requested action."""


@dataclass(frozen=True)
class RolloverFailure:
    """A single carry-forward row that could not be applied.

    ``product_id`` is ``None`` when the failure concerns the cash ledger.
    """

    product_id: Optional[str]
    reason: str


class RolloverError(BusinessRuleViolation):
    """Raised when a finalizing action finds carry-forward failures."""

    def __init__(self, failures: Sequence[RolloverFailure]):
        self.failures = tuple(failures)
        subjects = ", ".join(failure.product_id or "cash ledger" for failure in self.failures)
        super().__init__(f"Carry-forward failed for {len(self.failures)} row(s): {subjects}")


class LedgerInvariantError(RuntimeError):
    """Raised when stored ledger flags report approval without a lock."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class Actor:
    """The user performing an action, supplied by the presentation layer."""

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class SessionPreferences:
    """Per-session choices that would otherwise live in ambient UI state."""

    selected_shop_id: Optional[str] = None


@dataclass(frozen=True)
class RolloverResult:
    """Outcome of a carry-forward run."""

    applied: bool
    updated: int = 0
    created: int = 0
    failures: tuple[RolloverFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class ShopDay:
    """Immutable working copy of one shop-day.

    Instances are only produced by :func:`build_shop_day`, which recomputes
    every derived field in one pass, so ``ledger`` totals and ``result`` always
    agree with the inputs they were derived from.
    """

    ledger: data_manager.CashLedgerRow
    stock_lines: tuple[data_manager.StockLineRow, ...]
    extra_transactions: tuple[data_manager.ExtraTransactionRow, ...]
    credit_entries: tuple[data_manager.CreditEntryRow, ...]
    prices: Mapping[str, Decimal]
    result: calculations.ReconciliationResult
    credit_available: bool = True
    carry_forward: Optional[RolloverResult] = None

    @property
    def shop_id(self) -> str:
        return self.ledger.shop_id

    @property
    def entry_date(self) -> date:
        return self.ledger.entry_date

    @property
    def state(self) -> LedgerState:
        return ledger_state(self.ledger)


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after mutating registry sheets."""

    if not names:
        return
    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def _ensure_shops_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "shops")
    if "all" not in bucket:
        all_shops = list(data_manager.iter_shops(context.workbook))
        bucket["all"] = all_shops
        bucket["by_id"] = {shop.shop_id: shop for shop in all_shops}
        log.debug("Populated shops cache with %d entries", len(all_shops))
    return bucket


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` products and a ``by_id``
            lookup dictionary.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )
    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""

    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def credit_entries_available(context: RuntimeContext) -> bool:
    """Return ``True`` when the credit subsystem is both enabled and present."""

    return context.settings.credit_entries_enabled and data_manager.credit_subsystem_available(context.workbook)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a user-entered monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """

    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_nonnegative_units(units: int) -> None:
    """Validate that a user-entered count is a nonnegative whole number.

    Raises:
        ValueError: If ``units`` is negative.
    """

    if units < 0:
        log.error("Unit count validation failed: %s", units)
        raise ValueError("Count must be zero or positive")


def _require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        log.warning("User '%s' (%s) attempted admin action '%s'", actor.user_id, actor.role.value, action)
        raise PermissionDeniedError(f"Only an admin may {action}")


# ---------------------------------------------------------------------------
# Shops, products and session preferences
# ---------------------------------------------------------------------------


def list_shops(context: RuntimeContext) -> List[data_manager.ShopRow]:
    """Return every registered shop in sheet order."""

    return list(_ensure_shops_cache(context)["all"])


def get_shop(context: RuntimeContext, shop_id: str) -> data_manager.ShopRow:
    """Resolve a shop by identifier.

    Raises:
        MissingReferenceError: If ``shop_id`` is not registered.
    """

    try:
        return _ensure_shops_cache(context)["by_id"][shop_id]
    except KeyError as exc:
        log.warning("Shop lookup failed for id '%s'", shop_id)
        raise MissingReferenceError(f"Unknown shop id: {shop_id}") from exc


def add_shop(context: RuntimeContext, shop_id: str, shop_name: str) -> data_manager.ShopRow:
    """Register a new shop.

    Raises:
        BusinessRuleViolation: If ``shop_id`` is already registered.
    """

    if shop_id in _ensure_shops_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Shop '{shop_id}' already exists")
    record = data_manager.ShopRow(shop_id=shop_id, shop_name=shop_name)
    data_manager.append_shop(context.workbook, record)
    _invalidate_cache(context, "shops")
    log.info("Registered shop '%s' (%s)", shop_id, shop_name)
    return record


def list_products(
    context: RuntimeContext,
    *,
    shop_id: Optional[str] = None,
    include_inactive: bool = False,
) -> List[data_manager.ProductRow]:
    """Return cached product rows, optionally for one shop and/or active only.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        shop_id (str | None): Restrict the listing to one shop's catalogue.
        include_inactive (bool): When ``True`` the result includes products
            that are no longer stocked.

    Returns:
        list[data_manager.ProductRow]: Products in sheet order.
    """

    return [
        product
        for product in _ensure_products_cache(context)["all"]
        if (shop_id is None or product.shop_id == shop_id) and (include_inactive or product.is_active)
    ]


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """

    try:
        return _ensure_products_cache(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def add_product(
    context: RuntimeContext,
    *,
    product_id: str,
    shop_id: str,
    brand_name: str,
    product_type: str,
    size_ml: int,
    mrp: Decimal,
    is_active: bool = True,
) -> data_manager.ProductRow:
    """Add a product to a shop's catalogue.

    Raises:
        MissingReferenceError: If ``shop_id`` is unknown.
        BusinessRuleViolation: If ``product_id`` already exists.
        ValueError: If the size or MRP is negative.
    """

    get_shop(context, shop_id)
    if product_id in _ensure_products_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")
    require_nonnegative_units(size_ml)
    require_nonnegative_money(mrp)

    record = data_manager.ProductRow(
        product_id=product_id,
        shop_id=shop_id,
        brand_name=brand_name,
        product_type=product_type,
        size_ml=size_ml,
        mrp=calculations.money(mrp),
        is_active=is_active,
    )
    data_manager.append_product(context.workbook, record)
    _invalidate_cache(context, "products")
    log.info("Registered product '%s' for shop '%s' (mrp=%s)", product_id, shop_id, record.mrp)
    return record


def set_product_active(context: RuntimeContext, product_id: str, is_active: bool) -> None:
    """Toggle whether new shop-days get a stock line for ``product_id``."""

    get_product(context, product_id)
    data_manager.update_product(context.workbook, product_id, field_values={"IsActive": is_active})
    _invalidate_cache(context, "products")
    log.info("Set product '%s' active=%s", product_id, is_active)


def resolve_shop_selection(context: RuntimeContext, preferences: SessionPreferences) -> str:
    """Pick the shop a session should work on.

    The remembered shop wins while it is still registered; otherwise the first
    registered shop, and finally the configured default shop.
    """

    shops = _ensure_shops_cache(context)
    if preferences.selected_shop_id and preferences.selected_shop_id in shops["by_id"]:
        return preferences.selected_shop_id
    if shops["all"]:
        return shops["all"][0].shop_id
    return context.settings.default_shop_id


def remember_shop(preferences: SessionPreferences, shop_id: str) -> SessionPreferences:
    """Return preferences that select ``shop_id`` on the next visit.

    Args:
        preferences (SessionPreferences): Current session preferences.
        shop_id (str): Shop the user just selected.

    Returns:
        SessionPreferences: Updated copy; the input is left untouched.
    """

    return replace(preferences, selected_shop_id=shop_id)


# ---------------------------------------------------------------------------
# Ledger state
# ---------------------------------------------------------------------------


def ledger_state(ledger: data_manager.CashLedgerRow) -> LedgerState:
    """Derive the lock/approval state from a ledger's stored flags.

    Raises:
        LedgerInvariantError: If the ledger is approved without being locked.
    """

    if ledger.is_approved and not ledger.is_locked:
        log.error("Ledger '%s' is approved but not locked", ledger.ledger_id)
        raise LedgerInvariantError(f"Ledger '{ledger.ledger_id}' is approved but not locked")
    if ledger.is_approved:
        return LedgerState.APPROVED
    if ledger.is_locked:
        return LedgerState.LOCKED_PENDING
    return LedgerState.OPEN


def _require_ledger(context: RuntimeContext, shop_id: str, entry_date: date) -> data_manager.CashLedgerRow:
    ledger = data_manager.find_cash_ledger(context.workbook, shop_id, entry_date)
    if ledger is None:
        log.warning("No cash ledger for shop '%s' on %s", shop_id, entry_date)
        raise MissingReferenceError(f"Shop-day not opened: {shop_id} {entry_date.isoformat()}")
    return ledger


def _store_ledger_flags(context: RuntimeContext, ledger: data_manager.CashLedgerRow) -> LedgerState:
    """Persist a ledger after a transition, asserting the lock invariant first."""

    state = ledger_state(ledger)
    data_manager.upsert_cash_ledger(context.workbook, ledger)
    return state


# ---------------------------------------------------------------------------
# ShopDay reducer
# ---------------------------------------------------------------------------


def _line_price(prices: Mapping[str, Decimal], product_id: str) -> Decimal:
    try:
        return prices[product_id]
    except KeyError as exc:
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def build_shop_day(
    ledger: data_manager.CashLedgerRow,
    stock_lines: Sequence[data_manager.StockLineRow],
    extra_transactions: Sequence[data_manager.ExtraTransactionRow],
    credit_entries: Sequence[data_manager.CreditEntryRow],
    prices: Mapping[str, Decimal],
    *,
    credit_available: bool = True,
    carry_forward: Optional[RolloverResult] = None,
) -> ShopDay:
    """Recompute every derived field of a shop-day in one deterministic pass.

    Stock lines are refreshed from their movements, the cash engine reconciles
    the whole day, and the resulting totals are copied onto the ledger. Stored
    derived values on the inputs are ignored.

    Raises:
        MissingReferenceError: If a stock line references an unpriced product.
    """

    lines = tuple(
        calculations.refresh_stock_line(line, _line_price(prices, line.product_id))
        for line in stock_lines
    )
    extras = tuple(extra_transactions)
    credits = tuple(credit_entries)
    result = calculations.reconcile(ledger, lines, extras, credits)
    return ShopDay(
        ledger=calculations.apply_reconciliation(ledger, result),
        stock_lines=lines,
        extra_transactions=extras,
        credit_entries=credits,
        prices=dict(prices),
        result=result,
        credit_available=credit_available,
        carry_forward=carry_forward,
    )


def _rebuild(day: ShopDay, **changes: Any) -> ShopDay:
    state = {
        "ledger": day.ledger,
        "stock_lines": day.stock_lines,
        "extra_transactions": day.extra_transactions,
        "credit_entries": day.credit_entries,
    }
    state.update(changes)
    return build_shop_day(
        prices=day.prices,
        credit_available=day.credit_available,
        carry_forward=day.carry_forward,
        **state,
    )


def edit_stock_line(day: ShopDay, product_id: str, edited_field: Union[StockField, str], value: int) -> ShopDay:
    """Set purchases, transfer or closing stock for one product.

    Raises:
        MissingReferenceError: If the day has no line for ``product_id``.
        ValueError: If ``value`` is negative or the field is not editable.
    """

    require_nonnegative_units(value)
    for index, line in enumerate(day.stock_lines):
        if line.product_id == product_id:
            edited = calculations.apply_stock_edit(line, edited_field, value, _line_price(day.prices, product_id))
            lines = day.stock_lines[:index] + (edited,) + day.stock_lines[index + 1:]
            return _rebuild(day, stock_lines=lines)
    raise MissingReferenceError(f"No stock line for product '{product_id}' on {day.entry_date.isoformat()}")


def set_denomination(day: ShopDay, face_value: int, count: int) -> ShopDay:
    """Record how many notes of ``face_value`` were counted.

    Raises:
        ValueError: If the face value is not a known denomination or the count
            is negative.
    """

    if face_value not in DENOMINATIONS:
        raise ValueError(f"Unknown denomination: {face_value}")
    require_nonnegative_units(count)
    denominations = dict(day.ledger.denominations)
    denominations[face_value] = count
    return _rebuild(day, ledger=replace(day.ledger, denominations=denominations))


def set_coins(day: ShopDay, amount: Decimal) -> ShopDay:
    """Set the loose-coin amount counted alongside the notes.

    Raises:
        ValueError: If ``amount`` is negative.
    """

    require_nonnegative_money(amount)
    return _rebuild(day, ledger=replace(day.ledger, coins=calculations.money(amount)))


def set_digital_payment(day: ShopDay, channel: str, amount: Decimal) -> ShopDay:
    """Set the amount received through one named digital channel."""

    require_nonnegative_money(amount)
    payments = dict(day.ledger.digital_payments)
    payments[channel] = calculations.money(amount)
    return _rebuild(day, ledger=replace(day.ledger, digital_payments=payments))


def set_cash_deduction(day: ShopDay, deduction: Union[CashDeduction, str], amount: Decimal) -> ShopDay:
    """Set the bank deposit or the cash handed to the owner."""

    kind = CashDeduction(deduction)
    require_nonnegative_money(amount)
    return _rebuild(day, ledger=replace(day.ledger, **{kind.value: calculations.money(amount)}))


def add_extra_transaction(
    day: ShopDay,
    transaction_type: Union[ExtraTransactionType, str],
    description: str,
    amount: Decimal,
) -> ShopDay:
    """Append an ad-hoc income or expense to the day.

    Args:
        day (ShopDay): Working copy of the day.
        transaction_type (ExtraTransactionType | str): ``income`` or ``expense``.
        description (str): Free-text note shown on the ledger.
        amount (Decimal): Non-negative amount.

    Returns:
        ShopDay: The recomputed day.

    Raises:
        ValueError: If the type is unknown or the amount negative.
    """

    kind = ExtraTransactionType(transaction_type)
    require_nonnegative_money(amount)
    entry = data_manager.ExtraTransactionRow(
        transaction_type=kind.value,
        description=description,
        amount=calculations.money(amount),
    )
    return _rebuild(day, extra_transactions=day.extra_transactions + (entry,))


def remove_extra_transaction(day: ShopDay, index: int) -> ShopDay:
    """Drop the extra transaction at ``index``.

    Raises:
        MissingReferenceError: If no transaction exists at that position.
    """

    if not 0 <= index < len(day.extra_transactions):
        raise MissingReferenceError(f"No extra transaction at position {index}")
    extras = day.extra_transactions[:index] + day.extra_transactions[index + 1:]
    return _rebuild(day, extra_transactions=extras)


def add_credit_entry(day: ShopDay, person_name: str, amount: Decimal) -> ShopDay:
    """Record goods given on credit to ``person_name``.

    Raises:
        BusinessRuleViolation: If the credit subsystem is not available.
        ValueError: If the name is blank or the amount negative.
    """

    if not day.credit_available:
        raise BusinessRuleViolation("Credit entries are not configured for this workbook")
    name = person_name.strip()
    if not name:
        raise ValueError("Person name must not be blank")
    require_nonnegative_money(amount)
    entry = data_manager.CreditEntryRow(person_name=name, amount=calculations.money(amount))
    return _rebuild(day, credit_entries=day.credit_entries + (entry,))


def remove_credit_entry(day: ShopDay, index: int) -> ShopDay:
    """Drop the credit entry at ``index``.

    Raises:
        MissingReferenceError: If no credit entry exists at that position.
    """

    if not 0 <= index < len(day.credit_entries):
        raise MissingReferenceError(f"No credit entry at position {index}")
    credits = day.credit_entries[:index] + day.credit_entries[index + 1:]
    return _rebuild(day, credit_entries=credits)


# ---------------------------------------------------------------------------
# Loading and saving shop-days
# ---------------------------------------------------------------------------


def _prices(context: RuntimeContext) -> Dict[str, Decimal]:
    return {product.product_id: product.mrp for product in _ensure_products_cache(context)["all"]}


def _load_credit_entries(context: RuntimeContext, shop_id: str, entry_date: date) -> List[data_manager.CreditEntryRow]:
    """Read credit entries, degrading to an empty list when unavailable."""

    if not context.settings.credit_entries_enabled:
        log.debug("Credit entries disabled by configuration")
        return []
    try:
        return data_manager.find_credit_entries(context.workbook, shop_id, entry_date)
    except data_manager.SubsystemNotConfigured as exc:
        log.warning("Credit entries unavailable, continuing without them: %s", exc)
        return []


def load_shop_day(context: RuntimeContext, shop_id: str, entry_date: date) -> ShopDay:
    """Load a previously opened shop-day and recompute its derived fields.

    Raises:
        MissingReferenceError: If the shop-day has no cash ledger yet.
    """

    ledger = _require_ledger(context, shop_id, entry_date)
    return build_shop_day(
        ledger,
        data_manager.find_stock_lines(context.workbook, shop_id, entry_date),
        data_manager.find_extra_transactions(context.workbook, ledger.ledger_id),
        _load_credit_entries(context, shop_id, entry_date),
        _prices(context),
        credit_available=credit_entries_available(context),
    )


def _new_stock_line(shop_id: str, entry_date: date, product_id: str, opening: int, mrp: Decimal) -> data_manager.StockLineRow:
    line = data_manager.StockLineRow(
        line_id=data_manager.stock_line_id(shop_id, entry_date, product_id),
        shop_id=shop_id,
        product_id=product_id,
        entry_date=entry_date,
        opening_stock=opening,
        closing_stock=opening,
    )
    return calculations.refresh_stock_line(line, mrp)


def _new_cash_ledger(context: RuntimeContext, shop_id: str, entry_date: date, counter_opening: Decimal) -> data_manager.CashLedgerRow:
    return data_manager.CashLedgerRow(
        ledger_id=data_manager.cash_ledger_id(shop_id, entry_date),
        shop_id=shop_id,
        entry_date=entry_date,
        counter_opening=calculations.money(counter_opening),
        digital_payments={channel: ZERO_MONEY for channel in context.settings.digital_channels},
    )


def _seed_opening(line: data_manager.StockLineRow, opening: int, mrp: Decimal) -> data_manager.StockLineRow:
    """Set a line's opening stock from the previous day's closing stock.

    A line nobody has touched yet also gets its closing stock initialized to
    the opening so that its sold quantity starts at zero; an edited line keeps
    its counted closing stock.
    """

    untouched = (
        line.purchases == 0
        and line.transfer == 0
        and line.opening_stock - line.closing_stock == 0
    )
    closing = opening if untouched else line.closing_stock
    return calculations.refresh_stock_line(replace(line, opening_stock=opening, closing_stock=closing), mrp)


def _store_snapshot(context: RuntimeContext, shop_id: str, entry_date: date) -> None:
    """Rewrite the derived stock and cash figures of an unlocked shop-day."""

    day = load_shop_day(context, shop_id, entry_date)
    if day.ledger.is_locked:
        return
    data_manager.upsert_stock_lines(context.workbook, day.stock_lines)
    data_manager.upsert_cash_ledger(context.workbook, day.ledger)


def open_shop_day(context: RuntimeContext, shop_id: str, entry_date: date) -> ShopDay:
    """Prepare a shop-day for display and editing.

    The previous day's balances are carried forward first, then any active
    product still lacking a line gets a zero row and a missing cash ledger is
    created. Locked days are returned as stored.

    Returns:
        ShopDay: Reconciled working copy; ``carry_forward`` holds the outcome
            of the backward carry-forward, including any per-row failures.

    Raises:
        MissingReferenceError: If ``shop_id`` is unknown.
    """

    get_shop(context, shop_id)
    rollover = carry_forward(context, shop_id, entry_date)
    if rollover.failures:
        log.error(
            "Carry-forward into %s for shop '%s' left %d failure(s)",
            entry_date.isoformat(),
            shop_id,
            len(rollover.failures),
        )

    ledger = data_manager.find_cash_ledger(context.workbook, shop_id, entry_date)
    if ledger is None or not ledger.is_locked:
        existing = {line.product_id for line in data_manager.find_stock_lines(context.workbook, shop_id, entry_date)}
        fresh = [
            _new_stock_line(shop_id, entry_date, product.product_id, 0, product.mrp)
            for product in list_products(context, shop_id=shop_id)
            if product.product_id not in existing
        ]
        if fresh:
            data_manager.upsert_stock_lines(context.workbook, fresh)
            log.info("Created %d zero stock lines for shop '%s' on %s", len(fresh), shop_id, entry_date.isoformat())
        if ledger is None:
            data_manager.upsert_cash_ledger(context.workbook, _new_cash_ledger(context, shop_id, entry_date, ZERO_MONEY))
            log.info("Created cash ledger for shop '%s' on %s", shop_id, entry_date.isoformat())
        _store_snapshot(context, shop_id, entry_date)

    return replace(load_shop_day(context, shop_id, entry_date), carry_forward=rollover)


def save_shop_day(context: RuntimeContext, day: ShopDay, actor: Actor) -> ShopDay:
    """Persist the reconciled snapshot of ``day``.

    Workflow flags and the counter opening always come from the stored ledger,
    never from the draft. Credit entries are written only when the credit
    subsystem is available; otherwise the save continues without them.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        day (ShopDay): Working copy produced by the reducer functions.
        actor (Actor): User performing the save.

    Returns:
        ShopDay: The day as persisted.

    Raises:
        MissingReferenceError: If the shop-day was never opened.
        InvalidTransitionError: If staff save a locked day, or anyone saves an
            approved day.
    """

    stored = _require_ledger(context, day.shop_id, day.entry_date)
    state = ledger_state(stored)
    if state == LedgerState.APPROVED or (state == LedgerState.LOCKED_PENDING and not actor.is_admin):
        log.warning(
            "User '%s' attempted to save %s ledger '%s'",
            actor.user_id,
            state.value,
            stored.ledger_id,
        )
        raise InvalidTransitionError(f"Ledger '{stored.ledger_id}' is {state.value} and cannot be edited")

    ledger = replace(
        day.ledger,
        counter_opening=stored.counter_opening,
        is_locked=stored.is_locked,
        is_approved=stored.is_approved,
        unlock_requested=stored.unlock_requested,
        locked_at=stored.locked_at,
        approved_at=stored.approved_at,
    )
    saved = _rebuild(day, ledger=ledger)

    data_manager.upsert_stock_lines(context.workbook, saved.stock_lines)
    data_manager.upsert_cash_ledger(context.workbook, saved.ledger)
    data_manager.replace_extra_transactions(context.workbook, saved.ledger.ledger_id, saved.extra_transactions)

    if credit_entries_available(context):
        data_manager.upsert_credit_entries(context.workbook, saved.shop_id, saved.entry_date, saved.credit_entries)
        for entry in saved.credit_entries:
            data_manager.upsert_debtor(context.workbook, saved.shop_id, entry.person_name)
    elif saved.credit_entries:
        log.warning(
            "Credit subsystem unavailable; %d credit entries for '%s' were not saved",
            len(saved.credit_entries),
            saved.ledger.ledger_id,
        )

    log.info(
        "Saved shop-day '%s' by '%s' (sale=%s, counter_closing=%s, status=%s %s)",
        saved.ledger.ledger_id,
        actor.user_id,
        saved.result.total_sale_value,
        saved.result.counter_closing,
        saved.result.cash_status.value,
        saved.result.status_amount,
    )
    return saved


# ---------------------------------------------------------------------------
# Carry-forward
# ---------------------------------------------------------------------------


def carry_forward(context: RuntimeContext, shop_id: str, target_date: date) -> RolloverResult:
    """Seed ``target_date`` from the previous day's closing balances.

    Safe to call repeatedly: once any target line holds an opening stock, or
    the target day is locked, the call is a no-op returning ``applied=False``.
    A missing previous day is treated as a first day and is not an error.
    Individual stock lines that cannot be carried are collected as failures
    without aborting the others.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        shop_id (str): Shop whose day is being opened.
        target_date (date): Day receiving the opening balances.

    Returns:
        RolloverResult: Whether anything was applied, counts of updated and
            created rows, and any per-row failures.
    """

    target_ledger = data_manager.find_cash_ledger(context.workbook, shop_id, target_date)
    if target_ledger is not None and target_ledger.is_locked:
        log.debug("Skipping carry-forward into locked day %s for '%s'", target_date.isoformat(), shop_id)
        return RolloverResult(applied=False)

    target_lines = {
        line.product_id: line
        for line in data_manager.find_stock_lines(context.workbook, shop_id, target_date)
    }
    if any(line.opening_stock > 0 for line in target_lines.values()):
        log.debug("Shop '%s' already carried forward into %s", shop_id, target_date.isoformat())
        return RolloverResult(applied=False)

    previous_date = target_date - timedelta(days=1)
    previous_lines = data_manager.find_stock_lines(context.workbook, shop_id, previous_date)
    previous_ledger = data_manager.find_cash_ledger(context.workbook, shop_id, previous_date)
    if not previous_lines and previous_ledger is None:
        log.info("No data for shop '%s' on %s; treating %s as a first day", shop_id, previous_date.isoformat(), target_date.isoformat())
        return RolloverResult(applied=False)

    prices = _prices(context)
    pending: List[data_manager.StockLineRow] = []
    failures: List[RolloverFailure] = []
    updated = created = 0
    for source in previous_lines:
        try:
            mrp = _line_price(prices, source.product_id)
            existing = target_lines.get(source.product_id)
            if existing is None:
                pending.append(_new_stock_line(shop_id, target_date, source.product_id, source.closing_stock, mrp))
                created += 1
            elif existing.opening_stock == 0:
                pending.append(_seed_opening(existing, source.closing_stock, mrp))
                updated += 1
        except (BusinessRuleViolation, KeyError, ValueError) as exc:
            log.error("Carry-forward failed for product '%s': %s", source.product_id, exc)
            failures.append(RolloverFailure(product_id=source.product_id, reason=str(exc)))

    if pending:
        data_manager.upsert_stock_lines(context.workbook, pending)

    if previous_ledger is not None and previous_ledger.counter_closing > 0:
        if target_ledger is None:
            data_manager.upsert_cash_ledger(
                context.workbook,
                _new_cash_ledger(context, shop_id, target_date, previous_ledger.counter_closing),
            )
            created += 1
        elif target_ledger.counter_opening == 0:
            data_manager.upsert_cash_ledger(
                context.workbook,
                replace(target_ledger, counter_opening=previous_ledger.counter_closing),
            )
            updated += 1

    if data_manager.find_cash_ledger(context.workbook, shop_id, target_date) is not None:
        _store_snapshot(context, shop_id, target_date)

    log.info(
        "Carried forward shop '%s' from %s into %s (updated=%d, created=%d, failures=%d)",
        shop_id,
        previous_date.isoformat(),
        target_date.isoformat(),
        updated,
        created,
        len(failures),
    )
    return RolloverResult(applied=True, updated=updated, created=created, failures=tuple(failures))


def roll_forward(context: RuntimeContext, shop_id: str, entry_date: date) -> RolloverResult:
    """Push ``entry_date``'s closing balances into the following day.

    Unlike :func:`carry_forward` this runs unconditionally: next-day lines are
    matched by product and updated in place, missing ones are created, and the
    next day's counter opening is overwritten. If the next day is already
    locked, any value that would change is reported as a failure instead.

    Returns:
        RolloverResult: Counts and failures; ``applied`` is always ``True``.
    """

    next_date = entry_date + timedelta(days=1)
    next_ledger = data_manager.find_cash_ledger(context.workbook, shop_id, next_date)
    next_locked = next_ledger is not None and next_ledger.is_locked
    next_lines = {
        line.product_id: line
        for line in data_manager.find_stock_lines(context.workbook, shop_id, next_date)
    }

    prices = _prices(context)
    pending: List[data_manager.StockLineRow] = []
    failures: List[RolloverFailure] = []
    updated = created = 0
    for source in data_manager.find_stock_lines(context.workbook, shop_id, entry_date):
        try:
            mrp = _line_price(prices, source.product_id)
            existing = next_lines.get(source.product_id)
            if existing is None:
                candidate = _new_stock_line(shop_id, next_date, source.product_id, source.closing_stock, mrp)
            else:
                candidate = _seed_opening(existing, source.closing_stock, mrp)
                if candidate == existing:
                    continue
            if next_locked:
                raise InvalidTransitionError(f"{next_date.isoformat()} is locked")
            pending.append(candidate)
            if existing is None:
                created += 1
            else:
                updated += 1
        except (BusinessRuleViolation, KeyError, ValueError) as exc:
            log.error("Roll-forward failed for product '%s': %s", source.product_id, exc)
            failures.append(RolloverFailure(product_id=source.product_id, reason=str(exc)))

    if pending:
        data_manager.upsert_stock_lines(context.workbook, pending)

    source_ledger = data_manager.find_cash_ledger(context.workbook, shop_id, entry_date)
    if source_ledger is not None:
        closing = source_ledger.counter_closing
        if next_ledger is None:
            data_manager.upsert_cash_ledger(context.workbook, _new_cash_ledger(context, shop_id, next_date, closing))
            created += 1
        elif next_ledger.counter_opening != closing:
            if next_locked:
                log.error("Roll-forward cannot update counter opening of locked day %s", next_date.isoformat())
                failures.append(RolloverFailure(product_id=None, reason=f"{next_date.isoformat()} is locked"))
            else:
                data_manager.upsert_cash_ledger(context.workbook, replace(next_ledger, counter_opening=closing))
                updated += 1

    if not next_locked and data_manager.find_cash_ledger(context.workbook, shop_id, next_date) is not None:
        _store_snapshot(context, shop_id, next_date)

    log.info(
        "Rolled shop '%s' forward from %s into %s (updated=%d, created=%d, failures=%d)",
        shop_id,
        entry_date.isoformat(),
        next_date.isoformat(),
        updated,
        created,
        len(failures),
    )
    return RolloverResult(applied=True, updated=updated, created=created, failures=tuple(failures))


def _roll_forward_or_fail(context: RuntimeContext, shop_id: str, entry_date: date) -> RolloverResult:
    result = roll_forward(context, shop_id, entry_date)
    if result.failures:
        log.error("Refusing to lock '%s' on %s after roll-forward failures", shop_id, entry_date.isoformat())
        raise RolloverError(result.failures)
    return result


# ---------------------------------------------------------------------------
# Lock/approval state machine
# ---------------------------------------------------------------------------


def _open_requests(
    context: RuntimeContext,
    shop_id: str,
    entry_date: date,
) -> List[data_manager.ApprovalRequestRow]:
    return [
        request
        for request in data_manager.iter_approval_requests(context.workbook)
        if request.shop_id == shop_id
        and request.entry_date == entry_date
        and request.status == RequestStatus.PENDING.value
    ]


def _create_request(
    context: RuntimeContext,
    ledger: data_manager.CashLedgerRow,
    request_type: RequestType,
    actor: Actor,
    when: datetime,
) -> data_manager.ApprovalRequestRow:
    request = data_manager.ApprovalRequestRow(
        request_id=data_manager.generate_request_id(),
        shop_id=ledger.shop_id,
        entry_date=ledger.entry_date,
        request_type=request_type.value,
        requested_by=actor.user_id,
        status=RequestStatus.PENDING.value,
        created_at=when.isoformat(),
    )
    data_manager.create_approval_request(context.workbook, request)
    log.info(
        "Created %s request '%s' for '%s' by '%s'",
        request_type.value,
        request.request_id,
        ledger.ledger_id,
        actor.user_id,
    )
    return request


def _resolve(context: RuntimeContext, request_id: str, status: RequestStatus, when: datetime) -> data_manager.ApprovalRequestRow:
    data_manager.resolve_approval_request(context.workbook, request_id, status.value, resolved_at=when.isoformat())
    resolved = data_manager.find_approval_request(context.workbook, request_id)
    if resolved is None:
        raise MissingReferenceError(f"Unknown approval request: {request_id}")
    return resolved


def _settle_open_requests(
    context: RuntimeContext,
    shop_id: str,
    entry_date: date,
    when: datetime,
    *,
    lock_outcome: RequestStatus,
    unlock_outcome: RequestStatus,
) -> None:
    """Resolve every request still pending for a shop-day after an admin transition."""

    for request in _open_requests(context, shop_id, entry_date):
        outcome = lock_outcome if request.request_type == RequestType.LOCK.value else unlock_outcome
        _resolve(context, request.request_id, outcome, when)


def _unlocked(ledger: data_manager.CashLedgerRow) -> data_manager.CashLedgerRow:
    return replace(ledger, is_locked=False, is_approved=False, unlock_requested=False, approved_at=None)


def lock_and_submit(
    context: RuntimeContext,
    day: ShopDay,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ApprovalRequestRow:
    """Save an open day, roll it forward, lock it and ask an admin to approve.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        day (ShopDay): Final working copy of the day.
        actor (Actor): User locking the day.
        timestamp (datetime | None): Lock time; defaults to now (UTC).

    Returns:
        data_manager.ApprovalRequestRow: The pending lock request.

    Raises:
        InvalidTransitionError: If the day is not OPEN.
        RolloverError: If the next day could not be fully seeded. The day is
            left unlocked and no request is created.
    """

    stored = _require_ledger(context, day.shop_id, day.entry_date)
    if ledger_state(stored) != LedgerState.OPEN:
        raise InvalidTransitionError(f"Ledger '{stored.ledger_id}' is already locked")

    save_shop_day(context, day, actor)
    _roll_forward_or_fail(context, day.shop_id, day.entry_date)

    when = _resolve_timestamp(timestamp)
    locked = replace(
        _require_ledger(context, day.shop_id, day.entry_date),
        is_locked=True,
        locked_at=when.isoformat(),
    )
    state = _store_ledger_flags(context, locked)
    log.info("Ledger '%s' locked by '%s' -> %s", locked.ledger_id, actor.user_id, state.value)
    return _create_request(context, locked, RequestType.LOCK, actor, when)


def request_unlock(
    context: RuntimeContext,
    shop_id: str,
    entry_date: date,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ApprovalRequestRow:
    """Ask an admin to reopen a locked day.

    Raises:
        InvalidTransitionError: If the day is open or already has an unlock
            request outstanding.
    """

    ledger = _require_ledger(context, shop_id, entry_date)
    if ledger_state(ledger) == LedgerState.OPEN:
        raise InvalidTransitionError(f"Ledger '{ledger.ledger_id}' is not locked")
    if ledger.unlock_requested:
        raise InvalidTransitionError(f"Unlock already requested for '{ledger.ledger_id}'")

    when = _resolve_timestamp(timestamp)
    flagged = replace(ledger, unlock_requested=True)
    _store_ledger_flags(context, flagged)
    return _create_request(context, flagged, RequestType.UNLOCK, actor, when)


def _pending_request(context: RuntimeContext, request_id: str) -> data_manager.ApprovalRequestRow:
    request = data_manager.find_approval_request(context.workbook, request_id)
    if request is None:
        log.warning("Approval request lookup failed for id '%s'", request_id)
        raise MissingReferenceError(f"Unknown approval request: {request_id}")
    if request.status != RequestStatus.PENDING.value:
        raise InvalidTransitionError(f"Request '{request_id}' is already {request.status}")
    return request


def approve_request(
    context: RuntimeContext,
    request_id: str,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ApprovalRequestRow:
    """Approve a pending lock or unlock request.

    A lock approval finalizes a LOCKED_PENDING day. An unlock approval returns
    the day to OPEN and rejects any lock request still waiting for the day.

    Returns:
        data_manager.ApprovalRequestRow: The resolved request.

    Raises:
        PermissionDeniedError: If ``actor`` is not an admin.
        MissingReferenceError: If the request or its ledger is unknown.
        InvalidTransitionError: If the request is not pending or the ledger is
            not in a state the request applies to.
    """

    _require_admin(actor, "approve requests")
    request = _pending_request(context, request_id)
    ledger = _require_ledger(context, request.shop_id, request.entry_date)
    state = ledger_state(ledger)
    when = _resolve_timestamp(timestamp)

    if request.request_type == RequestType.LOCK.value:
        if state != LedgerState.LOCKED_PENDING:
            raise InvalidTransitionError(f"Ledger '{ledger.ledger_id}' is {state.value}, not awaiting approval")
        updated = replace(ledger, is_approved=True, approved_at=when.isoformat())
    else:
        if state == LedgerState.OPEN:
            raise InvalidTransitionError(f"Ledger '{ledger.ledger_id}' is not locked")
        updated = _unlocked(ledger)

    new_state = _store_ledger_flags(context, updated)
    resolved = _resolve(context, request_id, RequestStatus.APPROVED, when)
    if request.request_type == RequestType.UNLOCK.value:
        _settle_open_requests(
            context,
            request.shop_id,
            request.entry_date,
            when,
            lock_outcome=RequestStatus.REJECTED,
            unlock_outcome=RequestStatus.APPROVED,
        )
    log.info(
        "Admin '%s' approved %s request '%s'; ledger '%s' -> %s",
        actor.user_id,
        request.request_type,
        request_id,
        ledger.ledger_id,
        new_state.value,
    )
    return resolved


def reject_request(
    context: RuntimeContext,
    request_id: str,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ApprovalRequestRow:
    """Reject a pending request.

    Rejecting a lock request leaves the day LOCKED_PENDING; only a direct
    admin unlock reopens it. Rejecting an unlock request clears the day's
    unlock flag.

    Raises:
        PermissionDeniedError: If ``actor`` is not an admin.
        MissingReferenceError: If the request is unknown.
        InvalidTransitionError: If the request is not pending.
    """

    _require_admin(actor, "reject requests")
    request = _pending_request(context, request_id)
    when = _resolve_timestamp(timestamp)

    if request.request_type == RequestType.UNLOCK.value:
        ledger = _require_ledger(context, request.shop_id, request.entry_date)
        _store_ledger_flags(context, replace(ledger, unlock_requested=False))

    resolved = _resolve(context, request_id, RequestStatus.REJECTED, when)
    log.info("Admin '%s' rejected %s request '%s'", actor.user_id, request.request_type, request_id)
    return resolved


def unlock_directly(
    context: RuntimeContext,
    shop_id: str,
    entry_date: date,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.CashLedgerRow:
    """Reopen a locked day without a pending request.

    Outstanding lock requests for the day are resolved as rejected and unlock
    requests as approved.

    Raises:
        PermissionDeniedError: If ``actor`` is not an admin.
        InvalidTransitionError: If the day is already open.
    """

    _require_admin(actor, "unlock a ledger")
    ledger = _require_ledger(context, shop_id, entry_date)
    if ledger_state(ledger) == LedgerState.OPEN:
        raise InvalidTransitionError(f"Ledger '{ledger.ledger_id}' is not locked")

    when = _resolve_timestamp(timestamp)
    reopened = _unlocked(ledger)
    _store_ledger_flags(context, reopened)
    _settle_open_requests(
        context,
        shop_id,
        entry_date,
        when,
        lock_outcome=RequestStatus.REJECTED,
        unlock_outcome=RequestStatus.APPROVED,
    )
    log.info("Admin '%s' unlocked ledger '%s'", actor.user_id, ledger.ledger_id)
    return reopened


def approve_and_lock(
    context: RuntimeContext,
    day: ShopDay,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.CashLedgerRow:
    """Save, roll forward, lock and approve a day in one admin step.

    Any pending lock request for the day is resolved as approved and any
    pending unlock request as rejected.

    Returns:
        data_manager.CashLedgerRow: The approved ledger.

    Raises:
        PermissionDeniedError: If ``actor`` is not an admin.
        InvalidTransitionError: If the day is already approved.
        RolloverError: If the next day could not be fully seeded. The day is
            left in its previous state.
    """

    _require_admin(actor, "approve and lock a ledger")
    save_shop_day(context, day, actor)
    _roll_forward_or_fail(context, day.shop_id, day.entry_date)

    when = _resolve_timestamp(timestamp)
    ledger = _require_ledger(context, day.shop_id, day.entry_date)
    approved = replace(
        ledger,
        is_locked=True,
        is_approved=True,
        unlock_requested=False,
        locked_at=ledger.locked_at or when.isoformat(),
        approved_at=when.isoformat(),
    )
    _store_ledger_flags(context, approved)
    _settle_open_requests(
        context,
        day.shop_id,
        day.entry_date,
        when,
        lock_outcome=RequestStatus.APPROVED,
        unlock_outcome=RequestStatus.REJECTED,
    )
    log.info("Admin '%s' approved and locked ledger '%s'", actor.user_id, approved.ledger_id)
    return approved
