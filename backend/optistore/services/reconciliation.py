"""
Reconciliation engine: the canonical money math for an order card.

Two sources of truth exist for the payment figures:
- COMPUTED: derived here from line items and raw advance inputs.
- FROM_STORE: total_advance and balance as generated by the store.

A FinancialSnapshot is always tagged with the source it came from so the two
paths are never conflated. A record loaded from the store keeps passing the
store's values through until the user edits a field that feeds them; from
then on it is COMPUTED for the rest of the edit session.

All money is Decimal, rounded to 2 places (ROUND_HALF_UP) at every derived
step, the same way numeric(10,2) generated columns round.
"""
import logging
from dataclasses import dataclass, replace, fields
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Parse a money/percent input. Anything malformed resolves to 0."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    try:
        text = str(value).strip().replace(",", "")
        if not text:
            return ZERO
        d = Decimal(text)
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    return d if d.is_finite() else ZERO


def money2(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


# ----------------------------
# Line items
# ----------------------------
def classify_item(item_code: str | None, item_name: str | None) -> str:
    """Frames / Sun Glasses / Lens / Other from the code prefix, then the name."""
    code = (item_code or "").upper()
    if code.startswith("FRM"):
        return "Frames"
    if code.startswith("SUN"):
        return "Sun Glasses"
    if code.startswith("LEN"):
        return "Lens"

    name = (item_name or "").lower()
    if "frame" in name:
        return "Frames"
    if "sun" in name or "glass" in name:
        return "Sun Glasses"
    if "lens" in name:
        return "Lens"
    return "Other"


@dataclass(frozen=True)
class LineItem:
    """One line of an order card. Immutable; edits return a new LineItem."""
    item_name: str = ""
    rate: Decimal = ZERO
    qty: Decimal = Decimal("1")
    tax_percent: Decimal = ZERO
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    item_code: str = ""
    item_type: str | None = None
    si: int = 0
    brand_name: str | None = None
    lens_index: str | None = None
    coating: str | None = None

    def __post_init__(self):
        # Inputs arrive as form strings; coerce once so every derived value is Decimal
        for name in ("rate", "qty", "tax_percent", "discount_percent", "discount_amount"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        if not self.item_type:
            object.__setattr__(self, "item_type", classify_item(self.item_code, self.item_name))

    @property
    def base_total(self) -> Decimal:
        return self.rate * self.qty

    @property
    def tax_amount(self) -> Decimal:
        return self.base_total * self.tax_percent / HUNDRED

    @property
    def tax_inclusive_total(self) -> Decimal:
        return self.base_total + self.tax_amount

    @property
    def amount(self) -> Decimal:
        """rate*qty + tax - discount, the value persisted as order_items.amount."""
        return money2(self.tax_inclusive_total - self.discount_amount)


def line_item_from_row(row: Any) -> LineItem:
    """Build a LineItem from an OrderItem row (or anything with the same attributes)."""
    return LineItem(
        item_name=row.item_name or "",
        rate=row.rate,
        qty=row.qty,
        tax_percent=row.tax_percent,
        discount_percent=row.discount_percent,
        discount_amount=row.discount_amount,
        item_code=row.item_code or "",
        item_type=row.item_type,
        si=row.si or 0,
        brand_name=row.brand_name,
        lens_index=row.lens_index,
        coating=row.coating,
    )


def set_discount_percent(item: LineItem, percent: Any) -> LineItem:
    """Edit the percent; the amount follows from rate*qty (tax excluded)."""
    base = item.base_total
    if base <= ZERO:
        return replace(item, discount_percent=ZERO, discount_amount=ZERO)
    pct = _clamp(to_decimal(percent), ZERO, HUNDRED)
    return replace(
        item,
        discount_percent=money2(pct),
        discount_amount=money2(base * pct / HUNDRED),
    )


def set_discount_amount(item: LineItem, amount: Any) -> LineItem:
    """Edit the amount (capped at rate*qty); the percent follows."""
    base = item.base_total
    if base <= ZERO:
        return replace(item, discount_percent=ZERO, discount_amount=ZERO)
    value = _clamp(to_decimal(amount), ZERO, base)
    return replace(
        item,
        discount_amount=money2(value),
        discount_percent=money2(value / base * HUNDRED),
    )


def _with_share(item: LineItem, share: Decimal) -> LineItem:
    # Shares are weighted on the tax-inclusive total and may exceed rate*qty
    base = item.base_total
    percent = _clamp(share / base * HUNDRED, ZERO, HUNDRED) if base > ZERO else ZERO
    return replace(item, discount_amount=money2(share), discount_percent=money2(percent))


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def distribute_discount(
    items: Iterable[LineItem],
    value: Any,
    kind: DiscountKind | str = DiscountKind.FIXED,
) -> list[LineItem]:
    """
    Spread one order-level discount across items, pro-rata by each item's
    tax-inclusive total. Zero-total items get nothing. Rounding residue goes
    to the item with the largest share so the shares add up to the discount.
    """
    items = list(items)
    value = to_decimal(value)
    total = sum((i.tax_inclusive_total for i in items), ZERO)
    if value <= ZERO or total <= ZERO:
        return items

    if DiscountKind(kind) is DiscountKind.PERCENTAGE:
        discount = money2(total * min(value, HUNDRED) / HUNDRED)
    else:
        discount = money2(min(value, total))

    shares = [
        money2(discount * i.tax_inclusive_total / total) if i.tax_inclusive_total > ZERO else ZERO
        for i in items
    ]
    residue = discount - sum(shares, ZERO)
    if residue:
        largest = max(range(len(shares)), key=lambda idx: shares[idx])
        shares[largest] += residue

    return [_with_share(item, share) for item, share in zip(items, shares)]


# ----------------------------
# Snapshots
# ----------------------------
class SnapshotSource(str, Enum):
    COMPUTED = "computed"
    FROM_STORE = "from_store"


@dataclass(frozen=True)
class AdvanceInputs:
    """Raw advance fields as typed at the counter."""
    cash: Decimal = ZERO
    card_upi: Decimal = ZERO
    other: Decimal = ZERO

    def __post_init__(self):
        for name in ("cash", "card_upi", "other"):
            object.__setattr__(self, name, money2(getattr(self, name)))

    @property
    def total(self) -> Decimal:
        return self.cash + self.card_upi + self.other


@dataclass(frozen=True)
class FinancialSnapshot:
    source: SnapshotSource
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    payment_estimate: Decimal
    final_amount: Decimal
    advance_cash: Decimal
    advance_card_upi: Decimal
    advance_other: Decimal
    total_advance: Decimal
    balance: Decimal
    schedule_amount: Decimal = ZERO

    def as_display(self) -> dict[str, str]:
        """Two-decimal strings for every money field, keyed by field name."""
        return {
            f.name: f"{getattr(self, f.name):.2f}"
            for f in fields(self)
            if f.name != "source"
        }


def _get(stored: Any, name: str) -> Any:
    if isinstance(stored, Mapping):
        return stored.get(name)
    return getattr(stored, name, None)


def snapshot_from_payment(stored: Any) -> FinancialSnapshot:
    """
    FROM_STORE snapshot: every value is taken as stored, including the
    generated total_advance and balance. Nothing is recomputed.
    """
    estimate = money2(_get(stored, "payment_estimate"))
    tax = money2(_get(stored, "tax_amount"))
    return FinancialSnapshot(
        source=SnapshotSource.FROM_STORE,
        subtotal=estimate - tax,
        tax_amount=tax,
        discount_amount=money2(_get(stored, "discount_amount")),
        payment_estimate=estimate,
        final_amount=money2(_get(stored, "final_amount")),
        advance_cash=money2(_get(stored, "advance_cash")),
        advance_card_upi=money2(_get(stored, "advance_card_upi")),
        advance_other=money2(_get(stored, "advance_other")),
        total_advance=money2(_get(stored, "total_advance")),
        balance=money2(_get(stored, "balance")),
        schedule_amount=money2(_get(stored, "schedule_amount")),
    )


def reconcile(
    items: Iterable[LineItem],
    advances: AdvanceInputs | None = None,
    source: SnapshotSource = SnapshotSource.COMPUTED,
    stored: Any = None,
    schedule_amount: Any = None,
) -> FinancialSnapshot:
    """
    Produce the canonical FinancialSnapshot.

    COMPUTED: subtotal = sum(rate*qty); tax = sum(rate*qty*tax%/100);
    discount = sum of per-item discount amounts; estimate = subtotal + tax;
    final = estimate - discount; advance = cash + card/UPI + other;
    balance = max(0, final - advance). schedule_amount defaults to the
    discount total, as on the printed card.

    FROM_STORE: `stored` (an OrderPayment row or mapping) is passed through
    unchanged; items and advances are ignored.
    """
    if SnapshotSource(source) is SnapshotSource.FROM_STORE:
        if stored is None:
            raise ValueError("A stored payment is required for a from_store snapshot")
        return snapshot_from_payment(stored)

    items = list(items)
    advances = advances or AdvanceInputs()

    subtotal = money2(sum((i.base_total for i in items), ZERO))
    tax = money2(sum((i.tax_amount for i in items), ZERO))
    discount = money2(sum((money2(i.discount_amount) for i in items), ZERO))
    estimate = subtotal + tax
    final = estimate - discount
    total_advance = advances.total
    balance = max(ZERO, final - total_advance)

    return FinancialSnapshot(
        source=SnapshotSource.COMPUTED,
        subtotal=subtotal,
        tax_amount=tax,
        discount_amount=discount,
        payment_estimate=estimate,
        final_amount=final,
        advance_cash=advances.cash,
        advance_card_upi=advances.card_upi,
        advance_other=advances.other,
        total_advance=total_advance,
        balance=balance,
        schedule_amount=discount if schedule_amount is None else money2(schedule_amount),
    )


def payment_fields(snapshot: FinancialSnapshot) -> dict[str, Decimal]:
    """The writable order_payments columns. Generated columns are never included."""
    return {
        "payment_estimate": snapshot.payment_estimate,
        "tax_amount": snapshot.tax_amount,
        "discount_amount": snapshot.discount_amount,
        "final_amount": snapshot.final_amount,
        "advance_cash": snapshot.advance_cash,
        "advance_card_upi": snapshot.advance_card_upi,
        "advance_other": snapshot.advance_other,
        "schedule_amount": snapshot.schedule_amount,
    }


def expected_generated(snapshot: FinancialSnapshot) -> dict[str, Decimal]:
    """total_advance and balance as the raw fields of `snapshot` imply them."""
    total_advance = snapshot.advance_cash + snapshot.advance_card_upi + snapshot.advance_other
    return {
        "total_advance": money2(total_advance),
        "balance": money2(max(ZERO, snapshot.final_amount - total_advance)),
    }


def verify_generated_columns(expected: FinancialSnapshot, stored: Any) -> dict[str, tuple[Decimal, Decimal]]:
    """
    Compare the store's generated total_advance/balance with what the raw
    fields imply. Returns {field: (expected, actual)} for every mismatch of a
    cent or more. Mismatches are reported, never patched over.
    """
    drift = {}
    for name, want in expected_generated(expected).items():
        got = money2(_get(stored, name))
        if abs(want - got) >= CENT:
            drift[name] = (want, got)
    if drift:
        logger.warning(f"Generated payment columns drifted from computed values: {drift}")
    return drift


# ----------------------------
# Edit session
# ----------------------------
@dataclass
class ItemRemoval:
    item: LineItem
    history_recorded: bool
    warning: str | None = None


class OrderEditSession:
    """
    Carries the snapshot tag through one edit of an order card.

    Loaded records start as FROM_STORE and stay that way (sticky) until a
    contributing field (items, discounts, advances) is edited; the session
    then computes for the rest of its life. Header-only edits never flip it.
    """

    def __init__(
        self,
        items: Iterable[LineItem] = (),
        advances: AdvanceInputs | None = None,
        stored: Any = None,
        schedule_amount: Any = None,
    ):
        self.items: list[LineItem] = list(items)
        self.advances = advances or AdvanceInputs()
        self.schedule_amount = schedule_amount
        self._stored = stored
        self.source = SnapshotSource.FROM_STORE if stored is not None else SnapshotSource.COMPUTED

    @classmethod
    def from_order(cls, order: Any) -> "OrderEditSession":
        """Open a session on a persisted order (header with items and payment)."""
        payment = order.payment
        items = [line_item_from_row(row) for row in order.items]
        if payment is None:
            return cls(items=items)
        advances = AdvanceInputs(
            cash=payment.advance_cash,
            card_upi=payment.advance_card_upi,
            other=payment.advance_other,
        )
        return cls(items=items, advances=advances, stored=payment)

    @property
    def is_from_store(self) -> bool:
        return self.source is SnapshotSource.FROM_STORE

    def _touch(self, what: str) -> None:
        if self.source is SnapshotSource.FROM_STORE:
            logger.debug(f"Edit to {what} switches snapshot source to computed")
            self.source = SnapshotSource.COMPUTED

    def snapshot(self) -> FinancialSnapshot:
        return reconcile(
            self.items,
            self.advances,
            self.source,
            stored=self._stored,
            schedule_amount=self.schedule_amount,
        )

    # Contributing fields
    def set_advance(self, name: str, value: Any) -> None:
        if name not in ("cash", "card_upi", "other"):
            raise ValueError(f"Unknown advance field: {name}")
        self.advances = replace(self.advances, **{name: value})
        self._touch(f"advance_{name}")

    def set_items(self, items: Iterable[LineItem]) -> None:
        self.items = list(items)
        self._touch("items")

    def add_item(self, item: LineItem) -> None:
        self.items.append(item)
        self._touch("items")

    def update_item(self, index: int, item: LineItem) -> None:
        self.items[index] = item
        self._touch("items")

    def set_item_discount_percent(self, index: int, percent: Any) -> None:
        self.update_item(index, set_discount_percent(self.items[index], percent))

    def set_item_discount_amount(self, index: int, amount: Any) -> None:
        self.update_item(index, set_discount_amount(self.items[index], amount))

    def apply_discount(self, value: Any, kind: DiscountKind | str = DiscountKind.FIXED) -> None:
        self.set_items(distribute_discount(self.items, value, kind))

    def set_schedule_amount(self, value: Any) -> None:
        self.schedule_amount = value
        self._touch("schedule_amount")

    def remove_item(
        self,
        index: int,
        record: Optional[Callable[[LineItem], Any]] = None,
    ) -> ItemRemoval:
        """
        Remove a line, then hand it to `record` (the customer history hook).

        The removal always happens. A failed or raising `record` is logged and
        surfaced as a warning on the result, never as an exception.
        """
        removed = self.items.pop(index)
        self._touch("items")

        if record is None:
            return ItemRemoval(item=removed, history_recorded=False)

        try:
            outcome = record(removed)
        except Exception as e:
            logger.error(f"History recording raised for removed item {removed.item_name!r}: {e}", exc_info=True)
            return ItemRemoval(
                item=removed,
                history_recorded=False,
                warning=f"Item deleted but history tracking failed: {e}",
            )

        success = bool(getattr(outcome, "success", outcome))
        if success:
            return ItemRemoval(item=removed, history_recorded=True)
        message = getattr(outcome, "message", "unknown error")
        logger.warning(f"Failed to track deleted item {removed.item_name!r}: {message}")
        return ItemRemoval(
            item=removed,
            history_recorded=False,
            warning=f"Item deleted but history tracking failed: {message}",
        )
