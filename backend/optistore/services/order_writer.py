"""
Order writer: persists an order as header -> items -> payment.

There is no cross-table transaction. Each step is its own commit and a
failure in a later step is undone by compensating writes (see order_saga).

- Create path: keyed by order number, rejects duplicates.
- Update path: keyed by order id, replaces items wholesale and upserts the
  single payment row using raw fields only.
- No automatic retries anywhere; TransientStoreError goes back to the caller.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from optistore.core.audit import AuditLog
from optistore.core.config import settings
from optistore.core.exceptions import (
    DuplicateOrder,
    OrderWriteError,
    TransientStoreError,
    ValidationError,
    from_store_error,
    is_transient,
)
from optistore.models.order import Order, OrderItem, OrderPayment
from optistore.models.prescription import Prescription
from optistore.services import identifier_service
from optistore.services.order_saga import OrderSaga, SagaState
from optistore.services.reconciliation import (
    AdvanceInputs,
    FinancialSnapshot,
    LineItem,
    SnapshotSource,
    payment_fields,
    reconcile,
    snapshot_from_payment,
    verify_generated_columns,
)

logger = logging.getLogger(__name__)

ORDER_NO_PATTERN = re.compile(r"^[A-Za-z0-9\-_/]{1,64}$")

HEADER_FIELDS = ("bill_no", "order_date", "delivery_date", "status", "remarks", "booking_by")

# Figures a computed snapshot must agree on with its own items
_CHECKED_TOTALS = ("subtotal", "tax_amount", "discount_amount", "payment_estimate", "final_amount")


@dataclass
class OrderHeader:
    bill_no: str | None = None
    order_date: date | None = None
    delivery_date: date | None = None
    status: str | None = None
    remarks: str | None = None
    booking_by: str | None = None

    def values(self, partial: bool = False) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in HEADER_FIELDS}
        if partial:
            return {name: value for name, value in data.items() if value is not None}
        if not data["status"]:
            data["status"] = settings.DEFAULT_ORDER_STATUS
        if data["order_date"] is None:
            data.pop("order_date")  # store default: current date
        return data


@dataclass
class SaveResult:
    order_id: int
    order_no: str
    snapshot: FinancialSnapshot
    created: bool
    # {field: (expected, actual)} for generated columns that disagree
    drift: dict[str, tuple[Decimal, Decimal]] = field(default_factory=dict)
    saga_history: list[str] = field(default_factory=list)


# ----------------------------
# Validation
# ----------------------------
def validate_order_no(order_no: Any) -> str:
    if order_no is None or not str(order_no).strip():
        raise ValidationError("order_no", "order number is required")
    order_no = str(order_no)
    if not ORDER_NO_PATTERN.match(order_no):
        raise ValidationError(
            "order_no",
            "order number may only contain letters, digits, '-', '_' or '/' (max 64 characters)",
        )
    return order_no


def _validate_items(items: list[LineItem]) -> None:
    for index, item in enumerate(items):
        if not item.item_name or not item.item_name.strip():
            raise ValidationError(f"items[{index}].item_name", "item name is required")
        if item.qty <= 0 or item.qty != item.qty.to_integral_value():
            raise ValidationError(f"items[{index}].qty", "quantity must be a whole number above zero")
        if item.rate < 0:
            raise ValidationError(f"items[{index}].rate", "rate cannot be negative")


def _validate_payment(items: list[LineItem], payment: FinancialSnapshot) -> None:
    """A computed snapshot must have been computed from these items."""
    if payment.source is not SnapshotSource.COMPUTED:
        return
    expected = reconcile(items)
    for name in _CHECKED_TOTALS:
        if getattr(expected, name) != getattr(payment, name):
            raise ValidationError(
                f"payment.{name}",
                f"{getattr(payment, name)} does not match the items ({getattr(expected, name)})",
            )


def _validate_prescription(db: Session, prescription_id: Any) -> int:
    if not prescription_id:
        raise ValidationError("prescription_id", "prescription is required")
    try:
        exists = db.query(Prescription.id).filter(Prescription.id == prescription_id).first()
    except SQLAlchemyError as e:
        raise from_store_error("prescription lookup", e) from e
    if exists is None:
        raise ValidationError("prescription_id", f"no prescription with id {prescription_id}")
    return int(prescription_id)


def _is_order_no_violation(error: IntegrityError) -> bool:
    return "order_no" in str(getattr(error, "orig", error))


def _number_taken(db: Session, kind: str, number: str) -> bool:
    try:
        return identifier_service.check_number_exists(db, kind, number)
    except SQLAlchemyError as e:
        raise from_store_error("duplicate check", e) from e


def _commit(db: Session, step: Callable[..., Any], *args) -> Any:
    """Run one single-table write and commit it. Rolls the session back on failure."""
    try:
        result = step(db, *args)
        db.commit()
        return result
    except SQLAlchemyError:
        db.rollback()
        raise


# ----------------------------
# Single-table steps
# ----------------------------
def _item_rows(order_id: int, items: list[LineItem]) -> list[OrderItem]:
    return [
        OrderItem(
            order_id=order_id,
            si=item.si or index,
            item_type=item.item_type,
            item_code=item.item_code or None,
            item_name=item.item_name,
            rate=item.rate,
            qty=int(item.qty),
            amount=item.amount,
            tax_percent=item.tax_percent,
            discount_percent=item.discount_percent,
            discount_amount=item.discount_amount,
            brand_name=item.brand_name,
            lens_index=item.lens_index,
            coating=item.coating,
        )
        for index, item in enumerate(items, start=1)
    ]


def _insert_header(db: Session, order_no: str, prescription_id: int, header: OrderHeader) -> Order:
    order = Order(order_no=order_no, prescription_id=prescription_id, **header.values())
    db.add(order)
    db.flush()
    return order


def _insert_items(db: Session, order_id: int, items: list[LineItem]) -> None:
    db.add_all(_item_rows(order_id, items))
    db.flush()


def _insert_payment(db: Session, order_id: int, snapshot: FinancialSnapshot) -> OrderPayment:
    payment = OrderPayment(order_id=order_id, **payment_fields(snapshot))
    db.add(payment)
    db.flush()
    return payment


def _delete_items(db: Session, order_id: int) -> None:
    db.query(OrderItem).filter(OrderItem.order_id == order_id).delete()


def _delete_header(db: Session, order_id: int) -> None:
    db.query(Order).filter(Order.id == order_id).delete()


def _update_header(db: Session, order_id: int, values: dict[str, Any]) -> None:
    db.query(Order).filter(Order.id == order_id).update(values)


def _replace_items(db: Session, order_id: int, items: list[LineItem]) -> None:
    """Delete-all then insert-all; both touch order_items only, so one commit."""
    _delete_items(db, order_id)
    db.add_all(_item_rows(order_id, items))
    db.flush()


def _restore_items(db: Session, order_id: int, rows: list[dict[str, Any]]) -> None:
    _delete_items(db, order_id)
    db.add_all([OrderItem(**row) for row in rows])
    db.flush()


def _upsert_payment(db: Session, order_id: int, snapshot: FinancialSnapshot) -> OrderPayment:
    payment = db.query(OrderPayment).filter(OrderPayment.order_id == order_id).first()
    if payment is None:
        return _insert_payment(db, order_id, snapshot)
    for name, value in payment_fields(snapshot).items():
        setattr(payment, name, value)
    db.flush()
    return payment


def _read_back(db: Session, payment_id: int) -> OrderPayment:
    """Fresh read of the payment row so the generated columns are the store's."""
    payment = db.get(OrderPayment, payment_id)
    db.refresh(payment)
    return payment


def _check_drift(db: Session, order_id: int, order_no: str, payment_id: int, snapshot: FinancialSnapshot):
    try:
        stored = _read_back(db, payment_id)
    except SQLAlchemyError as e:
        # The write itself succeeded; only the verification read failed
        db.rollback()
        logger.warning(f"Could not read back payment for order {order_no}: {e}")
        return {}
    drift = verify_generated_columns(snapshot, stored)
    for name, (want, got) in drift.items():
        AuditLog.log_generated_drift(order_id, name, str(want), str(got))
    return drift


# ----------------------------
# Create path
# ----------------------------
def save_order(
    db: Session,
    order_no: str,
    prescription_id: int,
    items: Iterable[LineItem],
    payment: FinancialSnapshot,
    header: OrderHeader | None = None,
) -> SaveResult:
    """
    Create a new order. Raises DuplicateOrder if the order number is taken;
    updates must go through update_order (keyed by id, never by number).
    """
    order_no = validate_order_no(order_no)
    items = list(items)
    header = header or OrderHeader()
    _validate_items(items)
    _validate_payment(items, payment)
    prescription_id = _validate_prescription(db, prescription_id)

    # Advisory pre-check; the unique constraint on order_no is authoritative
    if _number_taken(db, "order", order_no):
        AuditLog.log_order_event("duplicate_rejected", order_no)
        raise DuplicateOrder(order_no)

    saga = OrderSaga(order_no)

    try:
        order = _commit(db, _insert_header, order_no, prescription_id, header)
    except IntegrityError as e:
        saga.advance(SagaState.FAILED)
        if _is_order_no_violation(e) or _number_taken(db, "order", order_no):
            AuditLog.log_order_event("duplicate_rejected", order_no)
            raise DuplicateOrder(order_no) from e
        raise OrderWriteError("header", e) from e
    except SQLAlchemyError as e:
        if is_transient(e):
            saga.advance(SagaState.FAILED)
            raise TransientStoreError("insert order header", e) from e
        raise saga.fail("header", e) from e

    order_id = order.id
    saga.order_id = order_id
    saga.advance(SagaState.HEADER_WRITTEN)

    compensations = {
        "items": lambda: _commit(db, _delete_items, order_id),
        "header": lambda: _commit(db, _delete_header, order_id),
    }

    try:
        _commit(db, _insert_items, order_id, items)
    except SQLAlchemyError as e:
        raise saga.compensate("items", e, compensations) from e
    saga.advance(SagaState.ITEMS_WRITTEN)

    try:
        stored = _commit(db, _insert_payment, order_id, payment)
    except SQLAlchemyError as e:
        raise saga.compensate("payment", e, compensations) from e
    saga.advance(SagaState.COMMITTED)

    drift = _check_drift(db, order_id, order_no, stored.id, payment)
    AuditLog.log_order_event(
        "create",
        order_no,
        order_id=order_id,
        details={"items": len(items), "final_amount": str(payment.final_amount)},
    )
    logger.info(f"Order {order_no} created (id={order_id}, {len(items)} items)")

    return SaveResult(
        order_id=order_id,
        order_no=order_no,
        snapshot=payment,
        created=True,
        drift=drift,
        saga_history=[s.value for s in saga.history],
    )


# ----------------------------
# Update path
# ----------------------------
def _item_pre_image(row: OrderItem) -> dict[str, Any]:
    return {
        column.key: getattr(row, column.key)
        for column in OrderItem.__table__.columns
        if column.key != "id"
    }


def update_order(
    db: Session,
    order_id: int,
    items: Iterable[LineItem],
    payment: FinancialSnapshot,
    header: OrderHeader | None = None,
    order_no: str | None = None,
) -> SaveResult:
    """
    Update an existing order in place: header, then items (replaced
    wholesale), then the payment row (upsert, raw fields only). A failure
    after the header was written restores the captured pre-images.
    """
    items = list(items)
    header = header or OrderHeader()
    _validate_items(items)
    _validate_payment(items, payment)

    try:
        order = db.get(Order, order_id)
        if order is not None:
            db.refresh(order)
            current_rows = (
                db.query(OrderItem).filter(OrderItem.order_id == order_id).order_by(OrderItem.si).all()
            )
    except SQLAlchemyError as e:
        raise from_store_error("order lookup", e) from e
    if order is None:
        raise ValidationError("order_id", f"no order with id {order_id}")

    # Fields left as None keep their stored value
    values = header.values(partial=True)
    values["updated_at"] = datetime.now(timezone.utc)
    if order_no is not None and order_no != order.order_no:
        new_no = validate_order_no(order_no)
        if _number_taken(db, "order", new_no):
            AuditLog.log_order_event("duplicate_rejected", new_no, order_id=order_id)
            raise DuplicateOrder(new_no)
        values["order_no"] = new_no

    current_no = values.get("order_no", order.order_no)
    header_before = {name: getattr(order, name) for name in values}
    items_before = [_item_pre_image(row) for row in current_rows]

    saga = OrderSaga(current_no)
    saga.order_id = order_id

    try:
        _commit(db, _update_header, order_id, values)
    except IntegrityError as e:
        saga.advance(SagaState.FAILED)
        if "order_no" in values and _is_order_no_violation(e):
            raise DuplicateOrder(values["order_no"]) from e
        raise OrderWriteError("header", e) from e
    except SQLAlchemyError as e:
        if is_transient(e):
            saga.advance(SagaState.FAILED)
            raise TransientStoreError("update order header", e) from e
        raise saga.fail("header", e) from e
    saga.advance(SagaState.HEADER_WRITTEN)

    compensations = {
        "items": lambda: _commit(db, _restore_items, order_id, items_before),
        "header": lambda: _commit(db, _update_header, order_id, header_before),
    }

    try:
        _commit(db, _replace_items, order_id, items)
    except SQLAlchemyError as e:
        raise saga.compensate("items", e, compensations) from e
    saga.advance(SagaState.ITEMS_WRITTEN)

    try:
        stored = _commit(db, _upsert_payment, order_id, payment)
    except SQLAlchemyError as e:
        raise saga.compensate("payment", e, compensations) from e
    saga.advance(SagaState.COMMITTED)

    # Cached items/payment relationships predate the replacement
    db.expire(order)
    drift = _check_drift(db, order_id, current_no, stored.id, payment)
    AuditLog.log_order_event(
        "update",
        current_no,
        order_id=order_id,
        details={"items": len(items), "final_amount": str(payment.final_amount)},
    )
    logger.info(f"Order {current_no} updated (id={order_id}, {len(items)} items)")

    return SaveResult(
        order_id=order_id,
        order_no=current_no,
        snapshot=payment,
        created=False,
        drift=drift,
        saga_history=[s.value for s in saga.history],
    )


# ----------------------------
# Order card flow
# ----------------------------
@dataclass
class OrderCardRequest:
    prescription_id: int
    items: list[LineItem]
    advances: AdvanceInputs = field(default_factory=AdvanceInputs)
    header: OrderHeader = field(default_factory=OrderHeader)
    order_id: int | None = None
    order_no: str | None = None
    schedule_amount: Any = None
    # Set when the card was loaded from the store and no money field was touched
    stored_payment: Optional[Any] = None
    # Same, but the payment row is looked up from the order being updated
    payment_untouched: bool = False


def stored_payment_for(db: Session, order_id: int) -> OrderPayment | None:
    """The persisted payment row of an order, or None when it has none yet."""
    try:
        return db.query(OrderPayment).filter(OrderPayment.order_id == order_id).first()
    except SQLAlchemyError as e:
        raise from_store_error("payment lookup", e) from e


def find_canonical_order(db: Session, prescription_id: int) -> Order | None:
    """The order treated as current for a prescription: the newest one."""
    return (
        db.query(Order)
        .filter(Order.prescription_id == prescription_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .first()
    )


def save_order_for_prescription(db: Session, request: OrderCardRequest) -> SaveResult:
    """
    Save from the order card: update the existing order (explicit id, or the
    one already on the prescription) or create a new one, generating the
    order and bill numbers when the card has none.
    """
    try:
        if request.order_id is not None:
            existing = db.get(Order, request.order_id)
            if existing is None:
                raise ValidationError("order_id", f"no order with id {request.order_id}")
        else:
            existing = find_canonical_order(db, request.prescription_id)
    except SQLAlchemyError as e:
        raise from_store_error("order lookup", e) from e

    stored = request.stored_payment
    if stored is None and request.payment_untouched and existing is not None:
        stored = stored_payment_for(db, existing.id)
    if stored is not None:
        snapshot = reconcile(request.items, source=SnapshotSource.FROM_STORE, stored=stored)
    else:
        snapshot = reconcile(request.items, request.advances, schedule_amount=request.schedule_amount)

    if existing is not None:
        return update_order(
            db,
            existing.id,
            request.items,
            snapshot,
            header=request.header,
            order_no=request.order_no,
        )

    order_no = request.order_no
    try:
        if not order_no:
            order_no = identifier_service.generate(db, "order").value
        if not request.header.bill_no:
            request.header.bill_no = identifier_service.generate(db, "bill").value
    except SQLAlchemyError as e:
        raise from_store_error("identifier generation", e) from e

    return save_order(db, order_no, request.prescription_id, request.items, snapshot, header=request.header)


def load_snapshot(order: Order) -> FinancialSnapshot | None:
    """FROM_STORE snapshot of a persisted order, or None when it has no payment yet."""
    if order.payment is None:
        return None
    return snapshot_from_payment(order.payment)
