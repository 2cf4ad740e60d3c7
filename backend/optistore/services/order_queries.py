"""Read side of orders: single lookups and record navigation for the order card."""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session, selectinload

from optistore.models.order import Order
from optistore.services.reconciliation import snapshot_from_payment

logger = logging.getLogger(__name__)

NAVIGATION = ("first", "last", "previous", "next")


def _with_children(db: Session):
    return db.query(Order).options(selectinload(Order.items), selectinload(Order.payment))


def order_view(order: Order) -> dict[str, Any]:
    """Order header, items and a FROM_STORE snapshot of its payment."""
    return {
        "id": order.id,
        "order_no": order.order_no,
        "prescription_id": order.prescription_id,
        "bill_no": order.bill_no,
        "order_date": order.order_date,
        "delivery_date": order.delivery_date,
        "status": order.status,
        "remarks": order.remarks,
        "booking_by": order.booking_by,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
        "items": list(order.items),
        "payment": snapshot_from_payment(order.payment) if order.payment is not None else None,
    }


def get_order(db: Session, order_id: int) -> Order | None:
    return _with_children(db).filter(Order.id == order_id).first()


def get_order_by_number(db: Session, order_no: str) -> Order | None:
    return _with_children(db).filter(Order.order_no == order_no).first()


def get_orders_by_prescription(db: Session, prescription_id: int) -> list[Order]:
    """Newest first; the first entry is the one the card edits."""
    return (
        _with_children(db)
        .filter(Order.prescription_id == prescription_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def first_order(db: Session) -> Order | None:
    return _with_children(db).order_by(Order.created_at.asc(), Order.id.asc()).first()


def last_order(db: Session) -> Order | None:
    return _with_children(db).order_by(Order.created_at.desc(), Order.id.desc()).first()


def previous_order(db: Session, updated_at: datetime) -> Order | None:
    """Most recently updated order before `updated_at`."""
    return (
        _with_children(db)
        .filter(Order.updated_at < updated_at)
        .order_by(Order.updated_at.desc(), Order.id.desc())
        .first()
    )


def next_order(db: Session, updated_at: datetime) -> Order | None:
    """Earliest order updated after `updated_at`."""
    return (
        _with_children(db)
        .filter(Order.updated_at > updated_at)
        .order_by(Order.updated_at.asc(), Order.id.asc())
        .first()
    )


def navigate(db: Session, direction: str, current_id: int | None = None) -> Order | None:
    """
    Step through orders from the card. previous/next are relative to the
    current order's updated_at; without a current order they behave like
    last/first.
    """
    if direction not in NAVIGATION:
        raise ValueError(f"Unknown direction: {direction}")
    if direction == "first":
        return first_order(db)
    if direction == "last":
        return last_order(db)

    current = db.get(Order, current_id) if current_id is not None else None
    if current is None or current.updated_at is None:
        logger.debug(f"Navigate {direction} without a current order")
        return last_order(db) if direction == "previous" else first_order(db)
    if direction == "previous":
        return previous_order(db, current.updated_at)
    return next_order(db, current.updated_at)
