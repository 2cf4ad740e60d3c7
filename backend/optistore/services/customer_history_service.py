"""
Customer history: snapshots of line items removed from order cards.

One aggregate per customer, looked up by mobile number first and customer
id second. Recording is allowed to fail on its own: every store error is
returned as success=False so the deletion that triggered it goes ahead.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from optistore.core.audit import AuditLog
from optistore.core.config import settings
from optistore.core.exceptions import HistoryRecordingFailure
from optistore.models.customer_history import CustomerHistory
from optistore.models.prescription import Prescription
from optistore.services.reconciliation import (
    ItemRemoval,
    LineItem,
    OrderEditSession,
    ZERO,
    money2,
)

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "This deleted item is already recorded in customer history."

# search field -> keys of a deleted item entry it matches
SEARCH_FIELDS = {
    "reference_no": ("order_no", "order_id"),
    "prescription_no": ("prescription_no",),
}


class CustomerContact(BaseModel):
    """Latest known customer details, as typed on the card."""
    id: Optional[str] = None
    name: str
    mobile_no: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    prescription_no: Optional[str] = None


class DeletedItemSnapshot(BaseModel):
    """Immutable copy of a line item at the moment it was removed."""
    id: str
    order_id: Optional[str] = None
    order_no: Optional[str] = None
    prescription_no: Optional[str] = None
    item_code: Optional[str] = None
    item_name: str
    item_type: Optional[str] = None
    rate: Decimal = ZERO
    qty: int = 1
    amount: Decimal = ZERO
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    brand_name: Optional[str] = None
    lens_index: Optional[str] = None
    coating: Optional[str] = None
    deleted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_by: Optional[str] = None

    class Config:
        frozen = True


@dataclass
class HistoryResult:
    success: bool
    message: str
    data: Any = None


def snapshot_from_line(
    item: LineItem,
    *,
    item_id: str | None = None,
    order_id: Any = None,
    order_no: str | None = None,
    prescription_no: str | None = None,
    deleted_by: str | None = None,
) -> DeletedItemSnapshot:
    """
    Snapshot a removed LineItem. Without an explicit id a fresh one is minted
    per removal (order, line position and a random suffix), so identical lines
    deleted one after the other are all kept. Caller supplied ids are the ones
    the duplicate guard in record_deletion protects.
    """
    if item_id is None:
        owner = order_no or (str(order_id) if order_id is not None else "draft")
        item_id = f"{owner}-{item.si}-{uuid.uuid4().hex[:12]}"
    return DeletedItemSnapshot(
        id=item_id,
        order_id=str(order_id) if order_id is not None else None,
        order_no=order_no,
        prescription_no=prescription_no,
        item_code=item.item_code or None,
        item_name=item.item_name,
        item_type=item.item_type,
        rate=money2(item.rate),
        qty=int(item.qty),
        amount=item.amount,
        discount_percent=money2(item.discount_percent),
        discount_amount=money2(item.discount_amount),
        brand_name=item.brand_name,
        lens_index=item.lens_index,
        coating=item.coating,
        deleted_by=deleted_by,
    )


def history_view(history: CustomerHistory, items: list[dict] | None = None) -> dict[str, Any]:
    """
    Plain projection of an aggregate. With `items`, the view holds only those
    entries and totals are recomputed for them; the row itself is untouched.
    """
    if items is None:
        entries = list(history.deleted_items or [])
        total_items = history.total_deleted_items or 0
        total_value = money2(history.total_deleted_value)
    else:
        entries = list(items)
        total_items = len(entries)
        total_value = sum((money2(entry.get("amount")) for entry in entries), ZERO)

    return {
        "id": history.id,
        "customer_id": history.customer_id,
        "customer_name": history.customer_name,
        "mobile_no": history.mobile_no,
        "email": history.email,
        "address": history.address,
        "city": history.city,
        "state": history.state,
        "pin_code": history.pin_code,
        "deleted_items": entries,
        "total_deleted_items": total_items,
        "total_deleted_value": total_value,
        "created_at": history.created_at,
        "updated_at": history.updated_at,
    }


# ----------------------------
# Recording
# ----------------------------
def _find_history(db: Session, customer: CustomerContact, lock: bool = False) -> CustomerHistory | None:
    """Mobile number first (stable across flows), then customer id."""
    for column, value in (
        (CustomerHistory.mobile_no, customer.mobile_no),
        (CustomerHistory.customer_id, customer.id),
    ):
        if not value:
            continue
        q = db.query(CustomerHistory).filter(column == value)
        if lock:
            q = q.with_for_update()
        found = q.order_by(CustomerHistory.id).first()
        if found is not None:
            return found
    return None


def _refresh_contact(history: CustomerHistory, customer: CustomerContact) -> None:
    history.customer_name = customer.name
    for name in ("email", "address", "city", "state", "pin_code"):
        value = getattr(customer, name)
        if value is not None:
            setattr(history, name, value)
    if not history.mobile_no and customer.mobile_no:
        history.mobile_no = customer.mobile_no
    if not history.customer_id and customer.id:
        history.customer_id = customer.id


def record_deletion(db: Session, customer: CustomerContact, snapshot: DeletedItemSnapshot) -> HistoryResult:
    """
    Append `snapshot` to the customer's history, or start a new history.

    Re-recording an item id already in the list is rejected with
    success=False. Never raises for store errors.
    """
    customer_key = customer.mobile_no or customer.id or customer.name
    entry = snapshot.model_dump(mode="json")

    try:
        history = _find_history(db, customer, lock=True)

        if history is not None:
            entries = list(history.deleted_items or [])
            if any(existing.get("id") == snapshot.id for existing in entries):
                view = history_view(history)
                db.rollback()
                AuditLog.log_history_event("duplicate", customer_key, snapshot.id, False, DUPLICATE_MESSAGE)
                return HistoryResult(False, DUPLICATE_MESSAGE, view)

            # Reassign so the JSON column is flagged as changed
            history.deleted_items = entries + [entry]
            history.total_deleted_items = (history.total_deleted_items or 0) + 1
            history.total_deleted_value = money2(history.total_deleted_value) + money2(snapshot.amount)
            _refresh_contact(history, customer)
            action, message = "appended", "Item added to existing customer history"
        else:
            history = CustomerHistory(
                customer_id=customer.id or f"cust_{int(time.time() * 1000)}",
                customer_name=customer.name,
                mobile_no=customer.mobile_no,
                email=customer.email,
                address=customer.address,
                city=customer.city,
                state=customer.state,
                pin_code=customer.pin_code,
                deleted_items=[entry],
                total_deleted_items=1,
                total_deleted_value=money2(snapshot.amount),
            )
            db.add(history)
            action, message = "created", "New customer history created with deleted item"

        db.commit()
        db.refresh(history)
    except SQLAlchemyError as e:
        db.rollback()
        failure = HistoryRecordingFailure(f"Could not record deleted item {snapshot.id} for {customer_key}: {e}")
        logger.error(str(failure), exc_info=True)
        AuditLog.log_history_event("failed", customer_key, snapshot.id, False, str(e))
        return HistoryResult(False, f"Failed to record deleted item: {type(e).__name__}")

    AuditLog.log_history_event(action, customer_key, snapshot.id, True)
    logger.info(f"Customer history {action} for {customer_key}: item {snapshot.id}")
    return HistoryResult(True, message, history_view(history))


def remove_item_with_history(
    db: Session,
    session: OrderEditSession,
    index: int,
    customer: CustomerContact,
    *,
    order_id: Any = None,
    order_no: str | None = None,
    deleted_by: str | None = None,
    item_id: str | None = None,
) -> ItemRemoval:
    """Remove a line from an edit session and record it; recording never blocks the removal."""

    def record(item: LineItem) -> HistoryResult:
        snapshot = snapshot_from_line(
            item,
            item_id=item_id,
            order_id=order_id,
            order_no=order_no,
            prescription_no=customer.prescription_no,
            deleted_by=deleted_by,
        )
        return record_deletion(db, customer, snapshot)

    return session.remove_item(index, record=record)


# ----------------------------
# Reads
# ----------------------------
def _read_failed(operation: str, error: SQLAlchemyError) -> HistoryResult:
    logger.error(f"Customer history {operation} failed: {error}", exc_info=True)
    return HistoryResult(False, f"Failed to {operation}: {type(error).__name__}")


def search_by_field(db: Session, field: str, value: str | None) -> HistoryResult:
    """
    Find the history holding items for a reference number (matched against
    the entries' order_no/order_id) or a prescription number, reduced to
    just those items.
    """
    if field not in SEARCH_FIELDS:
        return HistoryResult(False, f"Unsupported search field: {field}")
    value = (value or "").strip()
    if not value:
        return HistoryResult(False, "Search value cannot be empty")

    keys = SEARCH_FIELDS[field]
    try:
        rows = db.query(CustomerHistory).order_by(CustomerHistory.updated_at.desc()).all()
    except SQLAlchemyError as e:
        return _read_failed("search customer history", e)

    for row in rows:
        matches = [
            entry for entry in (row.deleted_items or [])
            if any(str(entry.get(key) or "") == value for key in keys)
        ]
        if matches:
            logger.debug(f"History {row.id}: {len(matches)} items match {field}={value}")
            return HistoryResult(True, "Search successful", history_view(row, matches))

    return HistoryResult(True, f"No deleted items found for {field} {value}")


def get_by_customer_id(db: Session, customer_id: str) -> HistoryResult:
    try:
        row = db.query(CustomerHistory).filter(CustomerHistory.customer_id == customer_id).first()
    except SQLAlchemyError as e:
        return _read_failed("fetch customer history", e)
    if row is None:
        return HistoryResult(True, "No history found for this customer")
    return HistoryResult(True, "History found", history_view(row))


def get_by_mobile(db: Session, mobile_no: str) -> HistoryResult:
    try:
        row = db.query(CustomerHistory).filter(CustomerHistory.mobile_no == mobile_no).first()
    except SQLAlchemyError as e:
        return _read_failed("fetch customer history", e)
    if row is None:
        return HistoryResult(True, "No history found for this mobile number")
    return HistoryResult(True, "History found", history_view(row))


def search(db: Session, query: str) -> HistoryResult:
    """
    Name or mobile substring search, newest first. Histories whose customer
    no longer exists in prescriptions are left out.
    """
    query = (query or "").strip()
    if not query:
        return HistoryResult(False, "Search value cannot be empty")

    pattern = f"%{query}%"
    try:
        rows = (
            db.query(CustomerHistory)
            .filter(or_(CustomerHistory.customer_name.ilike(pattern), CustomerHistory.mobile_no.ilike(pattern)))
            .order_by(CustomerHistory.updated_at.desc())
            .all()
        )
        numeric_ids = {int(row.customer_id) for row in rows if row.customer_id and row.customer_id.isdigit()}
        existing = set()
        if numeric_ids:
            existing = {
                str(pid) for (pid,) in db.query(Prescription.id).filter(Prescription.id.in_(numeric_ids))
            }
    except SQLAlchemyError as e:
        return _read_failed("search customer history", e)

    live = [history_view(row) for row in rows if row.customer_id in existing]
    if not live:
        return HistoryResult(True, "No matching records found", [])
    return HistoryResult(True, "Search successful", live)


def list_histories(db: Session, page: int = 1, limit: int | None = None) -> HistoryResult:
    limit = limit or settings.HISTORY_PAGE_SIZE
    page = max(page, 1)
    try:
        q = db.query(CustomerHistory)
        total = q.count()
        rows = (
            q.order_by(CustomerHistory.updated_at.desc(), CustomerHistory.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        return _read_failed("list customer histories", e)

    return HistoryResult(
        True,
        f"{len(rows)} of {total} histories",
        {"items": [history_view(row) for row in rows], "total": total, "page": page, "limit": limit},
    )
