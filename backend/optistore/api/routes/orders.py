"""Orders: create, update, order-card save, reads and navigation."""
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from optistore.api.deps import get_db
from optistore.core.exceptions import BusinessError, OrderStoreError
from optistore.schemas.order import (
    OrderCardIn,
    OrderCreate,
    OrderItemIn,
    OrderItemResponse,
    OrderResponse,
    OrderSaveBase,
    OrderUpdate,
    SaveResponse,
    SnapshotResponse,
)
from optistore.services import order_queries, order_writer
from optistore.services.reconciliation import (
    FinancialSnapshot,
    LineItem,
    SnapshotSource,
    distribute_discount,
    reconcile,
    set_discount_amount,
    set_discount_percent,
)

router = APIRouter()


def _line_item(index: int, data: OrderItemIn) -> LineItem:
    item = LineItem(
        item_name=data.item_name,
        rate=data.rate,
        qty=data.qty,
        tax_percent=data.tax_percent,
        item_code=data.item_code or "",
        item_type=data.item_type,
        si=data.si or index,
        brand_name=data.brand_name,
        lens_index=data.lens_index,
        coating=data.coating,
    )
    # An explicit amount wins over a percent when both are sent
    if data.discount_amount is not None:
        return set_discount_amount(item, data.discount_amount)
    if data.discount_percent is not None:
        return set_discount_percent(item, data.discount_percent)
    return item


def _line_items(payload: OrderSaveBase) -> list[LineItem]:
    items = [_line_item(index, data) for index, data in enumerate(payload.items, start=1)]
    if payload.discount is not None:
        items = distribute_discount(items, payload.discount.value, payload.discount.kind)
    return items


def _snapshot(snapshot: FinancialSnapshot) -> SnapshotResponse:
    data = asdict(snapshot)
    data["source"] = snapshot.source.value
    return SnapshotResponse(**data)


def _save_response(result: order_writer.SaveResult) -> SaveResponse:
    warnings = []
    if result.drift:
        warnings.append("Stored balance differs from the computed balance; the stored value is shown.")
    return SaveResponse(
        order_id=result.order_id,
        order_no=result.order_no,
        created=result.created,
        snapshot=_snapshot(result.snapshot),
        drift={name: list(values) for name, values in result.drift.items()},
        warnings=warnings,
    )


def _order_response(order) -> OrderResponse:
    view = order_queries.order_view(order)
    view["items"] = [OrderItemResponse.model_validate(row) for row in view["items"]]
    view["payment"] = _snapshot(view["payment"]) if view["payment"] is not None else None
    return OrderResponse(**view)


@router.post("", response_model=SaveResponse, status_code=201)
def create_order(data: OrderCreate, db: Session = Depends(get_db)):
    """Create a new order. 409 when the order number is already in use."""
    items = _line_items(data)
    snapshot = reconcile(items, data.advances.to_inputs(), schedule_amount=data.schedule_amount)
    try:
        result = order_writer.save_order(
            db,
            data.order_no,
            data.prescription_id,
            items,
            snapshot,
            header=data.header.to_header(),
        )
    except OrderStoreError as e:
        raise BusinessError.from_domain(e)
    return _save_response(result)


@router.put("/{order_id}", response_model=SaveResponse)
def update_order(order_id: int, data: OrderUpdate, db: Session = Depends(get_db)):
    """Update header, replace items and upsert payment of an existing order."""
    items = _line_items(data)
    try:
        stored = order_writer.stored_payment_for(db, order_id) if data.payment_untouched else None
        if stored is not None:
            snapshot = reconcile(items, source=SnapshotSource.FROM_STORE, stored=stored)
        else:
            snapshot = reconcile(items, data.advances.to_inputs(), schedule_amount=data.schedule_amount)
        result = order_writer.update_order(
            db,
            order_id,
            items,
            snapshot,
            header=data.header.to_header(),
            order_no=data.order_no,
        )
    except OrderStoreError as e:
        raise BusinessError.from_domain(e)
    return _save_response(result)


@router.post("/card", response_model=SaveResponse)
def save_order_card(data: OrderCardIn, db: Session = Depends(get_db)):
    """Order card save: updates the prescription's order if it has one, creates it otherwise."""
    try:
        result = order_writer.save_order_for_prescription(db, data.to_request(_line_items(data)))
    except OrderStoreError as e:
        raise BusinessError.from_domain(e)
    return _save_response(result)


@router.get("/navigate/{direction}", response_model=OrderResponse)
def navigate_orders(
    direction: str,
    current_id: int | None = Query(None),
    db: Session = Depends(get_db),
):
    """first | last | previous | next, relative to the order on screen."""
    if direction not in order_queries.NAVIGATION:
        raise BusinessError.bad_request(f"direction must be one of {', '.join(order_queries.NAVIGATION)}")
    order = order_queries.navigate(db, direction, current_id)
    if order is None:
        raise BusinessError.not_found("Order")
    return _order_response(order)


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, db: Session = Depends(get_db)):
    order = order_queries.get_order(db, order_id)
    if order is None:
        raise BusinessError.not_found("Order")
    return _order_response(order)


@router.get("", response_model=list[OrderResponse])
def list_orders(prescription_id: int = Query(...), db: Session = Depends(get_db)):
    """Orders of one prescription, newest first."""
    return [_order_response(order) for order in order_queries.get_orders_by_prescription(db, prescription_id)]
