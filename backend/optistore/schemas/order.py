from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from decimal import Decimal

from optistore.services.order_writer import OrderCardRequest, OrderHeader
from optistore.services.reconciliation import AdvanceInputs, DiscountKind, LineItem


class OrderItemIn(BaseModel):
    item_name: str
    rate: Decimal = Decimal("0")
    qty: int = 1
    tax_percent: Decimal = Decimal("0")
    discount_percent: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    item_code: Optional[str] = None
    item_type: Optional[str] = None
    si: Optional[int] = None
    brand_name: Optional[str] = None
    lens_index: Optional[str] = None
    coating: Optional[str] = None


class AdvancesIn(BaseModel):
    cash: Decimal = Decimal("0")
    card_upi: Decimal = Decimal("0")
    other: Decimal = Decimal("0")

    def to_inputs(self) -> AdvanceInputs:
        return AdvanceInputs(cash=self.cash, card_upi=self.card_upi, other=self.other)


class DiscountIn(BaseModel):
    """One order-level discount, spread over the items pro-rata."""
    value: Decimal
    kind: DiscountKind = DiscountKind.FIXED


class OrderHeaderIn(BaseModel):
    bill_no: Optional[str] = None
    order_date: Optional[date] = None
    delivery_date: Optional[date] = None
    status: Optional[str] = None
    remarks: Optional[str] = None
    booking_by: Optional[str] = None

    def to_header(self) -> OrderHeader:
        return OrderHeader(**self.model_dump())


class OrderSaveBase(BaseModel):
    items: list[OrderItemIn] = Field(default_factory=list)
    advances: AdvancesIn = Field(default_factory=AdvancesIn)
    header: OrderHeaderIn = Field(default_factory=OrderHeaderIn)
    discount: Optional[DiscountIn] = None
    schedule_amount: Optional[Decimal] = None


class OrderCreate(OrderSaveBase):
    order_no: str
    prescription_id: int


class OrderUpdate(OrderSaveBase):
    order_no: Optional[str] = None
    # True when the card was loaded and no money field was edited
    payment_untouched: bool = False


class OrderCardIn(OrderSaveBase):
    prescription_id: int
    order_id: Optional[int] = None
    order_no: Optional[str] = None
    payment_untouched: bool = False

    def to_request(self, items: list[LineItem]) -> OrderCardRequest:
        return OrderCardRequest(
            prescription_id=self.prescription_id,
            items=items,
            advances=self.advances.to_inputs(),
            header=self.header.to_header(),
            order_id=self.order_id,
            order_no=self.order_no,
            schedule_amount=self.schedule_amount,
            payment_untouched=self.payment_untouched,
        )


class OrderItemResponse(BaseModel):
    id: int
    si: int
    item_type: str
    item_code: Optional[str] = None
    item_name: str
    rate: Decimal
    qty: int
    amount: Decimal
    tax_percent: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    brand_name: Optional[str] = None
    lens_index: Optional[str] = None
    coating: Optional[str] = None

    class Config:
        from_attributes = True


class SnapshotResponse(BaseModel):
    source: str
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
    schedule_amount: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_no: str
    prescription_id: int
    bill_no: Optional[str] = None
    order_date: Optional[date] = None
    delivery_date: Optional[date] = None
    status: str
    remarks: Optional[str] = None
    booking_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: list[OrderItemResponse] = Field(default_factory=list)
    payment: Optional[SnapshotResponse] = None


class SaveResponse(BaseModel):
    order_id: int
    order_no: str
    created: bool
    snapshot: SnapshotResponse
    drift: dict[str, list[Decimal]] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
