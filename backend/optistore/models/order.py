"""
Order, OrderItem, OrderPayment: one purchase, written as three single-table
steps by the order writer.

Ownership (items and payment belong to their order) is enforced by the
application, not by store cascades. total_advance and balance are generated
by the store and are never written by the application.
"""
from sqlalchemy import (
    Column, Computed, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from optistore.core.config import settings
from optistore.db.base import Base

_ADVANCE_SUM = (
    "COALESCE(advance_cash, 0) + COALESCE(advance_card_upi, 0) + COALESCE(advance_other, 0)"
)


class OrderStatus:
    PENDING = "Pending"
    PROCESSING = "Processing"
    READY = "Ready"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    ALL = (PENDING, PROCESSING, READY, DELIVERED, CANCELLED)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id"), nullable=False, index=True)
    order_no = Column(String(64), unique=True, nullable=False, index=True)
    bill_no = Column(String(64), nullable=True, index=True)
    order_date = Column(Date, nullable=False, server_default=func.current_date())
    delivery_date = Column(Date, nullable=True)
    status = Column(String(32), nullable=False, default=lambda: settings.DEFAULT_ORDER_STATUS)
    remarks = Column(Text, nullable=True)
    booking_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    prescription = relationship("Prescription", backref="orders")
    items = relationship("OrderItem", order_by="OrderItem.si", viewonly=True)
    payment = relationship("OrderPayment", uselist=False, viewonly=True)

    def __repr__(self):
        return f"<Order {self.order_no} status={self.status}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    si = Column(Integer, nullable=False)  # sequence index on the card
    item_type = Column(String(64), nullable=False, default="Other")  # Frames | Sun Glasses | Lens | Other
    item_code = Column(String(64), nullable=True)
    item_name = Column(String(255), nullable=False)
    rate = Column(Numeric(10, 2), nullable=False)
    qty = Column(Integer, nullable=False, default=1)
    amount = Column(Numeric(10, 2), nullable=False)  # rate*qty + tax - discount at write time
    tax_percent = Column(Numeric(5, 2), default=0)
    discount_percent = Column(Numeric(5, 2), default=0)
    discount_amount = Column(Numeric(10, 2), default=0)
    brand_name = Column(String(255), nullable=True)
    lens_index = Column(String(32), nullable=True)
    coating = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class OrderPayment(Base):
    __tablename__ = "order_payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False, index=True)
    payment_estimate = Column(Numeric(10, 2), nullable=False)  # pre-discount, tax-inclusive
    tax_amount = Column(Numeric(10, 2), default=0)
    discount_amount = Column(Numeric(10, 2), default=0)
    final_amount = Column(Numeric(10, 2), nullable=False)  # estimate - discount
    advance_cash = Column(Numeric(10, 2), default=0)
    advance_card_upi = Column(Numeric(10, 2), default=0)
    advance_other = Column(Numeric(10, 2), default=0)
    schedule_amount = Column(Numeric(10, 2), default=0)

    # Generated by the store, read-only here
    total_advance = Column(Numeric(10, 2), Computed(f"ROUND({_ADVANCE_SUM}, 2)", persisted=True))
    balance = Column(
        Numeric(10, 2),
        Computed(
            f"ROUND(CASE WHEN final_amount - ({_ADVANCE_SUM}) > 0 "
            f"THEN final_amount - ({_ADVANCE_SUM}) ELSE 0 END, 2)",
            persisted=True,
        ),
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Columns the application may write; everything else is store-owned
    RAW_FIELDS = (
        "payment_estimate",
        "tax_amount",
        "discount_amount",
        "final_amount",
        "advance_cash",
        "advance_card_upi",
        "advance_other",
        "schedule_amount",
    )
