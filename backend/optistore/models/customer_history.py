"""
CustomerHistory: one aggregate per customer holding snapshots of line items
removed from orders.

deleted_items is an embedded, append-only JSON list (not a foreign-keyed
table). Entries are never mutated after insertion.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from optistore.db.base import Base


class CustomerHistory(Base):
    __tablename__ = "customer_history"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(String(64), nullable=True, index=True)
    customer_name = Column(String(255), nullable=False)
    mobile_no = Column(String(32), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(128), nullable=True)
    state = Column(String(128), nullable=True)
    pin_code = Column(String(16), nullable=True)
    deleted_items = Column(JSON, nullable=False, default=list)
    total_deleted_items = Column(Integer, nullable=False, default=0)
    total_deleted_value = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<CustomerHistory customer={self.customer_name} items={self.total_deleted_items}>"
