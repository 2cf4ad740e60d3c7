from pydantic import BaseModel, Field
from typing import Optional, Any
from datetime import datetime
from decimal import Decimal

from optistore.services.customer_history_service import CustomerContact, DeletedItemSnapshot


class DeletionRecordRequest(BaseModel):
    customer: CustomerContact
    item: DeletedItemSnapshot


class CustomerHistoryResponse(BaseModel):
    id: int
    customer_id: Optional[str] = None
    customer_name: str
    mobile_no: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    deleted_items: list[dict[str, Any]] = Field(default_factory=list)
    total_deleted_items: int = 0
    total_deleted_value: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HistoryResultResponse(BaseModel):
    success: bool
    message: str
    data: Optional[CustomerHistoryResponse] = None


class HistoryListResponse(BaseModel):
    success: bool
    message: str
    data: list[CustomerHistoryResponse] = Field(default_factory=list)


class HistoryPage(BaseModel):
    items: list[CustomerHistoryResponse]
    total: int
    page: int
    limit: int
