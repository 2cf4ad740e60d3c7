from pydantic import BaseModel
from typing import Optional, Any
from datetime import date as date_type, datetime


class PrescriptionCreate(BaseModel):
    name: str
    mobile_no: str
    prescription_no: Optional[str] = None
    reference_no: Optional[str] = None
    source: str = "OrderCard"
    title: Optional[str] = None
    age: Optional[str] = None
    gender: Optional[str] = None
    customer_code: Optional[str] = None
    phone_landline: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    prescribed_by: Optional[str] = None
    date: Optional[date_type] = None
    booking_by: Optional[str] = None
    ipd: Optional[str] = None
    measurements: Optional[dict[str, Any]] = None


class ReferenceNoUpdate(BaseModel):
    reference_no: str


class PrescriptionResponse(BaseModel):
    id: int
    prescription_no: str
    reference_no: Optional[str] = None
    source: str
    name: str
    mobile_no: Optional[str] = None
    email: Optional[str] = None
    city: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
