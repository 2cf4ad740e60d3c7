"""
Prescription: identity anchor for a customer encounter.

Referenced by orders, never owned by them. prescription_no and reference_no
are unique at the store level; application checks are only a pre-check.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from optistore.db.base import Base


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    prescription_no = Column(String(64), unique=True, nullable=False, index=True)
    # Defaults to prescription_no, independently editable
    reference_no = Column(String(64), unique=True, nullable=True, index=True)
    source = Column(String(32), nullable=False, default="OrderCard")  # OrderCard | ContactLens

    # Customer demographics
    title = Column(String(16), nullable=True)
    name = Column(String(255), nullable=False)
    age = Column(String(16), nullable=True)
    gender = Column(String(16), nullable=True)
    customer_code = Column(String(64), nullable=True)
    mobile_no = Column(String(32), nullable=True, index=True)
    phone_landline = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(128), nullable=True)
    state = Column(String(128), nullable=True)
    pin_code = Column(String(16), nullable=True)

    prescribed_by = Column(String(255), nullable=True)
    date = Column(Date, nullable=True)
    booking_by = Column(String(255), nullable=True)

    # Optical measurements (sph/cyl/axis/add per eye, ipd) as captured by the form
    ipd = Column(String(16), nullable=True)
    measurements = Column(JSON, nullable=True, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Prescription {self.prescription_no} name={self.name}>"
