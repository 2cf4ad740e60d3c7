"""Prescriptions: create and re-number."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from optistore.api.deps import get_db
from optistore.core.exceptions import BusinessError, OrderStoreError
from optistore.models.prescription import Prescription
from optistore.schemas.prescription import PrescriptionCreate, PrescriptionResponse, ReferenceNoUpdate
from optistore.services import prescription_service

router = APIRouter()


@router.post("", response_model=PrescriptionResponse, status_code=201)
def create_prescription(data: PrescriptionCreate, db: Session = Depends(get_db)):
    try:
        return prescription_service.create_prescription(db, data)
    except OrderStoreError as e:
        raise BusinessError.from_domain(e)


@router.get("/{prescription_id}", response_model=PrescriptionResponse)
def get_prescription(prescription_id: int, db: Session = Depends(get_db)):
    prescription = db.get(Prescription, prescription_id)
    if prescription is None:
        raise BusinessError.not_found("Prescription")
    return prescription


@router.put("/{prescription_id}/reference-no", response_model=PrescriptionResponse)
def update_reference_no(prescription_id: int, data: ReferenceNoUpdate, db: Session = Depends(get_db)):
    """Reference number is editable but must stay unique."""
    try:
        return prescription_service.update_reference_no(db, prescription_id, data.reference_no)
    except OrderStoreError as e:
        raise BusinessError.from_domain(e)
