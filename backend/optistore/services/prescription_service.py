"""Prescriptions: the identity anchor every order points at."""
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from optistore.core.exceptions import ValidationError, from_store_error
from optistore.models.prescription import Prescription
from optistore.schemas.prescription import PrescriptionCreate
from optistore.services import identifier_service

logger = logging.getLogger(__name__)


def _required(value: str | None, field: str, label: str) -> str:
    value = " ".join((value or "").split())
    if not value:
        raise ValidationError(field, f"{label} is required")
    return value


def _reference_taken(db: Session, reference_no: str, exclude_id: int | None = None) -> bool:
    q = db.query(Prescription.id).filter(Prescription.reference_no == reference_no)
    if exclude_id is not None:
        q = q.filter(Prescription.id != exclude_id)
    return q.first() is not None


def _integrity_error(e: IntegrityError, prescription_no: str, reference_no: str | None) -> ValidationError:
    text = str(getattr(e, "orig", e))
    if "reference_no" in text:
        return ValidationError("reference_no", f"reference number {reference_no} is already in use")
    return ValidationError("prescription_no", f"prescription number {prescription_no} is already in use")


def create_prescription(db: Session, data: PrescriptionCreate) -> Prescription:
    """
    Create a prescription. The prescription number is generated when absent
    and the reference number defaults to it. Uniqueness checks here are a
    pre-check; the unique constraints decide.
    """
    name = _required(data.name, "name", "customer name")
    mobile_no = _required(data.mobile_no, "mobile_no", "mobile number")

    values = data.model_dump(exclude={"name", "mobile_no", "prescription_no", "reference_no"})
    prescription_no = (data.prescription_no or "").strip()
    reference_no = (data.reference_no or "").strip() or None

    try:
        if not prescription_no:
            prescription_no = identifier_service.generate(db, "prescription").value
        elif identifier_service.check_number_exists(db, "prescription", prescription_no):
            raise ValidationError("prescription_no", f"prescription number {prescription_no} is already in use")

        reference_no = reference_no or prescription_no
        if _reference_taken(db, reference_no):
            raise ValidationError("reference_no", f"reference number {reference_no} is already in use")

        prescription = Prescription(
            prescription_no=prescription_no,
            reference_no=reference_no,
            name=name,
            mobile_no=mobile_no,
            **values,
        )
        db.add(prescription)
        db.commit()
        db.refresh(prescription)
    except IntegrityError as e:
        db.rollback()
        raise _integrity_error(e, prescription_no, reference_no) from e
    except SQLAlchemyError as e:
        db.rollback()
        raise from_store_error("create prescription", e) from e

    logger.info(f"Prescription {prescription.prescription_no} created (id={prescription.id})")
    return prescription


def update_reference_no(db: Session, prescription_id: int, reference_no: str) -> Prescription:
    reference_no = _required(reference_no, "reference_no", "reference number")
    try:
        prescription = db.get(Prescription, prescription_id)
        if prescription is None:
            raise ValidationError("prescription_id", f"no prescription with id {prescription_id}")
        if prescription.reference_no == reference_no:
            return prescription
        if _reference_taken(db, reference_no, exclude_id=prescription_id):
            raise ValidationError("reference_no", f"reference number {reference_no} is already in use")

        prescription.reference_no = reference_no
        db.commit()
        db.refresh(prescription)
    except IntegrityError as e:
        db.rollback()
        raise ValidationError("reference_no", f"reference number {reference_no} is already in use") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise from_store_error("update reference number", e) from e

    logger.info(f"Prescription {prescription.prescription_no}: reference number set to {reference_no}")
    return prescription
