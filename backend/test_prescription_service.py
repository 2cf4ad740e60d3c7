"""Prescriptions: required fields, generated numbers and reference uniqueness."""
import pytest

from optistore.core.exceptions import ValidationError
from optistore.schemas.prescription import PrescriptionCreate
from optistore.services import prescription_service


def _data(**overrides):
    data = {"name": "Ravi Kumar", "mobile_no": "9123456780"}
    data.update(overrides)
    return PrescriptionCreate(**data)


def test_number_is_generated_and_reference_defaults_to_it(db):
    rx = prescription_service.create_prescription(db, _data())

    assert rx.id is not None
    assert rx.prescription_no.startswith("P")
    assert rx.reference_no == rx.prescription_no
    assert rx.source == "OrderCard"


@pytest.mark.parametrize("field, overrides", [("name", {"name": "  "}), ("mobile_no", {"mobile_no": ""})])
def test_missing_customer_fields_are_named(db, field, overrides):
    with pytest.raises(ValidationError) as exc:
        prescription_service.create_prescription(db, _data(**overrides))
    assert exc.value.field == field


def test_reference_must_stay_unique(db, prescription):
    with pytest.raises(ValidationError) as exc:
        prescription_service.create_prescription(db, _data(reference_no=prescription.reference_no))
    assert exc.value.field == "reference_no"


def test_explicit_prescription_number_must_be_free(db, prescription):
    with pytest.raises(ValidationError) as exc:
        prescription_service.create_prescription(db, _data(prescription_no=prescription.prescription_no))
    assert exc.value.field == "prescription_no"


def test_update_reference_no(db, prescription):
    other = prescription_service.create_prescription(db, _data(reference_no="R2610-180001"))

    updated = prescription_service.update_reference_no(db, prescription.id, "R2610-189999")
    assert updated.reference_no == "R2610-189999"

    with pytest.raises(ValidationError) as exc:
        prescription_service.update_reference_no(db, prescription.id, other.reference_no)
    assert exc.value.field == "reference_no"

    with pytest.raises(ValidationError):
        prescription_service.update_reference_no(db, 999, "R-1")
