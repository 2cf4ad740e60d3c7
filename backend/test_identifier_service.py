"""Identifier generator: format, collision retries and the degraded fallback."""
import logging
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from optistore.core.exceptions import ValidationError
from optistore.models.order import Order
from optistore.services import identifier_service


def test_candidate_format_is_prefix_yymm_dash_dd_suffix():
    d = date(2026, 10, 18)
    assert identifier_service.format_candidate("prescription", d, 1234) == "P2610-181234"
    assert identifier_service.format_candidate("order", d, 42) == "ORD2610-180042"
    assert identifier_service.format_candidate("bill", d, 9999) == "BILL2610-189999"


def test_unknown_kind_is_a_validation_error():
    with pytest.raises(ValidationError) as exc:
        identifier_service.format_candidate("invoice")
    assert exc.value.field == "kind"


def test_generate_returns_unused_number(db, prescription):
    generated = identifier_service.generate(db, "order", on_date=date(2026, 10, 18))
    assert generated.value.startswith("ORD2610-18")
    assert len(generated.value) == len("ORD2610-181234")
    assert generated.attempts == 1
    assert generated.degraded is False


def test_collisions_fall_back_to_degraded_identifier(db, prescription, monkeypatch, caplog):
    db.add(Order(order_no="ORD2610-181111", prescription_id=prescription.id, status="Processing"))
    db.commit()
    monkeypatch.setattr(identifier_service, "format_candidate", lambda kind, on_date=None: "ORD2610-181111")

    with caplog.at_level(logging.WARNING):
        generated = identifier_service.generate(db, "order", max_retries=3)

    assert generated.degraded is True
    assert generated.attempts == 3
    assert generated.value.startswith("ORD")
    assert len(generated.value) == len("ORD") + 10
    assert generated.value != "ORD2610-181111"
    assert "DEGRADED" in caplog.text


def test_existence_check_errors_propagate(db, monkeypatch):
    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(db, "query", broken_query)
    with pytest.raises(OperationalError):
        identifier_service.generate(db, "prescription")


def test_check_number_exists_matches_the_kind_column(db, prescription):
    assert identifier_service.check_number_exists(db, "prescription", "P2610-181234") is True
    assert identifier_service.check_number_exists(db, "reference", "P2610-181234") is True
    assert identifier_service.check_number_exists(db, "order", "P2610-181234") is False
    assert identifier_service.check_number_exists(db, "order", "") is False
