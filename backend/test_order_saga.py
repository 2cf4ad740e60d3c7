"""Order saga state machine, independent of the store."""
import pytest

from optistore.core.exceptions import CompensationFailure, PartialWriteFailure, SagaStateError
from optistore.services.order_saga import OrderSaga, SagaState


def test_happy_path_records_every_state():
    saga = OrderSaga("ORD-1")
    saga.advance(SagaState.HEADER_WRITTEN)
    saga.advance(SagaState.ITEMS_WRITTEN)
    saga.advance(SagaState.COMMITTED)

    assert saga.is_terminal
    assert saga.history == [
        SagaState.PENDING,
        SagaState.HEADER_WRITTEN,
        SagaState.ITEMS_WRITTEN,
        SagaState.COMMITTED,
    ]


def test_illegal_transition_raises():
    saga = OrderSaga("ORD-1")
    with pytest.raises(SagaStateError):
        saga.advance(SagaState.COMMITTED)
    assert saga.state is SagaState.PENDING


def test_nothing_to_compensate_before_first_write():
    with pytest.raises(SagaStateError):
        OrderSaga("ORD-1").compensate("header", RuntimeError("x"), {})


def test_compensation_runs_newest_first():
    calls = []
    saga = OrderSaga("ORD-1")
    saga.advance(SagaState.HEADER_WRITTEN)
    saga.advance(SagaState.ITEMS_WRITTEN)

    error = saga.compensate(
        "payment",
        RuntimeError("payment insert failed"),
        {"items": lambda: calls.append("items"), "header": lambda: calls.append("header")},
    )

    assert isinstance(error, PartialWriteFailure)
    assert not isinstance(error, CompensationFailure)
    assert calls == ["items", "header"]
    assert error.step == "payment"
    assert error.compensated_steps == ["items", "header"]
    assert saga.state is SagaState.ROLLED_BACK
    assert SagaState.ROLLING_BACK_ITEMS in saga.history


def test_failed_compensation_is_distinct():
    saga = OrderSaga("ORD-1")
    saga.order_id = 7
    saga.advance(SagaState.HEADER_WRITTEN)

    def broken():
        raise RuntimeError("delete failed")

    error = saga.compensate("items", RuntimeError("items insert failed"), {"header": broken})

    assert isinstance(error, CompensationFailure)
    assert error.order_id == 7
    assert str(error.compensation_error) == "delete failed"
    assert str(error.cause) == "items insert failed"
    assert saga.state is SagaState.COMPENSATION_FAILED
    assert "orphaned" in str(error)
