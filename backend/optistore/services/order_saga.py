"""
Saga state machine for the three-table order write.

The store only guarantees atomicity per single-table write, so an order is
written as header -> items -> payment with each step committed on its own.
If a later step fails, the earlier steps are undone by compensating writes,
newest first.

    pending -> header_written -> items_written -> committed
    pending -> failed                                   (nothing to undo)
    header_written -> rolling_back_header -> rolled_back
    items_written -> rolling_back_items -> rolling_back_header -> rolled_back
    rolling_back_* -> compensation_failed               (manual intervention)

The saga knows nothing about the store: compensations are callables handed
in by the writer, which keeps the recovery logic testable on its own.
"""
import logging
from enum import Enum
from typing import Callable, Mapping

from optistore.core.audit import AuditLog
from optistore.core.exceptions import (
    CompensationFailure,
    OrderWriteError,
    PartialWriteFailure,
    SagaStateError,
)

logger = logging.getLogger(__name__)


class SagaState(str, Enum):
    PENDING = "pending"
    HEADER_WRITTEN = "header_written"
    ITEMS_WRITTEN = "items_written"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLING_BACK_ITEMS = "rolling_back_items"
    ROLLING_BACK_HEADER = "rolling_back_header"
    ROLLED_BACK = "rolled_back"
    COMPENSATION_FAILED = "compensation_failed"


TRANSITIONS: dict[SagaState, frozenset[SagaState]] = {
    SagaState.PENDING: frozenset({SagaState.HEADER_WRITTEN, SagaState.FAILED}),
    SagaState.HEADER_WRITTEN: frozenset({SagaState.ITEMS_WRITTEN, SagaState.ROLLING_BACK_HEADER}),
    SagaState.ITEMS_WRITTEN: frozenset({SagaState.COMMITTED, SagaState.ROLLING_BACK_ITEMS}),
    SagaState.ROLLING_BACK_ITEMS: frozenset({SagaState.ROLLING_BACK_HEADER, SagaState.COMPENSATION_FAILED}),
    SagaState.ROLLING_BACK_HEADER: frozenset({SagaState.ROLLED_BACK, SagaState.COMPENSATION_FAILED}),
}

TERMINAL = frozenset({
    SagaState.COMMITTED,
    SagaState.FAILED,
    SagaState.ROLLED_BACK,
    SagaState.COMPENSATION_FAILED,
})

# Step that failed -> compensations to run, newest write first
_ROLLBACK_PLAN: dict[SagaState, tuple[tuple[str, SagaState], ...]] = {
    SagaState.HEADER_WRITTEN: (("header", SagaState.ROLLING_BACK_HEADER),),
    SagaState.ITEMS_WRITTEN: (
        ("items", SagaState.ROLLING_BACK_ITEMS),
        ("header", SagaState.ROLLING_BACK_HEADER),
    ),
}


class OrderSaga:
    """Tracks one logical order write through its states."""

    def __init__(self, order_ref: str):
        self.order_ref = order_ref
        self.state = SagaState.PENDING
        self.history: list[SagaState] = [SagaState.PENDING]
        self.order_id: int | None = None

    def __repr__(self):
        return f"<OrderSaga {self.order_ref} state={self.state.value}>"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL

    def advance(self, to: SagaState) -> None:
        allowed = TRANSITIONS.get(self.state, frozenset())
        if to not in allowed:
            raise SagaStateError(
                f"Illegal saga transition {self.state.value} -> {to.value} for {self.order_ref}"
            )
        AuditLog.log_saga_transition(self.order_ref, self.state.value, to.value)
        self.state = to
        self.history.append(to)

    def fail(self, step: str, error: BaseException) -> OrderWriteError:
        """First step failed: nothing was committed, nothing to undo."""
        self.advance(SagaState.FAILED)
        logger.warning(f"Order {self.order_ref}: step '{step}' failed before any write: {error}")
        return OrderWriteError(step, error)

    def compensate(
        self,
        failed_step: str,
        error: BaseException,
        compensations: Mapping[str, Callable[[], None]],
    ) -> PartialWriteFailure:
        """
        Undo every committed step, newest first, and return the error the
        caller should raise: PartialWriteFailure when the undo worked,
        CompensationFailure when it did not.
        """
        plan = _ROLLBACK_PLAN.get(self.state)
        if plan is None:
            raise SagaStateError(f"Nothing to compensate from state {self.state.value}")

        logger.error(f"Order {self.order_ref}: step '{failed_step}' failed ({error}); compensating")
        undone: list[str] = []
        for name, rolling_state in plan:
            self.advance(rolling_state)
            try:
                compensations[name]()
            except Exception as comp_error:
                self.advance(SagaState.COMPENSATION_FAILED)
                logger.critical(
                    f"Order {self.order_ref}: compensation of '{name}' failed after "
                    f"'{failed_step}' failed; order_id={self.order_id} is an orphaned partial write",
                    exc_info=True,
                )
                AuditLog.log_compensation(
                    self.order_ref, failed_step, repr(error), False, compensation_error=repr(comp_error)
                )
                return CompensationFailure(
                    failed_step,
                    error,
                    comp_error,
                    order_id=self.order_id,
                    compensated_steps=undone,
                )
            undone.append(name)

        self.advance(SagaState.ROLLED_BACK)
        AuditLog.log_compensation(self.order_ref, failed_step, repr(error), True)
        return PartialWriteFailure(failed_step, error, compensated_steps=undone)
