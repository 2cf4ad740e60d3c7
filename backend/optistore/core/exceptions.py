"""
Domain errors for order persistence, plus HTTP helpers for the API layer.

PRINCIPLE: Don't expose internal details to users.
Validation and duplicate errors name the offending field/value because the
user can act on them. Write failures get a generic message externally and
full detail in the logs.
"""
import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)

GENERIC_SAVE_FAILED = "Save failed, please retry."


class OrderStoreError(Exception):
    """Base class for every error raised by the order persistence core."""

    @property
    def user_message(self) -> str:
        return GENERIC_SAVE_FAILED


class ValidationError(OrderStoreError):
    """Missing or malformed required field. Raised before any write."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    @property
    def user_message(self) -> str:
        return f"{self.field}: {self.message}"


class DuplicateOrder(OrderStoreError):
    """An order with this order number already exists."""

    def __init__(self, order_no: str):
        self.order_no = order_no
        super().__init__(f"Order already exists with order number {order_no}")

    @property
    def user_message(self) -> str:
        return f"Order number {self.order_no} is already in use."


class OrderWriteError(OrderStoreError):
    """A write step failed and nothing was left behind in the store."""

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Order write failed at step '{step}': {type(cause).__name__}: {cause}")


class PartialWriteFailure(OrderWriteError):
    """A later step failed after earlier steps committed; compensation succeeded."""

    def __init__(self, step: str, cause: BaseException, compensated_steps: list[str] | None = None):
        super().__init__(step, cause)
        self.compensated_steps = list(compensated_steps or [])


class CompensationFailure(PartialWriteFailure):
    """
    Compensation itself failed. The store now holds an orphaned partial write
    and needs manual intervention.
    """

    def __init__(
        self,
        step: str,
        cause: BaseException,
        compensation_error: BaseException,
        order_id: int | None = None,
        compensated_steps: list[str] | None = None,
    ):
        super().__init__(step, cause, compensated_steps)
        self.compensation_error = compensation_error
        self.order_id = order_id
        self.args = (
            f"Order write failed at step '{step}' ({type(cause).__name__}: {cause}) "
            f"and compensation failed ({type(compensation_error).__name__}: {compensation_error}); "
            f"order_id={order_id} may be an orphaned partial write",
        )


class HistoryRecordingFailure(OrderStoreError):
    """Customer history could not be recorded. Never fatal to the deletion."""


class TransientStoreError(OrderStoreError):
    """Connectivity or timeout error from the store. Not retried here."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store unavailable during {operation}: {cause}")

    @property
    def user_message(self) -> str:
        return "The store is temporarily unavailable, please retry."


class SagaStateError(OrderStoreError):
    """Illegal saga transition. Indicates a programming error."""


def is_transient(error: SQLAlchemyError) -> bool:
    """Connectivity, disconnect or pool timeout: worth a retry by the caller."""
    if isinstance(error, (OperationalError, DisconnectionError, PoolTimeoutError)):
        return True
    return bool(getattr(error, "connection_invalidated", False))


def from_store_error(operation: str, error: SQLAlchemyError) -> OrderStoreError:
    """Wrap a store error raised outside the saga steps."""
    if is_transient(error):
        return TransientStoreError(operation, error)
    return OrderWriteError(operation, error)


class BusinessError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def not_found(resource: str = "Resource") -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )

    @staticmethod
    def bad_request(detail: str) -> HTTPException:
        """
        400 for input validation errors.
        OK to include specific details here since user caused the issue.
        """
        logger.info(f"Bad request: {detail}")
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )

    @staticmethod
    def conflict(detail: str) -> HTTPException:
        logger.info(f"Conflict: {detail}")
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        """
        Generic 500 - logs actual error internally, hides from user.
        """
        if isinstance(original_error, CompensationFailure):
            logger.critical(f"Orphaned partial write: {original_error}")
        elif original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}"
            )
        else:
            logger.error("Internal server error occurred")

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=GENERIC_SAVE_FAILED,
        )

    @staticmethod
    def unavailable(original_error: Exception = None) -> HTTPException:
        logger.warning(f"Store unavailable: {original_error}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The store is temporarily unavailable, please retry.",
        )

    @staticmethod
    def from_domain(error: OrderStoreError) -> HTTPException:
        """Map a domain error onto the matching HTTP response."""
        if isinstance(error, ValidationError):
            return BusinessError.bad_request(error.user_message)
        if isinstance(error, DuplicateOrder):
            return BusinessError.conflict(error.user_message)
        if isinstance(error, TransientStoreError):
            return BusinessError.unavailable(error)
        return BusinessError.server_error(error)
