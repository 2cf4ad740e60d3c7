"""
Audit logging for order persistence.

Every multi-step write, compensation, degraded identifier and history
recording outcome is logged as one JSON object on the "audit" logger so an
operator can reconstruct what reached the store.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional, Dict

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for order persistence events."""

    @staticmethod
    def log_order_event(
        action: str,  # "create", "update", "duplicate_rejected"
        order_no: str,
        order_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Log order header/items/payment writes.

        Usage:
            AuditLog.log_order_event("create", "ORD2610-181234", order_id=12)
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"order.{action}",
            "order_no": order_no,
            "order_id": order_id,
        }

        if details:
            log_entry["details"] = details

        audit_logger.info(json.dumps(log_entry, default=str))

    @staticmethod
    def log_saga_transition(order_ref: str, from_state: str, to_state: str):
        log_entry = {
            "timestamp": _now(),
            "event_type": "order.saga_transition",
            "order_ref": order_ref,
            "from": from_state,
            "to": to_state,
        }
        audit_logger.debug(json.dumps(log_entry))

    @staticmethod
    def log_compensation(
        order_ref: str,
        failed_step: str,
        error: str,
        success: bool,
        compensation_error: str = "",
    ):
        """
        Log a compensating delete/restore after a failed step.

        A failed compensation is logged at CRITICAL: the store holds an
        orphaned partial write until someone fixes it by hand.

        Usage:
            AuditLog.log_compensation("ORD2610-181234", "items", "IntegrityError", True)
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": "order.compensation",
            "order_ref": order_ref,
            "failed_step": failed_step,
            "error": error,
            "success": success,
        }

        if not success:
            log_entry["event_severity"] = "CRITICAL"
            log_entry["compensation_error"] = compensation_error
            audit_logger.critical(json.dumps(log_entry))
        else:
            audit_logger.warning(json.dumps(log_entry))

    @staticmethod
    def log_identifier(kind: str, value: str, attempts: int, degraded: bool):
        """
        Log identifier generation. Degraded (timestamp fallback) identifiers are
        not guaranteed unique and are logged at WARNING.
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": "identifier.degraded" if degraded else "identifier.generated",
            "kind": kind,
            "value": value,
            "attempts": attempts,
        }

        if degraded:
            audit_logger.warning(json.dumps(log_entry))
        else:
            audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_history_event(
        action: str,  # "appended", "created", "duplicate", "failed"
        customer_key: str,
        item_id: str,
        success: bool,
        reason: str = "",
    ):
        log_entry = {
            "timestamp": _now(),
            "event_type": f"customer_history.{action}",
            "customer_key": customer_key,
            "item_id": item_id,
            "success": success,
        }

        if reason:
            log_entry["reason"] = reason

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_generated_drift(order_id: int, field: str, expected: str, actual: str):
        """Store-generated column disagrees with the computed expectation."""
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "order_payment.generated_drift",
            "order_id": order_id,
            "field": field,
            "expected": expected,
            "actual": actual,
        }
        audit_logger.warning(json.dumps(log_entry))
