"""
Human-readable, date-seeded identifiers for prescriptions and orders.

Format: PREFIX + YYMM + "-" + DD + four random digits, e.g. P2610-181234.

The existence check is advisory. Uniqueness is enforced by the store's
unique constraints; a collision that slips past the check surfaces as an
IntegrityError on write.
"""
import logging
import random
import time
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from optistore.core.audit import AuditLog
from optistore.core.config import settings
from optistore.core.exceptions import ValidationError
from optistore.models.order import Order
from optistore.models.prescription import Prescription

logger = logging.getLogger(__name__)

PREFIXES = {
    "prescription": "P",
    "reference": "R",
    "order": "ORD",
    "bill": "BILL",
}

# kind -> (model, column) that must stay unique
_UNIQUE_COLUMNS = {
    "prescription": (Prescription, Prescription.prescription_no),
    "reference": (Prescription, Prescription.reference_no),
    "order": (Order, Order.order_no),
    "bill": (Order, Order.bill_no),
}

_rng = random.SystemRandom()


@dataclass(frozen=True)
class GeneratedIdentifier:
    kind: str
    value: str
    attempts: int
    # True when the timestamp fallback was used: NOT guaranteed unique
    degraded: bool = False

    def __str__(self) -> str:
        return self.value


def _check_kind(kind: str) -> None:
    if kind not in PREFIXES:
        raise ValidationError("kind", f"unknown identifier kind '{kind}'")


def format_candidate(kind: str, on_date: date | None = None, suffix: int | None = None) -> str:
    _check_kind(kind)
    d = on_date or date.today()
    if suffix is None:
        suffix = _rng.randint(1000, 9999)
    return f"{PREFIXES[kind]}{d:%y%m}-{d:%d}{suffix:04d}"


def fallback_identifier(kind: str) -> str:
    """Last ten digits of the epoch in milliseconds. Unlikely, not impossible, to collide."""
    _check_kind(kind)
    return f"{PREFIXES[kind]}{str(int(time.time() * 1000))[-10:]}"


def check_number_exists(db: Session, kind: str, number: str) -> bool:
    """
    One read query. Store errors propagate: an identifier is never assumed
    unique when the check could not run.
    """
    _check_kind(kind)
    if not number:
        return False
    model, column = _UNIQUE_COLUMNS[kind]
    return db.query(model.id).filter(column == number).first() is not None


def generate(
    db: Session,
    kind: str,
    *,
    max_retries: int | None = None,
    on_date: date | None = None,
) -> GeneratedIdentifier:
    """
    Generate a fresh identifier of `kind`, retrying on collision up to
    `max_retries` times before falling back to a timestamp identifier.
    """
    _check_kind(kind)
    retries = settings.IDENTIFIER_MAX_RETRIES if max_retries is None else max_retries

    for attempt in range(1, retries + 1):
        candidate = format_candidate(kind, on_date)
        if not check_number_exists(db, kind, candidate):
            AuditLog.log_identifier(kind, candidate, attempt, degraded=False)
            return GeneratedIdentifier(kind=kind, value=candidate, attempts=attempt)
        logger.info(f"Attempt {attempt}: {kind} number {candidate} already taken")

    value = fallback_identifier(kind)
    logger.warning(
        f"DEGRADED {kind} identifier {value}: {retries} candidates collided, "
        f"timestamp fallback is not guaranteed unique"
    )
    AuditLog.log_identifier(kind, value, retries, degraded=True)
    return GeneratedIdentifier(kind=kind, value=value, attempts=retries, degraded=True)
