"""Identifiers: fresh prescription, reference, order and bill numbers."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from optistore.api.deps import get_db
from optistore.core.exceptions import BusinessError, OrderStoreError, from_store_error
from optistore.services import identifier_service

router = APIRouter()


class IdentifierResponse(BaseModel):
    kind: str
    value: str
    attempts: int
    degraded: bool


@router.post("/{kind}", response_model=IdentifierResponse)
def generate_identifier(kind: str, db: Session = Depends(get_db)):
    """
    Generate a number for the card. `degraded` is true when the timestamp
    fallback was used and the number is not guaranteed unique.
    """
    try:
        generated = identifier_service.generate(db, kind)
    except OrderStoreError as e:
        raise BusinessError.from_domain(e)
    except SQLAlchemyError as e:
        raise BusinessError.from_domain(from_store_error("identifier check", e))
    return IdentifierResponse(
        kind=generated.kind,
        value=generated.value,
        attempts=generated.attempts,
        degraded=generated.degraded,
    )
