"""Customer history: record removed items and look them up again."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from optistore.api.deps import get_db
from optistore.core.exceptions import BusinessError
from optistore.schemas.customer_history import (
    DeletionRecordRequest,
    HistoryListResponse,
    HistoryPage,
    HistoryResultResponse,
)
from optistore.services import customer_history_service as history

router = APIRouter()


@router.post("/deleted-items", response_model=HistoryResultResponse)
def record_deleted_item(data: DeletionRecordRequest, db: Session = Depends(get_db)):
    """
    Always 200: a failed recording comes back as success=false so the card
    can carry on with the deletion and show a warning.
    """
    result = history.record_deletion(db, data.customer, data.item)
    return HistoryResultResponse(success=result.success, message=result.message, data=result.data)


@router.get("/by-field", response_model=HistoryResultResponse)
def search_by_field(
    field: str = Query(..., pattern="^(reference_no|prescription_no)$"),
    value: str = Query(...),
    db: Session = Depends(get_db),
):
    result = history.search_by_field(db, field, value)
    return HistoryResultResponse(success=result.success, message=result.message, data=result.data)


@router.get("/search", response_model=HistoryListResponse)
def search_histories(q: str = Query(...), db: Session = Depends(get_db)):
    """Name or mobile search, limited to customers that still exist."""
    result = history.search(db, q)
    return HistoryListResponse(success=result.success, message=result.message, data=result.data or [])


@router.get("/customer/{customer_id}", response_model=HistoryResultResponse)
def get_by_customer_id(customer_id: str, db: Session = Depends(get_db)):
    result = history.get_by_customer_id(db, customer_id)
    return HistoryResultResponse(success=result.success, message=result.message, data=result.data)


@router.get("/mobile/{mobile_no}", response_model=HistoryResultResponse)
def get_by_mobile(mobile_no: str, db: Session = Depends(get_db)):
    result = history.get_by_mobile(db, mobile_no)
    return HistoryResultResponse(success=result.success, message=result.message, data=result.data)


@router.get("", response_model=HistoryPage)
def list_histories(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    result = history.list_histories(db, page, limit)
    if not result.success:
        raise BusinessError.server_error()
    return result.data
