from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from core.auth import require_user_id
from core.exceptions import InvalidArgument
from db.record_store import RecordStore, get_record_store
from schemas.inventory import InventoryTransactionCreate
from services.transaction_processor import (
    DEFAULT_HISTORY_LIMIT,
    MovementRequest,
    TransactionProcessor,
)

router = APIRouter()


def get_transaction_processor(store: RecordStore = Depends(get_record_store)) -> TransactionProcessor:
    return TransactionProcessor(store)


def _parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if value is None or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise InvalidArgument(
            "入力データが正しくありません",
            details=[{"field": field, "message": "ISO-8601 date or datetime expected"}],
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@router.get("", response_model=Dict)
async def list_inventory_transactions(
    product_id: Optional[str] = Query(None, alias="productId"),
    transaction_type: Optional[str] = Query(None, alias="transactionType"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=1000),
    user_id: str = Depends(require_user_id),
    processor: TransactionProcessor = Depends(get_transaction_processor),
):
    """
    Movement history, newest first.

    - transactionType other than IN/OUT is ignored.
    - startDate/endDate bound transaction_date inclusively.
    """
    transactions = await processor.history(
        product_id=product_id or None,
        transaction_type=transaction_type,
        start_date=_parse_date(start_date, "startDate"),
        end_date=_parse_date(end_date, "endDate"),
        limit=limit,
    )
    return {"transactions": transactions}


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_inventory_transaction(
    payload: InventoryTransactionCreate,
    response: Response,
    user_id: str = Depends(require_user_id),
    processor: TransactionProcessor = Depends(get_transaction_processor),
):
    result = await processor.apply(
        MovementRequest(
            product_id=payload.product_id,
            transaction_type=payload.transaction_type,
            quantity=payload.quantity,
            notes=payload.notes,
            acting_user=user_id,
        )
    )
    response.status_code = result.status_code
    return {"transaction": result.transaction}
