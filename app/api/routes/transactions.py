"""
Transaction API Routes
Ingest signed balance deltas for an asset
"""

from datetime import datetime
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Optional

from app.api.dependencies import get_allocation_service, get_catalog
from app.domain.services.allocation_service import AllocationService
from app.infrastructure.db.repositories.catalog_repository import CatalogRepository
from app.utils.time import to_utc_iso

router = APIRouter()


class RecordTransactionRequest(BaseModel):
    asset_id: str
    amount: float = Field(..., description="Signed amount in asset currency (negative = withdrawal)")
    timestamp: Optional[datetime] = Field(None, description="Defaults to now (UTC)")
    comment: Optional[str] = None


class TransactionResponse(BaseModel):
    asset_id: str
    amount: float
    timestamp: str


@router.post("", response_model=TransactionResponse)
async def record_transaction(
    request: RecordTransactionRequest,
    service: AllocationService = Depends(get_allocation_service),
    catalog: CatalogRepository = Depends(get_catalog),
):
    if request.amount == 0:
        raise HTTPException(status_code=400, detail="Amount must be non-zero")
    if await catalog.get_asset(request.asset_id) is None:
        raise HTTPException(status_code=404, detail=f"Asset {request.asset_id} not found")

    transaction = await service.record_transaction(
        request.asset_id, request.amount, request.timestamp, request.comment
    )
    return TransactionResponse(
        asset_id=transaction.asset_id,
        amount=transaction.amount,
        timestamp=to_utc_iso(transaction.timestamp),
    )
