"""
Allocation API Routes
Set or remove the target amount of an asset earmarked for a goal
"""

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import get_allocation_service, get_catalog
from app.domain.services.allocation_service import AllocationService
from app.infrastructure.db.repositories.catalog_repository import CatalogRepository

router = APIRouter()


class SetAllocationRequest(BaseModel):
    asset_id: str
    goal_id: str
    amount: float = Field(..., ge=0, description="Target amount in asset currency")


class AllocationResponse(BaseModel):
    asset_id: str
    goal_id: str
    amount: float


@router.put("", response_model=AllocationResponse)
async def set_allocation(
    request: SetAllocationRequest,
    service: AllocationService = Depends(get_allocation_service),
    catalog: CatalogRepository = Depends(get_catalog),
):
    if await catalog.get_asset(request.asset_id) is None:
        raise HTTPException(status_code=404, detail=f"Asset {request.asset_id} not found")
    if await catalog.get_goal(request.goal_id) is None:
        raise HTTPException(status_code=404, detail=f"Goal {request.goal_id} not found")

    allocation = await service.set_allocation(request.asset_id, request.goal_id, request.amount)
    return AllocationResponse(
        asset_id=allocation.asset_id,
        goal_id=allocation.goal_id,
        amount=allocation.amount,
    )


@router.delete("/{asset_id}/{goal_id}")
async def remove_allocation(
    asset_id: str,
    goal_id: str,
    service: AllocationService = Depends(get_allocation_service),
):
    removed = await service.remove_allocation(asset_id, goal_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Allocation not found")
    return {"status": "removed", "asset_id": asset_id, "goal_id": goal_id}
