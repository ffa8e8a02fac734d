"""
Catalog Repository
Read-only lookup of assets and goals by id
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Iterable, List, Optional

from app.infrastructure.db.models import AssetModel, GoalModel
from app.domain.models import Asset, Goal


class CatalogRepository:
    """Repository for Asset and Goal lookups"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_assets(self) -> List[Asset]:
        result = await self.session.execute(select(AssetModel).order_by(AssetModel.id))
        return [self._asset_to_domain(m) for m in result.scalars().all()]

    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        model = await self.session.get(AssetModel, asset_id)
        return self._asset_to_domain(model) if model else None

    async def get_goals(self, goal_ids: Iterable[str]) -> List[Goal]:
        ids = list(goal_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(GoalModel).where(GoalModel.id.in_(ids)).order_by(GoalModel.id)
        )
        return [self._goal_to_domain(m) for m in result.scalars().all()]

    async def get_goal(self, goal_id: str) -> Optional[Goal]:
        model = await self.session.get(GoalModel, goal_id)
        return self._goal_to_domain(model) if model else None

    @staticmethod
    def _asset_to_domain(model: AssetModel) -> Asset:
        return Asset(id=model.id, currency=model.currency, name=model.name or "")

    @staticmethod
    def _goal_to_domain(model: GoalModel) -> Goal:
        return Goal(
            id=model.id,
            name=model.name,
            currency=model.currency,
            target_amount=model.target_amount,
            deadline=model.deadline,
        )
