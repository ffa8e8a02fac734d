"""
Ledger Repository
Transactions, allocations and allocation history

Transactions are read-only here except for the collaborator ingest path.
Allocation history is append-only; baseline rows of a month are the only
rows ever replaced.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from app.infrastructure.db.models import (
    AllocationHistoryModel,
    AssetAllocationModel,
    AssetTransactionModel,
)
from app.domain.models import Allocation, AllocationHistoryEntry, Transaction
from app.utils.time import now_utc_naive


class LedgerRepository:
    """Repository for the allocation and transaction ledgers"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------
    # Allocations
    # ------------------------------------------------------------

    async def list_allocations(self, goal_ids: Optional[Iterable[str]] = None) -> List[Allocation]:
        stmt = select(AssetAllocationModel).order_by(
            AssetAllocationModel.asset_id, AssetAllocationModel.goal_id
        )
        if goal_ids is not None:
            ids = list(goal_ids)
            if not ids:
                return []
            stmt = stmt.where(AssetAllocationModel.goal_id.in_(ids))
        result = await self.session.execute(stmt)
        return [self._allocation_to_domain(m) for m in result.scalars().all()]

    async def get_allocation(self, asset_id: str, goal_id: str) -> Optional[Allocation]:
        model = await self._allocation_model(asset_id, goal_id)
        return self._allocation_to_domain(model) if model else None

    async def upsert_allocation(self, asset_id: str, goal_id: str, amount: float) -> Allocation:
        model = await self._allocation_model(asset_id, goal_id)
        if model is None:
            model = AssetAllocationModel(asset_id=asset_id, goal_id=goal_id, amount=amount)
            self.session.add(model)
        else:
            model.amount = amount
            model.updated_at = now_utc_naive()
        await self.session.flush()
        return self._allocation_to_domain(model)

    async def delete_allocation(self, asset_id: str, goal_id: str) -> bool:
        result = await self.session.execute(
            delete(AssetAllocationModel).where(
                AssetAllocationModel.asset_id == asset_id,
                AssetAllocationModel.goal_id == goal_id,
            )
        )
        await self.session.flush()
        return result.rowcount > 0

    async def _allocation_model(self, asset_id: str, goal_id: str) -> Optional[AssetAllocationModel]:
        result = await self.session.execute(
            select(AssetAllocationModel).where(
                AssetAllocationModel.asset_id == asset_id,
                AssetAllocationModel.goal_id == goal_id,
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------

    async def list_transactions(self, asset_ids: Iterable[str], end: datetime) -> List[Transaction]:
        """All transactions of the given assets with timestamp <= end"""
        ids = list(asset_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(AssetTransactionModel)
            .where(
                AssetTransactionModel.asset_id.in_(ids),
                AssetTransactionModel.timestamp <= end,
            )
            .order_by(AssetTransactionModel.timestamp, AssetTransactionModel.id)
        )
        return [
            Transaction(asset_id=m.asset_id, timestamp=m.timestamp, amount=m.amount)
            for m in result.scalars().all()
        ]

    async def add_transaction(
        self,
        asset_id: str,
        amount: float,
        timestamp: datetime,
        comment: Optional[str] = None,
    ) -> Transaction:
        """Ingest path for the balance-source collaborator"""
        model = AssetTransactionModel(
            asset_id=asset_id,
            amount=amount,
            timestamp=timestamp,
            comment=comment,
        )
        self.session.add(model)
        await self.session.flush()
        return Transaction(asset_id=asset_id, timestamp=timestamp, amount=amount)

    # ------------------------------------------------------------
    # Allocation history
    # ------------------------------------------------------------

    async def list_allocation_history(
        self, goal_ids: Iterable[str], end: datetime
    ) -> List[AllocationHistoryEntry]:
        """History rows for the given goals with timestamp <= end, in creation order"""
        ids = list(goal_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(AllocationHistoryModel)
            .where(
                AllocationHistoryModel.goal_id.in_(ids),
                AllocationHistoryModel.timestamp <= end,
            )
            .order_by(AllocationHistoryModel.id)
        )
        return [self._history_to_domain(m) for m in result.scalars().all()]

    async def append_allocation_history(
        self,
        asset_id: str,
        goal_id: str,
        amount: float,
        timestamp: datetime,
        month_label: Optional[str] = None,
    ) -> AllocationHistoryEntry:
        model = AllocationHistoryModel(
            asset_id=asset_id,
            goal_id=goal_id,
            amount=amount,
            timestamp=timestamp,
            month_label=month_label,
        )
        self.session.add(model)
        await self.session.flush()
        return self._history_to_domain(model)

    async def list_baseline_entries(
        self, month_label: str, timestamp: datetime
    ) -> List[AllocationHistoryEntry]:
        result = await self.session.execute(
            select(AllocationHistoryModel)
            .where(
                AllocationHistoryModel.month_label == month_label,
                AllocationHistoryModel.timestamp == timestamp,
            )
            .order_by(AllocationHistoryModel.id)
        )
        return [self._history_to_domain(m) for m in result.scalars().all()]

    async def replace_baseline(
        self,
        month_label: str,
        timestamp: datetime,
        allocations: Sequence[Allocation],
    ) -> int:
        """
        Purge the month's baseline rows at `timestamp` and re-seed them from
        `allocations`. Runs in a savepoint so a failure leaves the outer unit
        of work usable.

        Returns:
            Number of rows written
        """
        async with self.session.begin_nested():
            await self.session.execute(
                delete(AllocationHistoryModel).where(
                    AllocationHistoryModel.month_label == month_label,
                    AllocationHistoryModel.timestamp == timestamp,
                )
            )
            for allocation in allocations:
                self.session.add(
                    AllocationHistoryModel(
                        asset_id=allocation.asset_id,
                        goal_id=allocation.goal_id,
                        amount=allocation.amount,
                        timestamp=timestamp,
                        month_label=month_label,
                    )
                )
            await self.session.flush()
        return len(allocations)

    # ------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------

    async def save(self) -> None:
        """Durable commit point"""
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    @staticmethod
    def _allocation_to_domain(model: AssetAllocationModel) -> Allocation:
        return Allocation(asset_id=model.asset_id, goal_id=model.goal_id, amount=model.amount)

    @staticmethod
    def _history_to_domain(model: AllocationHistoryModel) -> AllocationHistoryEntry:
        return AllocationHistoryEntry(
            asset_id=model.asset_id,
            goal_id=model.goal_id,
            amount=model.amount,
            timestamp=model.timestamp,
            creation_order=model.id or 0,
            month_label=model.month_label,
        )
