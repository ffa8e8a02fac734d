"""
ALLOCATION SERVICE - ASYNC
Mutates allocation targets and records them in the allocation history;
ingests asset transactions

Every target change appends exactly one history row stamped at the change
instant, so derivation can reconstruct what a target was at any past time.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Protocol

from app.domain.models import Allocation, AllocationHistoryEntry, Transaction
from app.domain.services.derivation_engine import EPSILON
from app.infrastructure.cache.progress_cache import ProgressCache
from app.utils.serial_executor import LEDGER_QUEUE_KEY, KeyedSerialExecutor
from app.utils.time import month_label, now_utc_naive, to_utc_naive

logger = logging.getLogger(__name__)


class AllocationStore(Protocol):
    """Protocol for allocation ledger access - ASYNC"""

    async def list_allocations(self, goal_ids: Optional[Iterable[str]] = None) -> List[Allocation]:
        ...

    async def get_allocation(self, asset_id: str, goal_id: str) -> Optional[Allocation]:
        ...

    async def upsert_allocation(self, asset_id: str, goal_id: str, amount: float) -> Allocation:
        ...

    async def delete_allocation(self, asset_id: str, goal_id: str) -> bool:
        ...

    async def append_allocation_history(
        self,
        asset_id: str,
        goal_id: str,
        amount: float,
        timestamp: datetime,
        month_label: Optional[str] = None,
    ) -> AllocationHistoryEntry:
        ...

    async def add_transaction(
        self,
        asset_id: str,
        amount: float,
        timestamp: datetime,
        comment: Optional[str] = None,
    ) -> Transaction:
        ...

    async def save(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class AllocationService:
    def __init__(
        self,
        ledger: AllocationStore,
        cache: ProgressCache,
        executor: KeyedSerialExecutor,
        clock: Callable[[], datetime] = now_utc_naive,
    ):
        self.ledger = ledger
        self.cache = cache
        self.executor = executor
        self.clock = clock

    async def set_allocation(self, asset_id: str, goal_id: str, amount: float) -> Allocation:
        """
        Set the target of an (asset, goal) pair. Negative amounts are floored
        at zero; unchanged targets write nothing.
        """
        amount = max(0.0, amount)

        async def operation() -> Allocation:
            current = await self.ledger.get_allocation(asset_id, goal_id)
            if current is not None and abs(current.amount - amount) <= EPSILON:
                return current

            now = self.clock()
            allocation = await self.ledger.upsert_allocation(asset_id, goal_id, amount)
            await self.ledger.append_allocation_history(
                asset_id, goal_id, amount, now, month_label(now)
            )
            await self.ledger.save()
            logger.info("Allocation %s -> %s set to %.8f", asset_id, goal_id, amount)
            return allocation

        allocation = await self._serialized(operation)
        self.cache.invalidate_all()
        return allocation

    async def remove_allocation(self, asset_id: str, goal_id: str) -> bool:
        """Drop an allocation, recording a zero target in the history"""

        async def operation() -> bool:
            current = await self.ledger.get_allocation(asset_id, goal_id)
            if current is None:
                return False

            now = self.clock()
            await self.ledger.append_allocation_history(asset_id, goal_id, 0.0, now, month_label(now))
            await self.ledger.delete_allocation(asset_id, goal_id)
            await self.ledger.save()
            logger.info("Allocation %s -> %s removed", asset_id, goal_id)
            return True

        removed = await self._serialized(operation)
        if removed:
            self.cache.invalidate_all()
        return removed

    async def record_transaction(
        self,
        asset_id: str,
        amount: float,
        timestamp: Optional[datetime] = None,
        comment: Optional[str] = None,
    ) -> Transaction:
        """Append a signed balance delta and drop every cached progress total"""

        async def operation() -> Transaction:
            at = to_utc_naive(timestamp) if timestamp is not None else self.clock()
            transaction = await self.ledger.add_transaction(asset_id, amount, at, comment)
            await self.ledger.save()
            logger.info("Transaction %.8f recorded for asset %s at %s", amount, asset_id, at)
            return transaction

        transaction = await self._serialized(operation)
        self.cache.invalidate_all()
        return transaction

    async def _serialized(self, operation):
        async def unit_of_work():
            try:
                return await operation()
            except Exception:
                await self.ledger.rollback()
                raise

        return await self.executor.run(LEDGER_QUEUE_KEY, unit_of_work)
