"""
EXECUTION TRACKING SERVICE - ASYNC
Lifecycle manager for monthly execution records

RESPONSIBILITIES:
- draft -> executing -> closed state machine with a bounded undo window
- Seed the allocation-history baseline that anchors derivation
- Freeze an immutable CompletedExecution at closure
- Serve live (executing) or frozen (closed) contribution totals

RULES:
✅ One serialized writer per month label, sharing the ledger queue with
   allocation and transaction writes
✅ One commit per lifecycle transition, rollback on failure
✅ Baseline reseed and cache refresh failures are logged, not raised
❌ Never persists raw "contribution = deposit" records
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, TypeVar

from app.config import settings
from app.domain.errors import RecordAlreadyExistsError, RecordNotFoundError
from app.domain.models import (
    Allocation,
    AllocationHistoryEntry,
    CompletedExecution,
    ExecutionSnapshot,
    ExecutionStatus,
    Goal,
    GoalProgress,
    MonthlyExecutionRecord,
    PlannedAmount,
)
from app.domain.services.contribution_aggregator import ContributionAggregator
from app.domain.services.derivation_engine import DerivationEngine
from app.infrastructure.cache.progress_cache import ProgressCache
from app.utils.serial_executor import LEDGER_QUEUE_KEY, KeyedSerialExecutor
from app.utils.time import month_label as month_label_for, now_utc_naive

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExecutionRecordStore(Protocol):
    """Protocol for execution record data access - ASYNC"""

    async def get_by_month(self, month_label: str) -> Optional[MonthlyExecutionRecord]:
        ...

    async def get_by_id(self, record_id: str) -> Optional[MonthlyExecutionRecord]:
        ...

    async def get_active(self) -> Optional[MonthlyExecutionRecord]:
        ...

    async def list_completed(self, limit: int = 10, offset: int = 0) -> List[MonthlyExecutionRecord]:
        ...

    async def count(self) -> int:
        ...

    async def create(self, record: MonthlyExecutionRecord) -> MonthlyExecutionRecord:
        ...

    async def save(self, record: MonthlyExecutionRecord) -> MonthlyExecutionRecord:
        ...

    async def replace_completed_execution(self, record_id: str, completed: CompletedExecution) -> None:
        ...

    async def delete_completed_execution(self, record_id: str) -> None:
        ...

    async def delete(self, record_id: str) -> None:
        ...


class BaselineStore(Protocol):
    """Protocol for baseline seeding and the unit-of-work commit - ASYNC"""

    async def list_allocations(self, goal_ids: Optional[Iterable[str]] = None) -> List[Allocation]:
        ...

    async def list_baseline_entries(self, month_label: str, timestamp: datetime) -> List[AllocationHistoryEntry]:
        ...

    async def replace_baseline(
        self, month_label: str, timestamp: datetime, allocations: Sequence[Allocation]
    ) -> int:
        ...

    async def save(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class ExecutionTrackingService:
    """
    Execution Tracking Service - ASYNC VERSION
    Orchestrates derivation, aggregation, caching and snapshotting per month
    """

    def __init__(
        self,
        records: ExecutionRecordStore,
        ledger: BaselineStore,
        engine: DerivationEngine,
        aggregator: ContributionAggregator,
        cache: Optional[ProgressCache] = None,
        executor: Optional[KeyedSerialExecutor] = None,
        clock: Callable[[], datetime] = now_utc_naive,
        undo_window: timedelta = timedelta(hours=settings.UNDO_WINDOW_HOURS),
    ):
        self.records = records
        self.ledger = ledger
        self.engine = engine
        self.aggregator = aggregator
        self.cache = cache if cache is not None else ProgressCache()
        self.executor = executor if executor is not None else KeyedSerialExecutor()
        self.clock = clock
        self.undo_window = undo_window

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    async def get_record(self, month_label: str) -> Optional[MonthlyExecutionRecord]:
        return await self.records.get_by_month(month_label)

    async def get_record_by_id(self, record_id: str) -> MonthlyExecutionRecord:
        record = await self.records.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(f"Execution record {record_id} not found")
        return record

    async def get_current_month_record(self) -> Optional[MonthlyExecutionRecord]:
        return await self.get_record(month_label_for(self.clock()))

    async def get_active_record(self) -> Optional[MonthlyExecutionRecord]:
        return await self.records.get_active()

    async def get_completed_records(self, limit: int = 10, offset: int = 0) -> List[MonthlyExecutionRecord]:
        return await self.records.list_completed(limit=limit, offset=offset)

    async def count_records(self) -> int:
        return await self.records.count()

    # ------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------

    async def start_tracking(
        self,
        month_label: str,
        plans: List[PlannedAmount],
        goals: List[Goal],
    ) -> MonthlyExecutionRecord:
        """
        Start (or refresh) tracking for a month.

        A new month gets a record in `executing` with a planned snapshot and a
        baseline seeded at the start instant. An existing draft/executing
        record has its stale completion artifact purged, its snapshot refreshed
        and its baseline re-seeded when incomplete; the undo clock only starts
        if it never did.

        Raises:
            RecordAlreadyExistsError: the month is already closed
        """
        logger.info("Starting execution tracking for month: %s", month_label)

        async def operation() -> MonthlyExecutionRecord:
            now = self.clock()
            goal_ids = [plan.goal_id for plan in plans]
            snapshot = ExecutionSnapshot.create(now, plans, goals)
            existing = await self.records.get_by_month(month_label)

            if existing is not None:
                if existing.status == ExecutionStatus.CLOSED:
                    raise RecordAlreadyExistsError(
                        f"Execution record for {month_label} is already closed"
                    )

                if existing.completed_execution is not None:
                    await self.records.delete_completed_execution(existing.id)
                    existing.completed_execution = None

                existing.goal_ids = goal_ids
                existing.snapshot = snapshot

                if existing.status == ExecutionStatus.DRAFT:
                    existing.start_tracking(now, self.undo_window)
                elif existing.started_at is None:
                    existing.started_at = now
                    existing.can_undo_until = now + self.undo_window

                await self.records.save(existing)
                record = existing
            else:
                record = MonthlyExecutionRecord(
                    id=str(uuid.uuid4()),
                    month_label=month_label,
                    goal_ids=goal_ids,
                    created_at=now,
                    snapshot=snapshot,
                )
                record.start_tracking(now, self.undo_window)
                await self.records.create(record)

            await self._seed_baseline(record)
            await self.ledger.save()
            return record

        record = await self._serialized(month_label, operation)
        self.cache.invalidate(record.id)
        logger.info("Execution tracking started for %s (record %s)", month_label, record.id)
        return record

    async def mark_complete(self, record: MonthlyExecutionRecord) -> MonthlyExecutionRecord:
        """
        executing -> closed, freezing derived contributions into an immutable
        CompletedExecution that replaces any prior artifact.

        Raises:
            RecordNotFoundError, InvalidStateError
        """

        async def operation() -> MonthlyExecutionRecord:
            current = await self.get_record_by_id(record.id)
            now = self.clock()
            current.mark_complete(now, self.undo_window)

            events = []
            if current.started_at is not None and now >= current.started_at:
                events = await self.engine.derived_events(current, end=now)
            rates, contributions = await self.aggregator.build_contribution_snapshots(events)

            completed = CompletedExecution(
                month_label=current.month_label,
                completed_at=now,
                exchange_rates=rates,
                goal_snapshots=current.snapshot.goal_snapshots if current.snapshot else (),
                contribution_snapshots=tuple(contributions),
            )
            await self.records.replace_completed_execution(current.id, completed)
            current.completed_execution = completed

            await self.records.save(current)
            await self.ledger.save()
            logger.info(
                "Execution %s closed with %d contribution snapshots",
                current.month_label, len(contributions),
            )
            return current

        updated = await self._serialized(record.month_label, operation)
        self.cache.invalidate(updated.id)
        return updated

    async def undo_completion(self, record: MonthlyExecutionRecord) -> MonthlyExecutionRecord:
        """
        closed -> executing within the undo window; drops the completion artifact.

        Raises:
            RecordNotFoundError, InvalidStateError, UndoPeriodExpiredError
        """

        async def operation() -> MonthlyExecutionRecord:
            current = await self.get_record_by_id(record.id)
            current.undo_completion(self.clock())
            await self.records.delete_completed_execution(current.id)
            current.completed_execution = None
            await self.records.save(current)
            await self.ledger.save()
            logger.info("Execution completion undone for %s", current.month_label)
            return current

        updated = await self._serialized(record.month_label, operation)
        self.cache.invalidate(updated.id)
        return updated

    async def undo_start_tracking(self, record: MonthlyExecutionRecord) -> MonthlyExecutionRecord:
        """
        executing -> draft within the undo window; drops the planned snapshot.

        Raises:
            RecordNotFoundError, InvalidStateError, UndoPeriodExpiredError
        """

        async def operation() -> MonthlyExecutionRecord:
            current = await self.get_record_by_id(record.id)
            current.undo_start_tracking(self.clock())
            current.snapshot = None
            await self.records.save(current)
            await self.ledger.save()
            logger.info("Execution start undone for %s", current.month_label)
            return current

        updated = await self._serialized(record.month_label, operation)
        self.cache.invalidate(updated.id)
        return updated

    async def delete_record(self, record: MonthlyExecutionRecord) -> None:
        """Administrative delete"""

        async def operation() -> None:
            await self.records.delete(record.id)
            await self.ledger.save()

        await self._serialized(record.month_label, operation)
        self.cache.invalidate(record.id)
        logger.warning("Execution record %s (%s) deleted", record.id, record.month_label)

    # ------------------------------------------------------------
    # Contribution totals & progress
    # ------------------------------------------------------------

    async def get_derived_contribution_totals(self, record: MonthlyExecutionRecord) -> Dict[str, float]:
        """
        Total contributed per goal, in goal currency.

        Closed months return the frozen completion totals; executing months
        are derived live from the ledgers. Drafts have no contributions.
        """
        if record.status == ExecutionStatus.CLOSED:
            if record.completed_execution is None:
                return {}
            return record.completed_execution.contributed_totals_by_goal_id

        if record.status != ExecutionStatus.EXECUTING:
            return {}

        cached = self.cache.get(record.id)
        if cached is not None:
            return cached

        events = await self.engine.derived_events(record, end=self.clock())
        totals = await self.aggregator.totals_by_goal(events)

        try:
            self.cache.set(record.id, totals)
        except Exception as exc:
            logger.warning("Progress cache refresh failed for %s: %s", record.id, exc)
        return totals

    async def calculate_progress(self, record: MonthlyExecutionRecord) -> float:
        """Total contributed / total planned, as a percentage (0 when nothing is planned)"""
        if record.status == ExecutionStatus.DRAFT or record.snapshot is None:
            return 0.0

        total_planned = record.snapshot.total_planned
        if total_planned <= 0:
            return 0.0

        totals = await self.get_derived_contribution_totals(record)
        return (sum(totals.values()) / total_planned) * 100

    async def get_goal_progress(self, record: MonthlyExecutionRecord) -> List[GoalProgress]:
        """Planned vs contributed for each goal in the record's snapshot"""
        if record.snapshot is None:
            return []

        totals = await self.get_derived_contribution_totals(record)
        progress = [
            GoalProgress(
                goal_snapshot=snapshot,
                planned_amount=snapshot.planned_amount,
                contributed=totals.get(snapshot.goal_id, 0.0),
            )
            for snapshot in record.snapshot.goal_snapshots
        ]
        return sorted(progress, key=lambda p: p.goal_snapshot.goal_name)

    async def convert_amount(self, amount: float, from_currency: str, to_currency: str) -> Optional[float]:
        """Fail-soft conversion for display (None when no rate is available)"""
        return await self.aggregator.new_normalizer().convert(amount, from_currency, to_currency)

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    async def _serialized(self, month_label: str, operation: Callable[[], Awaitable[T]]) -> T:
        async def unit_of_work() -> T:
            try:
                return await operation()
            except Exception:
                await self.ledger.rollback()
                raise

        return await self.executor.run_all([LEDGER_QUEUE_KEY, month_label], unit_of_work)

    async def _seed_baseline(self, record: MonthlyExecutionRecord) -> None:
        """
        Seed allocation-history rows for every tracked (asset, goal) pair at the
        record's start instant. Skipped when a complete baseline already exists.
        Best-effort: failures are logged and tracking proceeds.
        """
        if record.started_at is None:
            return

        try:
            allocations = await self.ledger.list_allocations(record.goal_ids)
            existing = await self.ledger.list_baseline_entries(record.month_label, record.started_at)

            has_missing_ids = any(e.asset_id is None or e.goal_id is None for e in existing)
            if allocations and len(existing) == len(allocations) and not has_missing_ids:
                return
            if not allocations and not existing:
                return

            written = await self.ledger.replace_baseline(record.month_label, record.started_at, allocations)
            logger.info("Seeded %d baseline allocation entries for %s", written, record.month_label)
        except Exception as exc:
            logger.warning("AllocationHistory baseline seeding failed for %s: %s", record.month_label, exc)
