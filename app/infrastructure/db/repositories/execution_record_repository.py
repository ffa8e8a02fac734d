"""
Execution Record Repository
Monthly execution records with their planned snapshot and completion artifact
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from typing import List, Optional

from app.infrastructure.db.models import (
    CompletedExecutionModel,
    ExecutionSnapshotModel,
    ExecutionStatusEnum,
    MonthlyExecutionRecordModel,
)
from app.domain.models import (
    CompletedExecution,
    ContributionSnapshot,
    ExecutionGoalSnapshot,
    ExecutionSnapshot,
    ExecutionStatus,
    MonthlyExecutionRecord,
)


class ExecutionRecordRepository:
    """Repository for MonthlyExecutionRecord data access"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_month(self, month_label: str) -> Optional[MonthlyExecutionRecord]:
        result = await self.session.execute(
            select(MonthlyExecutionRecordModel).where(
                MonthlyExecutionRecordModel.month_label == month_label
            )
        )
        model = result.scalar_one_or_none()
        return await self._load(model) if model else None

    async def get_by_id(self, record_id: str) -> Optional[MonthlyExecutionRecord]:
        model = await self.session.get(MonthlyExecutionRecordModel, record_id)
        return await self._load(model) if model else None

    async def get_active(self) -> Optional[MonthlyExecutionRecord]:
        result = await self.session.execute(
            select(MonthlyExecutionRecordModel)
            .where(MonthlyExecutionRecordModel.status == ExecutionStatusEnum.EXECUTING)
            .order_by(MonthlyExecutionRecordModel.month_label.desc())
        )
        model = result.scalars().first()
        return await self._load(model) if model else None

    async def list_completed(self, limit: int = 10, offset: int = 0) -> List[MonthlyExecutionRecord]:
        result = await self.session.execute(
            select(MonthlyExecutionRecordModel)
            .where(MonthlyExecutionRecordModel.status == ExecutionStatusEnum.CLOSED)
            .order_by(MonthlyExecutionRecordModel.month_label.desc())
            .limit(limit)
            .offset(offset)
        )
        return [await self._load(m) for m in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(MonthlyExecutionRecordModel.id)))
        return int(result.scalar_one())

    async def create(self, record: MonthlyExecutionRecord) -> MonthlyExecutionRecord:
        model = MonthlyExecutionRecordModel(id=record.id, month_label=record.month_label)
        self._apply(model, record)
        self.session.add(model)
        await self.session.flush()
        await self._write_snapshot(record)
        return record

    async def save(self, record: MonthlyExecutionRecord) -> MonthlyExecutionRecord:
        """Persist state fields and the planned snapshot of an existing record"""
        model = await self.session.get(MonthlyExecutionRecordModel, record.id)
        if model is None:
            return await self.create(record)
        self._apply(model, record)
        await self.session.flush()
        await self._write_snapshot(record)
        return record

    async def replace_completed_execution(
        self, record_id: str, completed: CompletedExecution
    ) -> None:
        """Supersede any prior completion artifact wholesale"""
        await self.delete_completed_execution(record_id)
        self.session.add(
            CompletedExecutionModel(
                record_id=record_id,
                month_label=completed.month_label,
                completed_at=completed.completed_at,
                exchange_rates=dict(completed.exchange_rates),
                goal_snapshots=[s.to_dict() for s in completed.goal_snapshots],
                contribution_snapshots=[s.to_dict() for s in completed.contribution_snapshots],
            )
        )
        await self.session.flush()

    async def delete_completed_execution(self, record_id: str) -> None:
        await self.session.execute(
            delete(CompletedExecutionModel).where(CompletedExecutionModel.record_id == record_id)
        )
        await self.session.flush()

    async def delete(self, record_id: str) -> None:
        """Administrative delete, including owned snapshot rows"""
        await self.delete_completed_execution(record_id)
        await self.session.execute(
            delete(ExecutionSnapshotModel).where(ExecutionSnapshotModel.record_id == record_id)
        )
        await self.session.execute(
            delete(MonthlyExecutionRecordModel).where(MonthlyExecutionRecordModel.id == record_id)
        )
        await self.session.flush()

    # ------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------

    @staticmethod
    def _apply(model: MonthlyExecutionRecordModel, record: MonthlyExecutionRecord) -> None:
        model.status = ExecutionStatusEnum(record.status.value)
        model.tracked_goal_ids = list(record.goal_ids)
        if record.created_at is not None:
            model.created_at = record.created_at
        model.started_at = record.started_at
        model.completed_at = record.completed_at
        model.can_undo_until = record.can_undo_until

    async def _write_snapshot(self, record: MonthlyExecutionRecord) -> None:
        result = await self.session.execute(
            select(ExecutionSnapshotModel).where(ExecutionSnapshotModel.record_id == record.id)
        )
        model = result.scalar_one_or_none()

        if record.snapshot is None:
            if model is not None:
                await self.session.delete(model)
                await self.session.flush()
            return

        if model is None:
            model = ExecutionSnapshotModel(record_id=record.id)
            self.session.add(model)
        model.captured_at = record.snapshot.captured_at
        model.total_planned = record.snapshot.total_planned
        model.goal_snapshots = [s.to_dict() for s in record.snapshot.goal_snapshots]
        await self.session.flush()

    async def _load(self, model: MonthlyExecutionRecordModel) -> MonthlyExecutionRecord:
        snapshot_result = await self.session.execute(
            select(ExecutionSnapshotModel).where(ExecutionSnapshotModel.record_id == model.id)
        )
        snapshot_model = snapshot_result.scalar_one_or_none()

        completed_result = await self.session.execute(
            select(CompletedExecutionModel).where(CompletedExecutionModel.record_id == model.id)
        )
        completed_model = completed_result.scalar_one_or_none()

        return MonthlyExecutionRecord(
            id=model.id,
            month_label=model.month_label,
            goal_ids=list(model.tracked_goal_ids or []),
            status=ExecutionStatus(model.status.value),
            created_at=model.created_at,
            started_at=model.started_at,
            completed_at=model.completed_at,
            can_undo_until=model.can_undo_until,
            snapshot=self._snapshot_to_domain(snapshot_model),
            completed_execution=self._completed_to_domain(completed_model),
        )

    @staticmethod
    def _snapshot_to_domain(model: Optional[ExecutionSnapshotModel]) -> Optional[ExecutionSnapshot]:
        if model is None:
            return None
        return ExecutionSnapshot(
            captured_at=model.captured_at,
            goal_snapshots=tuple(ExecutionGoalSnapshot.from_dict(d) for d in model.goal_snapshots or []),
        )

    @staticmethod
    def _completed_to_domain(model: Optional[CompletedExecutionModel]) -> Optional[CompletedExecution]:
        if model is None:
            return None
        return CompletedExecution(
            month_label=model.month_label,
            completed_at=model.completed_at,
            exchange_rates={k: float(v) for k, v in (model.exchange_rates or {}).items()},
            goal_snapshots=tuple(ExecutionGoalSnapshot.from_dict(d) for d in model.goal_snapshots or []),
            contribution_snapshots=tuple(
                ContributionSnapshot.from_dict(d) for d in model.contribution_snapshots or []
            ),
        )
