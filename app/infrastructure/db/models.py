"""
Database Models (SQLAlchemy ORM)
Ledger tables are append-only; execution records own their snapshot rows
"""

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime,
    ForeignKey, Text, Enum as SQLEnum, Index, JSON, UniqueConstraint
)
import enum

from app.infrastructure.db.database import Base
from app.utils.time import now_utc_naive


# Enums
class ExecutionStatusEnum(str, enum.Enum):
    DRAFT = "draft"
    EXECUTING = "executing"
    CLOSED = "closed"


# Tables

class GoalModel(Base):
    """Savings goal"""
    __tablename__ = "goal"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(16), nullable=False)
    target_amount = Column(Float, nullable=False, default=0.0)
    deadline = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_utc_naive)


class AssetModel(Base):
    """Asset holding a balance in its own currency"""
    __tablename__ = "asset"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False, default="")
    currency = Column(String(16), nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_utc_naive)


class AssetAllocationModel(Base):
    """Current allocation target of an asset towards a goal"""
    __tablename__ = "asset_allocation"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(String(36), ForeignKey("asset.id", ondelete="CASCADE"), nullable=False)
    goal_id = Column(String(36), ForeignKey("goal.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, nullable=False, default=now_utc_naive)

    __table_args__ = (
        UniqueConstraint("asset_id", "goal_id", name="uq_asset_allocation_pair"),
        Index("ix_asset_allocation_goal", "goal_id"),
    )


class AssetTransactionModel(Base):
    """Signed balance delta - AUDIT RECORD"""
    __tablename__ = "asset_transaction"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(String(36), ForeignKey("asset.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Float, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_utc_naive)

    __table_args__ = (
        Index("ix_asset_transaction_asset_ts", "asset_id", "timestamp"),
    )


class AllocationHistoryModel(Base):
    """
    Immutable allocation target snapshot.
    The autoincrement id doubles as the creation-order tiebreaker.
    """
    __tablename__ = "allocation_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(String(36), ForeignKey("asset.id", ondelete="SET NULL"), nullable=True)
    goal_id = Column(String(36), ForeignKey("goal.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Float, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    month_label = Column(String(7), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=now_utc_naive)

    __table_args__ = (
        Index("ix_allocation_history_pair_ts", "asset_id", "goal_id", "timestamp"),
        Index("ix_allocation_history_month_ts", "month_label", "timestamp"),
    )


class MonthlyExecutionRecordModel(Base):
    """Per-month execution tracking record"""
    __tablename__ = "monthly_execution_record"

    id = Column(String(36), primary_key=True)
    month_label = Column(String(7), nullable=False, unique=True, index=True)
    status = Column(SQLEnum(ExecutionStatusEnum), nullable=False, default=ExecutionStatusEnum.DRAFT)
    tracked_goal_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=now_utc_naive)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    can_undo_until = Column(DateTime, nullable=True)


class ExecutionSnapshotModel(Base):
    """Planned amounts per goal captured when tracking starts"""
    __tablename__ = "execution_snapshot"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(
        String(36),
        ForeignKey("monthly_execution_record.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    captured_at = Column(DateTime, nullable=False)
    total_planned = Column(Float, nullable=False, default=0.0)
    goal_snapshots = Column(JSON, nullable=False, default=list)


class CompletedExecutionModel(Base):
    """Immutable closure artifact - replaced wholesale, never updated"""
    __tablename__ = "completed_execution"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(
        String(36),
        ForeignKey("monthly_execution_record.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    month_label = Column(String(7), nullable=False)
    completed_at = Column(DateTime, nullable=False)
    exchange_rates = Column(JSON, nullable=False, default=dict)
    goal_snapshots = Column(JSON, nullable=False, default=list)
    contribution_snapshots = Column(JSON, nullable=False, default=list)
