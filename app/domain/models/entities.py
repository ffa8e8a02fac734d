"""
Domain Models - Entities
Pure domain objects with no infrastructure dependencies
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from app.domain.errors import InvalidStateError, UndoPeriodExpiredError


class ExecutionStatus(str, Enum):
    """Lifecycle state of a monthly execution record"""
    DRAFT = "draft"
    EXECUTING = "executing"
    CLOSED = "closed"

    @property
    def display_name(self) -> str:
        return {
            ExecutionStatus.DRAFT: "Planning",
            ExecutionStatus.EXECUTING: "Active This Month",
            ExecutionStatus.CLOSED: "Completed",
        }[self]


class ContributionSource(str, Enum):
    """What caused a change in funded amount"""
    DEPOSIT = "deposit"
    REALLOCATION = "reallocation"


@dataclass(frozen=True)
class Goal:
    """Savings goal - Immutable"""
    id: str
    name: str
    currency: str
    target_amount: float
    deadline: Optional[date] = None


@dataclass(frozen=True)
class Asset:
    """Asset holding a balance in its own currency - Immutable"""
    id: str
    currency: str
    name: str = ""


@dataclass(frozen=True)
class Allocation:
    """Current target amount of an asset earmarked for a goal"""
    asset_id: str
    goal_id: str
    amount: float


@dataclass(frozen=True)
class AllocationHistoryEntry:
    """
    Timestamped snapshot of an allocation target.

    creation_order breaks ties between entries sharing a timestamp.
    Ids may be missing on rows whose asset or goal has been deleted.
    """
    asset_id: Optional[str]
    goal_id: Optional[str]
    amount: float
    timestamp: datetime
    creation_order: int = 0
    month_label: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    """Signed balance delta of an asset"""
    asset_id: str
    timestamp: datetime
    amount: float


@dataclass(frozen=True)
class PlannedAmount:
    """Planned monthly amount for one goal, input to start tracking"""
    goal_id: str
    planned_amount: float
    required_amount: float = 0.0
    flex_state: str = "flexible"

    @property
    def has_valid_amount(self) -> bool:
        return self.planned_amount > 0 or self.required_amount > 0


@dataclass(frozen=True)
class ExecutionGoalSnapshot:
    """Planned amount for one goal, frozen when tracking starts"""
    goal_id: str
    goal_name: str
    currency: str
    planned_amount: float
    required_amount: float = 0.0
    flex_state: str = "flexible"

    def to_dict(self) -> dict:
        return {
            "goal_id": self.goal_id,
            "goal_name": self.goal_name,
            "currency": self.currency,
            "planned_amount": self.planned_amount,
            "required_amount": self.required_amount,
            "flex_state": self.flex_state,
        }

    @staticmethod
    def from_dict(data: dict) -> "ExecutionGoalSnapshot":
        return ExecutionGoalSnapshot(
            goal_id=data["goal_id"],
            goal_name=data.get("goal_name", ""),
            currency=data["currency"],
            planned_amount=float(data.get("planned_amount", 0.0)),
            required_amount=float(data.get("required_amount", 0.0)),
            flex_state=data.get("flex_state", "flexible"),
        )


@dataclass(frozen=True)
class ExecutionSnapshot:
    """Per-goal planned amounts captured at the start of tracking"""
    captured_at: datetime
    goal_snapshots: Tuple[ExecutionGoalSnapshot, ...] = ()

    @property
    def total_planned(self) -> float:
        return sum(s.planned_amount for s in self.goal_snapshots)

    @property
    def planned_by_goal_id(self) -> Dict[str, float]:
        return {s.goal_id: s.planned_amount for s in self.goal_snapshots}

    @staticmethod
    def create(
        captured_at: datetime,
        plans: List[PlannedAmount],
        goals: List[Goal],
    ) -> "ExecutionSnapshot":
        """Build a snapshot from plans, skipping plans without an amount or goal."""
        goals_by_id = {goal.id: goal for goal in goals}
        snapshots = []
        for plan in plans:
            if not plan.has_valid_amount:
                continue
            goal = goals_by_id.get(plan.goal_id)
            if goal is None:
                continue
            snapshots.append(
                ExecutionGoalSnapshot(
                    goal_id=goal.id,
                    goal_name=goal.name,
                    currency=goal.currency,
                    planned_amount=plan.planned_amount,
                    required_amount=plan.required_amount,
                    flex_state=plan.flex_state,
                )
            )
        return ExecutionSnapshot(captured_at=captured_at, goal_snapshots=tuple(snapshots))


@dataclass(frozen=True)
class DerivedEvent:
    """
    Computed change in funded amount for one (asset, goal) pair.
    Never persisted.
    """
    timestamp: datetime
    source: ContributionSource
    asset_id: str
    asset_currency: str
    goal_id: str
    goal_currency: str
    asset_delta: float


@dataclass(frozen=True)
class ContributionSnapshot:
    """Derived event frozen with the conversion used at completion"""
    timestamp: datetime
    source: ContributionSource
    asset_id: str
    asset_currency: str
    goal_id: str
    goal_currency: str
    asset_amount: float
    amount_in_goal_currency: float
    exchange_rate_used: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "source": self.source.value,
            "asset_id": self.asset_id,
            "asset_currency": self.asset_currency,
            "goal_id": self.goal_id,
            "goal_currency": self.goal_currency,
            "asset_amount": self.asset_amount,
            "amount_in_goal_currency": self.amount_in_goal_currency,
            "exchange_rate_used": self.exchange_rate_used,
        }

    @staticmethod
    def from_dict(data: dict) -> "ContributionSnapshot":
        return ContributionSnapshot(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            source=ContributionSource(data["source"]),
            asset_id=data["asset_id"],
            asset_currency=data["asset_currency"],
            goal_id=data["goal_id"],
            goal_currency=data["goal_currency"],
            asset_amount=float(data["asset_amount"]),
            amount_in_goal_currency=float(data["amount_in_goal_currency"]),
            exchange_rate_used=float(data["exchange_rate_used"]),
        )


@dataclass(frozen=True)
class CompletedExecution:
    """Immutable closure artifact of a monthly execution"""
    month_label: str
    completed_at: datetime
    exchange_rates: Dict[str, float] = field(default_factory=dict)
    goal_snapshots: Tuple[ExecutionGoalSnapshot, ...] = ()
    contribution_snapshots: Tuple[ContributionSnapshot, ...] = ()

    @property
    def contributed_totals_by_goal_id(self) -> Dict[str, float]:
        totals: Dict[str, float] = {}
        for snapshot in self.contribution_snapshots:
            totals[snapshot.goal_id] = totals.get(snapshot.goal_id, 0.0) + snapshot.amount_in_goal_currency
        return totals


@dataclass
class MonthlyExecutionRecord:
    """
    Per-month execution tracking record.

    State transitions: draft -> executing -> closed, with executing -> draft
    and closed -> executing allowed while the undo window is open.
    """
    id: str
    month_label: str
    goal_ids: List[str]
    status: ExecutionStatus = ExecutionStatus.DRAFT
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    can_undo_until: Optional[datetime] = None
    snapshot: Optional[ExecutionSnapshot] = None
    completed_execution: Optional[CompletedExecution] = None

    def can_undo(self, now: datetime) -> bool:
        return self.can_undo_until is not None and now < self.can_undo_until

    def start_tracking(self, now: datetime, undo_window: timedelta) -> None:
        """draft -> executing"""
        if self.status != ExecutionStatus.DRAFT:
            raise InvalidStateError(f"Cannot start tracking from {self.status.value}")
        self.status = ExecutionStatus.EXECUTING
        self.started_at = now
        self.can_undo_until = now + undo_window

    def mark_complete(self, now: datetime, undo_window: timedelta) -> None:
        """executing -> closed"""
        if self.status != ExecutionStatus.EXECUTING:
            raise InvalidStateError(f"Cannot complete a {self.status.value} record")
        self.status = ExecutionStatus.CLOSED
        self.completed_at = now
        self.can_undo_until = now + undo_window

    def undo_completion(self, now: datetime) -> None:
        """closed -> executing"""
        if self.status != ExecutionStatus.CLOSED:
            raise InvalidStateError(f"Cannot undo completion of a {self.status.value} record")
        if not self.can_undo(now):
            raise UndoPeriodExpiredError()
        self.status = ExecutionStatus.EXECUTING
        self.completed_at = None
        self.can_undo_until = None

    def undo_start_tracking(self, now: datetime) -> None:
        """executing -> draft"""
        if self.status != ExecutionStatus.EXECUTING:
            raise InvalidStateError(f"Cannot undo start of a {self.status.value} record")
        if not self.can_undo(now):
            raise UndoPeriodExpiredError()
        self.status = ExecutionStatus.DRAFT
        self.started_at = None
        self.can_undo_until = None


@dataclass(frozen=True)
class GoalProgress:
    """Planned vs contributed for one tracked goal"""
    goal_snapshot: ExecutionGoalSnapshot
    planned_amount: float
    contributed: float

    @property
    def remaining_to_close(self) -> float:
        return max(0.0, self.planned_amount - self.contributed)

    @property
    def is_fulfilled(self) -> bool:
        return self.planned_amount > 0 and self.contributed >= self.planned_amount
