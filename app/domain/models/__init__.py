"""
Domain Models Package
Export all domain entities
"""

from .entities import (
    # Enums
    ContributionSource,
    ExecutionStatus,

    # Entities
    Allocation,
    AllocationHistoryEntry,
    Asset,
    CompletedExecution,
    ContributionSnapshot,
    DerivedEvent,
    ExecutionGoalSnapshot,
    ExecutionSnapshot,
    Goal,
    GoalProgress,
    MonthlyExecutionRecord,
    PlannedAmount,
    Transaction,
)

__all__ = [
    # Enums
    "ContributionSource",
    "ExecutionStatus",

    # Entities
    "Allocation",
    "AllocationHistoryEntry",
    "Asset",
    "CompletedExecution",
    "ContributionSnapshot",
    "DerivedEvent",
    "ExecutionGoalSnapshot",
    "ExecutionSnapshot",
    "Goal",
    "GoalProgress",
    "MonthlyExecutionRecord",
    "PlannedAmount",
    "Transaction",
]
