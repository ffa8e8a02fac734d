"""
DERIVATION ENGINE
Replays asset transactions and allocation history for an execution window

RESPONSIBILITIES:
- Reconstruct each asset's balance and allocation targets at window start
- Replay balance deltas and target updates in timestamp order
- Emit a DerivedEvent for every change in funded amount per (asset, goal)

RULES:
❌ No persistence, no currency conversion
✅ Pure function of ledger state + window
✅ Proportional rationing when balance < sum of targets
✅ Target updates applied before balance deltas at the same instant

Starting balance policy: sum of all transactions strictly before the window
start, floored at zero.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from app.domain.models import (
    Allocation,
    AllocationHistoryEntry,
    Asset,
    ContributionSource,
    DerivedEvent,
    Goal,
    MonthlyExecutionRecord,
    Transaction,
)

logger = logging.getLogger(__name__)

EPSILON = 1e-7


class LedgerReader(Protocol):
    """Read side of the ledger store - ASYNC"""

    async def list_allocations(self, goal_ids: Optional[Iterable[str]] = None) -> List[Allocation]:
        ...

    async def list_transactions(self, asset_ids: Iterable[str], end: datetime) -> List[Transaction]:
        ...

    async def list_allocation_history(
        self, goal_ids: Iterable[str], end: datetime
    ) -> List[AllocationHistoryEntry]:
        ...


class Catalog(Protocol):
    """Asset and goal lookup - ASYNC"""

    async def list_assets(self) -> List[Asset]:
        ...

    async def get_goals(self, goal_ids: Iterable[str]) -> List[Goal]:
        ...


def funded_amounts(balance: float, targets: Dict[str, float]) -> Dict[str, float]:
    """
    Split a balance across goal targets.

    - balance <= 0: every goal funded 0
    - targets sum to 0: nobody is entitled to anything
    - balance covers targets: every target fully funded
    - otherwise: proportional rationing by target
    """
    if balance <= 0:
        return {goal_id: 0.0 for goal_id in targets}

    total_targets = sum(targets.values())
    if total_targets <= 0:
        return {}

    if balance >= total_targets:
        return dict(targets)

    return {
        goal_id: balance * (target / total_targets)
        for goal_id, target in targets.items()
    }


def funded_deltas(
    previous: Dict[str, float],
    current: Dict[str, float],
    epsilon: float = EPSILON,
) -> Dict[str, float]:
    """Per-goal change between two funded states, ignoring sub-epsilon noise."""
    deltas: Dict[str, float] = {}
    for goal_id in sorted(set(previous) | set(current)):
        delta = current.get(goal_id, 0.0) - previous.get(goal_id, 0.0)
        if abs(delta) > epsilon:
            deltas[goal_id] = delta
    return deltas


@dataclass(frozen=True)
class LedgerWindow:
    """Everything the replay needs, loaded up front"""
    assets: Tuple[Asset, ...]
    goals: Tuple[Goal, ...]
    allocations: Tuple[Allocation, ...]
    transactions: Tuple[Transaction, ...]
    history: Tuple[AllocationHistoryEntry, ...]


@dataclass
class _AssetTimeline:
    asset: Asset
    start_balance: float
    start_targets: Dict[str, float]
    dedicated_goal_id: Optional[str]
    balance_deltas: Dict[datetime, float]
    target_updates: Dict[datetime, Dict[str, float]]


class DerivationEngine:
    """
    Derives funding-delta events for an execution record.

    Usage:
        engine = DerivationEngine(ledger, catalog)
        events = await engine.derived_events(record, end=now)
    """

    def __init__(self, ledger: LedgerReader, catalog: Catalog, epsilon: float = EPSILON):
        self.ledger = ledger
        self.catalog = catalog
        self.epsilon = epsilon

    async def load_window(self, goal_ids: Iterable[str], end: datetime) -> LedgerWindow:
        """Load ledger rows relevant to the tracked goals up to `end`."""
        tracked = set(goal_ids)
        assets = await self.catalog.list_assets()
        goals = await self.catalog.get_goals(tracked)
        allocations = await self.ledger.list_allocations(tracked)
        history = await self.ledger.list_allocation_history(tracked, end)

        relevant_ids = {a.asset_id for a in allocations} | {
            h.asset_id for h in history if h.asset_id is not None
        }
        asset_ids = [asset.id for asset in assets if asset.id in relevant_ids]
        transactions = await self.ledger.list_transactions(asset_ids, end) if asset_ids else []

        return LedgerWindow(
            assets=tuple(assets),
            goals=tuple(goals),
            allocations=tuple(allocations),
            transactions=tuple(transactions),
            history=tuple(history),
        )

    async def derived_events(self, record: MonthlyExecutionRecord, end: datetime) -> List[DerivedEvent]:
        """Derived events for a record between its start and `end`."""
        if record.started_at is None or not record.goal_ids or end < record.started_at:
            return []

        window = await self.load_window(record.goal_ids, end)
        events = self.replay(window, record.goal_ids, record.started_at, end)
        logger.debug(
            "Derived %d events for %s (%s -> %s)",
            len(events), record.month_label, record.started_at, end,
        )
        return events

    def replay(
        self,
        window: LedgerWindow,
        goal_ids: Iterable[str],
        started_at: datetime,
        end: datetime,
    ) -> List[DerivedEvent]:
        """Replay the window and return events sorted by timestamp."""
        tracked = set(goal_ids)
        goal_currency = {g.id: g.currency for g in window.goals if g.id in tracked}
        derived: List[DerivedEvent] = []

        for timeline in self._timelines(window, tracked, started_at, end):
            derived.extend(self._replay_asset(timeline, goal_currency))

        return sorted(derived, key=lambda event: event.timestamp)

    def funded_positions(
        self,
        window: LedgerWindow,
        goal_ids: Iterable[str],
        started_at: datetime,
        at: datetime,
    ) -> Dict[Tuple[str, str], float]:
        """
        Funded amount per (asset_id, goal_id) at `at`, computed directly from
        the balance and targets in effect at that instant rather than by
        accumulating events.
        """
        tracked = set(goal_ids)
        positions: Dict[Tuple[str, str], float] = {}

        for timeline in self._timelines(window, tracked, started_at, at):
            balance = timeline.start_balance + sum(timeline.balance_deltas.values())
            targets = dict(timeline.start_targets)
            for timestamp in sorted(timeline.target_updates):
                targets.update(timeline.target_updates[timestamp])
            funded = self._funded(balance, targets, timeline.dedicated_goal_id)
            for goal_id, amount in funded.items():
                positions[(timeline.asset.id, goal_id)] = amount

        return positions

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _timelines(
        self,
        window: LedgerWindow,
        tracked: Set[str],
        started_at: datetime,
        end: datetime,
    ) -> List[_AssetTimeline]:
        allocations_by_asset: Dict[str, List[Allocation]] = {}
        for allocation in window.allocations:
            if allocation.goal_id in tracked:
                allocations_by_asset.setdefault(allocation.asset_id, []).append(allocation)

        history_by_asset: Dict[str, List[AllocationHistoryEntry]] = {}
        for entry in window.history:
            if entry.asset_id is None or entry.goal_id is None:
                continue
            if entry.goal_id not in tracked or entry.timestamp > end:
                continue
            history_by_asset.setdefault(entry.asset_id, []).append(entry)

        transactions_by_asset: Dict[str, List[Transaction]] = {}
        for tx in window.transactions:
            if tx.timestamp <= end:
                transactions_by_asset.setdefault(tx.asset_id, []).append(tx)

        timelines = []
        for asset in sorted(window.assets, key=lambda a: a.id):
            allocations = allocations_by_asset.get(asset.id, [])
            histories = history_by_asset.get(asset.id, [])
            if not allocations and not histories:
                continue

            timelines.append(
                self._build_timeline(
                    asset,
                    tracked,
                    allocations,
                    histories,
                    transactions_by_asset.get(asset.id, []),
                    started_at,
                    end,
                )
            )

        return timelines

    def _build_timeline(
        self,
        asset: Asset,
        tracked: Set[str],
        allocations: Sequence[Allocation],
        histories: Sequence[AllocationHistoryEntry],
        transactions: Sequence[Transaction],
        started_at: datetime,
        end: datetime,
    ) -> _AssetTimeline:
        allocated_goal_ids = {a.goal_id for a in allocations}
        dedicated_goal_id = next(iter(allocated_goal_ids)) if len(allocated_goal_ids) == 1 else None

        start_balance = max(0.0, sum(tx.amount for tx in transactions if tx.timestamp < started_at))

        start_targets: Dict[str, float] = {}
        for goal_id in sorted(tracked):
            candidates = [h for h in histories if h.goal_id == goal_id and h.timestamp <= started_at]
            if candidates:
                latest = max(candidates, key=lambda h: (h.timestamp, h.creation_order))
                start_targets[goal_id] = max(0.0, latest.amount)
                continue
            if goal_id == dedicated_goal_id:
                allocation = next(a for a in allocations if a.goal_id == goal_id)
                start_targets[goal_id] = max(0.0, allocation.amount)

        balance_deltas: Dict[datetime, float] = {}
        for tx in transactions:
            if started_at <= tx.timestamp <= end:
                balance_deltas[tx.timestamp] = balance_deltas.get(tx.timestamp, 0.0) + tx.amount

        latest_updates: Dict[datetime, Dict[str, AllocationHistoryEntry]] = {}
        for entry in histories:
            if not (started_at < entry.timestamp <= end):
                continue
            updates = latest_updates.setdefault(entry.timestamp, {})
            current = updates.get(entry.goal_id)
            if current is None or entry.creation_order > current.creation_order:
                updates[entry.goal_id] = entry

        target_updates = {
            timestamp: {goal_id: max(0.0, entry.amount) for goal_id, entry in updates.items()}
            for timestamp, updates in latest_updates.items()
        }

        return _AssetTimeline(
            asset=asset,
            start_balance=start_balance,
            start_targets=start_targets,
            dedicated_goal_id=dedicated_goal_id,
            balance_deltas=balance_deltas,
            target_updates=target_updates,
        )

    def _funded(
        self,
        balance: float,
        targets: Dict[str, float],
        dedicated_goal_id: Optional[str],
    ) -> Dict[str, float]:
        # An asset dedicated to a single goal funds it in full even before a
        # fixed target has been recorded.
        if balance > 0 and sum(targets.values()) <= 0 and dedicated_goal_id is not None:
            return {dedicated_goal_id: balance}
        return funded_amounts(balance, targets)

    def _replay_asset(
        self,
        timeline: _AssetTimeline,
        goal_currency: Dict[str, str],
    ) -> List[DerivedEvent]:
        events: List[DerivedEvent] = []
        balance = timeline.start_balance
        targets = dict(timeline.start_targets)
        funded = self._funded(balance, targets, timeline.dedicated_goal_id)

        timestamps = sorted(set(timeline.balance_deltas) | set(timeline.target_updates))
        for timestamp in timestamps:
            updates = timeline.target_updates.get(timestamp)
            if updates:
                targets.update(updates)
                new_funded = self._funded(balance, targets, timeline.dedicated_goal_id)
                events.extend(
                    self._events(timeline.asset, funded, new_funded, timestamp,
                                 ContributionSource.REALLOCATION, goal_currency)
                )
                funded = new_funded

            delta = timeline.balance_deltas.get(timestamp, 0.0)
            if abs(delta) > self.epsilon:
                balance += delta
                new_funded = self._funded(balance, targets, timeline.dedicated_goal_id)
                events.extend(
                    self._events(timeline.asset, funded, new_funded, timestamp,
                                 ContributionSource.DEPOSIT, goal_currency)
                )
                funded = new_funded

        return events

    def _events(
        self,
        asset: Asset,
        previous: Dict[str, float],
        current: Dict[str, float],
        timestamp: datetime,
        source: ContributionSource,
        goal_currency: Dict[str, str],
    ) -> List[DerivedEvent]:
        events = []
        for goal_id, delta in funded_deltas(previous, current, self.epsilon).items():
            currency = goal_currency.get(goal_id)
            if currency is None:
                continue
            events.append(
                DerivedEvent(
                    timestamp=timestamp,
                    source=source,
                    asset_id=asset.id,
                    asset_currency=asset.currency,
                    goal_id=goal_id,
                    goal_currency=currency,
                    asset_delta=delta,
                )
            )
        return events
