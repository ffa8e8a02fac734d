from datetime import datetime, timedelta

import pytest

from app.domain.models import (
    Allocation,
    CompletedExecution,
    ContributionSnapshot,
    ContributionSource,
    ExecutionGoalSnapshot,
    ExecutionSnapshot,
    ExecutionStatus,
    MonthlyExecutionRecord,
)
from app.infrastructure.db.models import AssetModel, GoalModel
from app.infrastructure.db.repositories.catalog_repository import CatalogRepository
from app.infrastructure.db.repositories.execution_record_repository import ExecutionRecordRepository
from app.infrastructure.db.repositories.ledger_repository import LedgerRepository

T0 = datetime(2026, 3, 1, 8, 0, 0)


async def seed_catalog(db_session):
    db_session.add_all([
        GoalModel(id="house", name="House", currency="USD", target_amount=300000),
        GoalModel(id="car", name="Car", currency="EUR", target_amount=20000),
        AssetModel(id="btc-wallet", name="Cold wallet", currency="BTC"),
        AssetModel(id="eur-bank", name="Bank", currency="EUR"),
    ])
    await db_session.flush()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_catalog_lookup(db_session):
    await seed_catalog(db_session)
    catalog = CatalogRepository(db_session)

    assets = await catalog.list_assets()
    assert [a.id for a in assets] == ["btc-wallet", "eur-bank"]

    goals = await catalog.get_goals(["house", "missing"])
    assert [g.name for g in goals] == ["House"]
    assert await catalog.get_goals([]) == []
    assert await catalog.get_goal("missing") is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_ledger_transactions_and_history_bounded_by_end(db_session):
    await seed_catalog(db_session)
    ledger = LedgerRepository(db_session)

    await ledger.add_transaction("btc-wallet", 1.0, T0)
    await ledger.add_transaction("btc-wallet", -0.2, T0 + timedelta(days=2))
    await ledger.append_allocation_history("btc-wallet", "house", 0.5, T0, "2026-03")
    await ledger.append_allocation_history("btc-wallet", "house", 0.8, T0 + timedelta(days=3), "2026-03")

    txs = await ledger.list_transactions(["btc-wallet"], T0 + timedelta(days=1))
    assert [t.amount for t in txs] == [1.0]

    history = await ledger.list_allocation_history(["house"], T0 + timedelta(days=3))
    assert [h.amount for h in history] == [0.5, 0.8]
    assert history[0].creation_order < history[1].creation_order


@pytest.mark.asyncio
@pytest.mark.integration
async def test_replace_baseline_purges_previous_rows(db_session):
    await seed_catalog(db_session)
    ledger = LedgerRepository(db_session)
    await ledger.append_allocation_history("btc-wallet", "house", 0.1, T0, "2026-03")

    written = await ledger.replace_baseline(
        "2026-03",
        T0,
        [Allocation("btc-wallet", "house", 0.6), Allocation("btc-wallet", "car", 0.4)],
    )
    await ledger.save()

    baseline = await ledger.list_baseline_entries("2026-03", T0)
    assert written == 2
    assert sorted((b.goal_id, b.amount) for b in baseline) == [("car", 0.4), ("house", 0.6)]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_execution_record_roundtrip(db_session):
    repo = ExecutionRecordRepository(db_session)
    goal_snapshot = ExecutionGoalSnapshot(goal_id="house", goal_name="House", currency="USD", planned_amount=500.0)
    record = MonthlyExecutionRecord(
        id="rec-1",
        month_label="2026-03",
        goal_ids=["house"],
        status=ExecutionStatus.EXECUTING,
        created_at=T0,
        started_at=T0,
        can_undo_until=T0 + timedelta(hours=24),
        snapshot=ExecutionSnapshot(captured_at=T0, goal_snapshots=(goal_snapshot,)),
    )
    await repo.create(record)

    completed = CompletedExecution(
        month_label="2026-03",
        completed_at=T0 + timedelta(days=5),
        exchange_rates={"BTC->USD": 50000.0},
        goal_snapshots=(goal_snapshot,),
        contribution_snapshots=(
            ContributionSnapshot(
                timestamp=T0 + timedelta(days=1),
                source=ContributionSource.DEPOSIT,
                asset_id="btc-wallet",
                asset_currency="BTC",
                goal_id="house",
                goal_currency="USD",
                asset_amount=0.01,
                amount_in_goal_currency=500.0,
                exchange_rate_used=50000.0,
            ),
        ),
    )
    await repo.replace_completed_execution(record.id, completed)
    record.status = ExecutionStatus.CLOSED
    record.completed_at = completed.completed_at
    await repo.save(record)
    await db_session.commit()

    loaded = await repo.get_by_month("2026-03")
    assert loaded.status == ExecutionStatus.CLOSED
    assert loaded.snapshot.total_planned == 500.0
    assert loaded.completed_execution == completed
    assert loaded.completed_execution.contributed_totals_by_goal_id == {"house": 500.0}
    assert await repo.get_active() is None
    assert [r.id for r in await repo.list_completed()] == ["rec-1"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_save_without_snapshot_drops_snapshot_row(db_session):
    repo = ExecutionRecordRepository(db_session)
    record = MonthlyExecutionRecord(
        id="rec-2",
        month_label="2026-04",
        goal_ids=["house"],
        status=ExecutionStatus.EXECUTING,
        created_at=T0,
        started_at=T0,
        snapshot=ExecutionSnapshot(captured_at=T0),
    )
    await repo.create(record)

    record.status = ExecutionStatus.DRAFT
    record.started_at = None
    record.snapshot = None
    await repo.save(record)

    loaded = await repo.get_by_id("rec-2")
    assert loaded.status == ExecutionStatus.DRAFT
    assert loaded.snapshot is None
    assert await repo.count() == 1
