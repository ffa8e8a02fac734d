import pytest

from app.infrastructure.cache.progress_cache import ProgressCache
from app.infrastructure.db.models import AssetModel, GoalModel
from app.infrastructure.db.repositories.ledger_repository import LedgerRepository
from app.utils.time import now_utc_naive

MONTH = "2026-03"


@pytest.fixture()
async def seeded(db_session):
    db_session.add_all([
        GoalModel(id="house", name="House", currency="USD", target_amount=300000),
        GoalModel(id="car", name="Car", currency="BTC", target_amount=1.0),
        AssetModel(id="btc-wallet", name="Cold wallet", currency="BTC"),
    ])
    await db_session.commit()
    return db_session


def start_payload(month=MONTH):
    return {
        "month_label": month,
        "plans": [
            {"goal_id": "house", "planned_amount": 10000},
            {"goal_id": "car", "planned_amount": 0.1},
        ],
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_start_and_fetch_record(client, seeded):
    resp = await client.post("/api/v1/execution/start", json=start_payload())
    assert resp.status_code == 200
    data = resp.json()
    assert data["month_label"] == MONTH
    assert data["status"] == "executing"
    assert data["status_display"] == "Active This Month"
    assert data["total_planned"] == pytest.approx(10000.1)
    assert {g["goal_id"] for g in data["goal_snapshots"]} == {"house", "car"}

    resp = await client.get(f"/api/v1/execution/{MONTH}")
    assert resp.status_code == 200
    assert resp.json()["id"] == data["id"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invalid_month_label_is_rejected(client, seeded):
    resp = await client.post("/api/v1/execution/start", json=start_payload("2026-13"))
    assert resp.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_month_is_404(client):
    resp = await client.get("/api/v1/execution/2020-01")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "record_not_found"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_live_totals_and_progress(client, seeded):
    ledger = LedgerRepository(seeded)
    await ledger.upsert_allocation("btc-wallet", "house", 0.2)
    await ledger.upsert_allocation("btc-wallet", "car", 0.1)
    await ledger.save()

    resp = await client.post("/api/v1/execution/start", json=start_payload())
    assert resp.status_code == 200

    await ledger.add_transaction("btc-wallet", 0.3, now_utc_naive(), "deposit")
    await ledger.save()

    resp = await client.get(f"/api/v1/execution/{MONTH}/totals")
    assert resp.status_code == 200
    totals = resp.json()
    assert totals["is_frozen"] is False
    assert totals["totals"]["house"] == pytest.approx(0.2 * 50000)
    assert totals["totals"]["car"] == pytest.approx(0.1)

    resp = await client.get(f"/api/v1/execution/{MONTH}/progress")
    assert resp.status_code == 200
    progress = resp.json()
    assert [g["goal_name"] for g in progress["goals"]] == ["Car", "House"]
    assert progress["goals"][0]["is_fulfilled"] is True
    assert progress["goals"][1]["is_fulfilled"] is True
    assert progress["progress_pct"] == pytest.approx(100.0, abs=1e-3)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_complete_undo_and_history(client, seeded):
    await client.post("/api/v1/execution/start", json=start_payload())

    resp = await client.post(f"/api/v1/execution/{MONTH}/complete")
    assert resp.status_code == 200
    assert resp.json()["status"] == "closed"
    assert resp.json()["is_frozen"] is True

    resp = await client.post(f"/api/v1/execution/{MONTH}/complete")
    assert resp.status_code == 409

    resp = await client.post("/api/v1/execution/start", json=start_payload())
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "record_already_exists"

    resp = await client.get("/api/v1/execution/history")
    assert resp.status_code == 200
    assert [r["month_label"] for r in resp.json()] == [MONTH]

    resp = await client.post(f"/api/v1/execution/{MONTH}/undo-completion")
    assert resp.status_code == 200
    assert resp.json()["status"] == "executing"
    assert resp.json()["completed_at"] is None

    resp = await client.get(f"/api/v1/execution/{MONTH}/totals")
    assert resp.json()["is_frozen"] is False


@pytest.mark.asyncio
@pytest.mark.integration
async def test_undo_start_returns_to_draft(client, seeded):
    await client.post("/api/v1/execution/start", json=start_payload())

    resp = await client.post(f"/api/v1/execution/{MONTH}/undo-start")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "draft"
    assert data["started_at"] is None
    assert data["goal_snapshots"] == []

    resp = await client.post(f"/api/v1/execution/{MONTH}/undo-start")
    assert resp.status_code == 409


@pytest.mark.asyncio
@pytest.mark.integration
async def test_set_and_remove_allocation(client, seeded):
    resp = await client.put(
        "/api/v1/allocations",
        json={"asset_id": "btc-wallet", "goal_id": "house", "amount": 0.4},
    )
    assert resp.status_code == 200
    assert resp.json()["amount"] == 0.4

    resp = await client.put(
        "/api/v1/allocations",
        json={"asset_id": "missing", "goal_id": "house", "amount": 0.4},
    )
    assert resp.status_code == 404

    resp = await client.delete("/api/v1/allocations/btc-wallet/house")
    assert resp.status_code == 200
    resp = await client.delete("/api/v1/allocations/btc-wallet/house")
    assert resp.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_recorded_transaction_refreshes_cached_totals(app, client, seeded):
    app.state.progress_cache = ProgressCache(ttl_seconds=60)
    ledger = LedgerRepository(seeded)
    await ledger.upsert_allocation("btc-wallet", "house", 0.2)
    await ledger.save()

    await client.post("/api/v1/execution/start", json=start_payload())
    resp = await client.get(f"/api/v1/execution/{MONTH}/totals")
    assert resp.json()["totals"] == {}

    resp = await client.post(
        "/api/v1/transactions",
        json={"asset_id": "btc-wallet", "amount": 0.1, "comment": "deposit"},
    )
    assert resp.status_code == 200
    assert resp.json()["amount"] == 0.1
    assert len(app.state.progress_cache) == 0

    resp = await client.get(f"/api/v1/execution/{MONTH}/totals")
    assert resp.json()["totals"]["house"] == pytest.approx(0.1 * 50000)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_transaction_validation(client, seeded):
    resp = await client.post("/api/v1/transactions", json={"asset_id": "btc-wallet", "amount": 0})
    assert resp.status_code == 400

    resp = await client.post("/api/v1/transactions", json={"asset_id": "missing", "amount": 1.0})
    assert resp.status_code == 404
