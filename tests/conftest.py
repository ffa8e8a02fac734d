from datetime import datetime
from typing import AsyncGenerator, Dict, List, Tuple

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.domain.errors import RateUnavailableError
from app.infrastructure.cache.progress_cache import ProgressCache
from app.infrastructure.db.database import Base, get_db
from app.api.routes import allocations, execution, health, transactions
from app.utils.serial_executor import KeyedSerialExecutor


class FakeRateLookup:
    """In-memory rate table; unknown pairs raise RateUnavailableError"""

    def __init__(self, rates: Dict[Tuple[str, str], float] | None = None):
        self.rates = dict(rates or {})
        self.calls: List[Tuple[str, str]] = []

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        self.calls.append((from_currency, to_currency))
        if from_currency.upper() == to_currency.upper():
            return 1.0
        rate = self.rates.get((from_currency.upper(), to_currency.upper()))
        if rate is None:
            raise RateUnavailableError(from_currency, to_currency, "no rate configured")
        return rate


class FrozenClock:
    """Injectable clock for lifecycle tests"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> datetime:
        self.now = self.now + delta
        return self.now


@pytest.fixture()
async def db_engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        future=True,
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    session_maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture()
def rate_lookup() -> FakeRateLookup:
    return FakeRateLookup({("BTC", "USD"): 50000.0, ("EUR", "USD"): 1.1})


@pytest.fixture()
async def app(db_session, rate_lookup) -> FastAPI:
    app = FastAPI()
    app.include_router(health.router, tags=["Health"])
    app.include_router(execution.router, prefix="/api/v1/execution", tags=["Execution"])
    app.include_router(allocations.router, prefix="/api/v1/allocations", tags=["Allocations"])
    app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["Transactions"])

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    app.state.rate_lookup = rate_lookup
    app.state.progress_cache = ProgressCache(ttl_seconds=0)
    app.state.serial_executor = KeyedSerialExecutor()

    return app


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 10, 12, 0, 0))
