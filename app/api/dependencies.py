"""
Request-scoped wiring of execution services.

Process-wide collaborators (rate lookup, progress cache, serial executor) live
on `app.state`; repositories are bound to the request's database session.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.services.allocation_service import AllocationService
from app.domain.services.contribution_aggregator import ContributionAggregator
from app.domain.services.derivation_engine import DerivationEngine
from app.domain.services.execution_tracking_service import ExecutionTrackingService
from app.infrastructure.db.database import get_db
from app.infrastructure.db.repositories.catalog_repository import CatalogRepository
from app.infrastructure.db.repositories.execution_record_repository import ExecutionRecordRepository
from app.infrastructure.db.repositories.ledger_repository import LedgerRepository


def get_execution_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> ExecutionTrackingService:
    state = request.app.state
    ledger = LedgerRepository(db)
    return ExecutionTrackingService(
        records=ExecutionRecordRepository(db),
        ledger=ledger,
        engine=DerivationEngine(ledger, CatalogRepository(db)),
        aggregator=ContributionAggregator(state.rate_lookup),
        cache=state.progress_cache,
        executor=state.serial_executor,
    )


def get_allocation_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AllocationService:
    state = request.app.state
    return AllocationService(
        ledger=LedgerRepository(db),
        cache=state.progress_cache,
        executor=state.serial_executor,
    )


def get_catalog(db: AsyncSession = Depends(get_db)) -> CatalogRepository:
    return CatalogRepository(db)
