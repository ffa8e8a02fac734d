"""
FastAPI Main Application
Monthly savings execution tracking over crypto ledgers
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from app.config import settings
from app.core.logging import setup_logging
from app.infrastructure.cache.progress_cache import ProgressCache
from app.infrastructure.db.database import init_db, close_db
from app.infrastructure.exchange_rates.exchange_rate_client import ExchangeRateClient
from app.utils.serial_executor import KeyedSerialExecutor

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def configure_state(app: FastAPI) -> None:
    """Process-wide collaborators shared by every request"""
    app.state.rate_lookup = ExchangeRateClient(
        api_url=settings.EXCHANGE_RATE_API_URL,
        api_key=settings.EXCHANGE_RATE_API_KEY,
        cache_ttl_seconds=settings.EXCHANGE_RATE_CACHE_SECONDS,
        timeout_seconds=settings.RATE_LOOKUP_TIMEOUT_SECONDS,
    )
    app.state.progress_cache = ProgressCache(ttl_seconds=settings.PROGRESS_CACHE_TTL_SECONDS)
    app.state.serial_executor = KeyedSerialExecutor()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Handles startup and shutdown of shared services
    """
    logger.info("Starting savings execution tracker (%s)", settings.APP_ENV)

    await init_db()
    logger.info("Database initialized")

    configure_state(app)
    logger.info(
        "Execution services ready (undo window %dh, progress cache %.1fs)",
        settings.UNDO_WINDOW_HOURS,
        settings.PROGRESS_CACHE_TTL_SECONDS,
    )

    yield

    logger.info("Shutting down savings execution tracker")
    await app.state.rate_lookup.aclose()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI app
app = FastAPI(
    title="Savings Execution Tracker",
    description="Monthly execution tracking with contributions derived from asset ledgers",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Savings Execution Tracker",
        "version": "1.0.0",
        "docs": "/docs",
    }


# Import and include routers
from app.api.routes import allocations, execution, health, transactions

app.include_router(health.router, tags=["Health"])
app.include_router(execution.router, prefix="/api/v1/execution", tags=["Execution"])
app.include_router(allocations.router, prefix="/api/v1/allocations", tags=["Allocations"])
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["Transactions"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
