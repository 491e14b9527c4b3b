"""
FastAPI application entry point for the promoter payout ledger.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import settings
from app.database import get_db, ping_database
from app.logging_config import setup_logging
from app.routers import payouts
from app.services.container import build_payout_services
from app.services.scheduler import is_scheduler_process, start_scheduler, stop_scheduler

# Get logger for request logging
logger = logging.getLogger(__name__)

# Configure logging
setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    logger.info("Starting up Promoter Payout API...")

    services = build_payout_services()
    app.state.payout_services = services

    # Warm the FX cache before the first payout can need it
    await services.fx_cache.initialize(settings.supported_currencies)

    # Only the master worker schedules jobs; every worker serves manual triggers
    is_master = is_scheduler_process()
    if is_master:
        start_scheduler(services)

    yield
    # Shutdown
    logger.info("Shutting down Promoter Payout API...")
    if is_master:
        stop_scheduler()


app = FastAPI(
    title="Promoter Payout API",
    description="Campaign earnings ledger and promoter payouts",
    version="0.1.0",
    lifespan=lifespan
)

# Parse CORS origins from config
# In development mode, allow all origins for easier local development
if settings.ENVIRONMENT == "development" or settings.DEBUG:
    cors_origins = ["*"]
else:
    cors_origins = (
        ["*"] if settings.CORS_ORIGINS == "*"
        else [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    )

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with method, path, and response status."""
    logger.info(f"Request: {request.method} {request.url.path}")

    response = await call_next(request)

    logger.info(f"Response: {request.method} {request.url.path} | Status: {response.status_code}")
    return response

# Register routers
app.include_router(payouts.router, prefix="/api/admin/payouts", tags=["payouts"])


@app.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Health check endpoint with ledger database and payout cycle status."""
    database_ok = await ping_database(db)
    services = getattr(request.app.state, "payout_services", None)
    return {
        "status": "ok" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
        "payout_cycle": services.scheduler.state.value if services else "not_started",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
