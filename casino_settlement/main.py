"""
Main FastAPI application for the casino wager settlement service.
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from casino_settlement.core.config import settings
from casino_settlement.core.database import init_db
from casino_settlement.core.exceptions import SettlementError
from casino_settlement.core.logging import configure_logging, get_logger
from casino_settlement.core.middleware import CorrelationIdMiddleware
from casino_settlement.core import metrics
from casino_settlement.api.routes import (
    accounts,
    blackjack,
    case_battles,
    chamber,
    coinflip,
    crash,
    giveaways,
    items,
    maintenance,
    raffle,
    roulette,
)

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Configure structured logging with JSON formatter
configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


def get_rate_limit_key(request: Request) -> str:
    """
    Get the rate limit key for a request.

    Uses IP address, with fallback to X-Forwarded-For for proxied requests.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["120/minute"],
    storage_uri=settings.REDIS_URL if settings.RATE_LIMIT_STORAGE == "redis" else "memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    init_db()

    if settings.SCHEDULER_ENABLED:
        from casino_settlement.core.scheduler import start_scheduler
        await start_scheduler()
        logger.info("Sweep scheduler started")
    else:
        logger.info("Sweep scheduler disabled (SCHEDULER_ENABLED=false)")

    metrics.update_scheduler_metrics()
    logger.info("Application started")

    yield

    if settings.SCHEDULER_ENABLED:
        from casino_settlement.core.scheduler import stop_scheduler
        await stop_scheduler()
        logger.info("Sweep scheduler stopped")
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Server-side settlement for coinflip, blackjack, roulette, crash, case battles, "
                "giveaways, the raffle and the chamber game",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add correlation ID middleware (must be added before CORS for proper header handling)
app.add_middleware(CorrelationIdMiddleware)

# Prometheus metrics must be wired before routes are added
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API v1 - all routers carry their own feature prefix
app.include_router(coinflip.router, prefix="/api/v1")
app.include_router(roulette.router, prefix="/api/v1")
app.include_router(crash.router, prefix="/api/v1")
app.include_router(blackjack.router, prefix="/api/v1")
app.include_router(case_battles.router, prefix="/api/v1")
app.include_router(chamber.router, prefix="/api/v1")
app.include_router(giveaways.router, prefix="/api/v1")
app.include_router(raffle.router, prefix="/api/v1")
app.include_router(accounts.router, prefix="/api/v1")
app.include_router(items.router, prefix="/api/v1")
app.include_router(maintenance.router, prefix="/api/v1")


@app.get("/")
@limiter.limit("60/minute")
async def root(request: Request):
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "api_version": "v1",
            "games": {
                "coinflip": "/api/v1/coinflip",
                "roulette": "/api/v1/roulette",
                "crash": "/api/v1/crash",
                "blackjack": "/api/v1/blackjack",
                "case_battles": "/api/v1/case-battles",
                "chamber": "/api/v1/chamber",
                "giveaways": "/api/v1/giveaways",
                "raffle": "/api/v1/raffle",
            },
            "accounts": "/api/v1/accounts/me",
            "items": "/api/v1/items",
            "admin": "/api/v1/admin",
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        },
    }


@app.get("/health")
@limiter.limit("120/minute")  # Higher limit for health checks
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
    }


# Exception handlers
@app.exception_handler(SettlementError)
async def settlement_exception_handler(request: Request, exc: SettlementError):
    """Expected rejections carry their own status and payload."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "casino_settlement.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
