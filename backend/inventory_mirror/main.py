"""FastAPI application for the inventory mirror backend."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from inventory_mirror.config import get_settings
from inventory_mirror.database import check_db_ready
from inventory_mirror.rate_limit import limiter
from inventory_mirror.routers import health_router, inventory_router, sync_router
from inventory_mirror.services.sync_orchestrator import get_orchestrator
from inventory_mirror.tasks.scheduler import setup_scheduler, shutdown_scheduler
from inventory_mirror.websocket import websocket_router
from inventory_mirror.websocket.manager import manager as ws_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting inventory mirror backend...")

    # Verify database is ready
    try:
        await check_db_ready()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Database not ready: {e}")
        raise

    orchestrator = get_orchestrator()
    orchestrator.status_repo.add_listener(ws_manager.broadcast_status)

    # Start scheduler (ingestion) once DB is ready.
    if settings.scheduler_enabled:
        setup_scheduler()
        logger.info("Scheduler started")

    yield

    # Shutdown
    shutdown_scheduler()
    await orchestrator.shutdown()
    logger.info("Inventory mirror backend shut down")


# Create FastAPI app
app = FastAPI(
    title="Inventory Mirror API",
    description="Local mirror of a remote vehicle inventory with globally ordered paging",
    version="0.1.0",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(health_router)
app.include_router(inventory_router, prefix=settings.api_v1_prefix)
app.include_router(sync_router, prefix=settings.api_v1_prefix)
app.include_router(websocket_router)  # WebSocket at /ws/sync


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Inventory Mirror API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "inventory_mirror.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
