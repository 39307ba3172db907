"""
FastAPI application entry point.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from recovery_engine import __version__
from recovery_engine.config import settings
from recovery_engine.api import recovery
from recovery_engine.services.redis_client import RedisConnectionError, get_redis_client
from recovery_engine.services.recovery_orchestrator import RecoveryOrchestrator
from recovery_engine.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

app = FastAPI(
    title="Marketplace Error Recovery Engine",
    description="Error classification, automatic recovery and support escalation",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    orchestrator = getattr(app.state, "orchestrator", None)
    return {
        "status": "healthy",
        "version": __version__,
        "offline_store": getattr(app.state, "redis_client", None) is not None,
        "offline_mode": orchestrator.offline_mode if orchestrator else False,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Marketplace Error Recovery Engine API",
        "version": __version__,
        "docs": "/docs"
    }


app.include_router(recovery.router)


@app.on_event("startup")
async def startup_event():
    """Connect the offline flag store and start the orchestrator."""
    logger.info("Starting Marketplace Error Recovery Engine API")

    redis_client = get_redis_client()
    try:
        await redis_client.initialize()
        app.state.redis_client = redis_client
        logger.info("Redis client initialized")
    except RedisConnectionError as e:
        logger.warning(f"Redis unavailable, offline flag kept in memory: {e}")
        app.state.redis_client = None

    orchestrator = RecoveryOrchestrator(settings, offline_store=app.state.redis_client)
    await orchestrator.start()
    app.state.orchestrator = orchestrator


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the orchestrator and close the store."""
    logger.info("Shutting down Marketplace Error Recovery Engine API")

    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.shutdown()
        app.state.orchestrator = None

    redis_client = getattr(app.state, "redis_client", None)
    if redis_client is not None:
        await redis_client.close()
        app.state.redis_client = None
        logger.info("Redis client closed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
