"""
Forecast Ensemble API: FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Forecast ensemble API starting up", version=settings.app_version)
    yield
    logger.info("Forecast ensemble API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Self-tuning forecast ensemble and canary rollout control",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import ensemble, experiments

app.include_router(experiments.router)
app.include_router(ensemble.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
