"""Main FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from splitlab.config import get_settings
from splitlab.middleware.logging import LoggingMiddleware, get_logger
from splitlab.api import ab_tests, health, stats, tracking
from splitlab.database import engine, Base
import splitlab.models  # noqa: F401  (registers tables on Base.metadata)

settings = get_settings()
logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    Base.metadata.create_all(bind=engine)
    logger.info(
        "service_started",
        service=settings.app_name,
        database=engine.url.get_backend_name(),
        auto_stop_min_visits=settings.auto_stop_min_visits,
        bayesian_simulations=settings.bayesian_simulations
    )

    yield  # App runs here

    logger.info("shutting_down", service=settings.app_name)

# Create FastAPI app
app = FastAPI(
    title="SplitLab",
    description="A/B testing engine for landing pages: assignment, conversions and statistical analysis",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# CORS middleware - landing pages call assign/convert from the browser
allowed_origins = [
    "http://localhost:5173",  # Local development
    "http://localhost:3000",  # Alternative local port
    settings.frontend_url,     # Production frontend
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID"]
)

# Logging middleware
app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(ab_tests.router, tags=["ab-tests"])
app.include_router(tracking.router, tags=["tracking"])
app.include_router(stats.router, tags=["stats"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "SplitLab",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "tests": "GET/POST /ab-tests",
            "assign": "POST /ab-tests/{test_id}/assign",
            "convert": "POST /ab-tests/{test_id}/conversions"
        }
    }


# uvicorn splitlab.main:app --reload
