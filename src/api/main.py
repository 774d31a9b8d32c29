"""
FastAPI application for the standards-mastery service.

Provides REST API for:
- Per-standard mastery of a class (recompute + reconcile)
- Manual status cycling and intervention workflow
- Quick-check recording
- Per-class threshold configuration
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from config import get_settings
from src.db.database import check_database, init_db
from src.logging_setup import configure_logging
from src.mastery import EvidenceCache

settings = get_settings()

SERVICE_NAME = "standards-mastery"
SERVICE_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    configure_logging(settings)
    logger.info(f"Starting {SERVICE_NAME} service...")
    init_db()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    app.state.evidence_cache.clear()
    logger.info(f"Shutting down {SERVICE_NAME} service...")


app = FastAPI(
    title="Standards Mastery",
    description="""
    Per-standard mastery for a class, computed from assessment evidence.

    ## Data Flow

    ```
    Assessments + grade entries ─┐
                                 ├─ aggregate -> blend -> classify (per-class thresholds)
    Quick checks (weight 0.5) ───┘
                                       ↓
                      reconcile with stored statuses (teacher 'above' is sticky)
                                       ↓
                      effective status + intervention per standard
    ```
    """,
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.state.evidence_cache = EvidenceCache(settings.evidence_cache_enabled)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, Any]:
    """Health check with an actual database round trip."""
    db_status, db_error = check_database()

    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "components": {"database": db_status},
        "config": {
            "default_thresholds": settings.get_default_thresholds(),
            "quick_check_weight": settings.quick_check_weight,
            "quick_check_weighting": settings.quick_check_weighting,
            "evidence_cache_enabled": settings.evidence_cache_enabled,
        },
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


# ========================================
# Import and mount routers
# ========================================

from src.api.routers import mastery_router

app.include_router(mastery_router.router, prefix="/api/mastery", tags=["Mastery"])
