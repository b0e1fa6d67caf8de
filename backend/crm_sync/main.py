"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# Import database and models first so every table is registered
from crm_sync.config import settings
from crm_sync.database import Base, destination_configured
from crm_sync import models  # noqa: F401

from crm_sync.routers import bitrix_webhooks, export_jobs
from crm_sync.scheduler import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="CRM Sync API",
    description="Bitrix24 webhooks and lead export to scouter-management",
    version="1.0.0",
    redirect_slashes=False
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# ROUTER REGISTRATION
# ============================================

app.include_router(export_jobs.router)
app.include_router(bitrix_webhooks.router)


# ============================================
# HEALTH & ROOT ENDPOINTS
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "registered_tables": len(Base.metadata.tables),
        "tables": list(Base.metadata.tables.keys()),
        "destination_configured": destination_configured(),
        "features": [
            "bitrix_lead_webhook",
            "bitrix_deal_webhook",
            "lead_export_jobs",
        ]
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "CRM Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Starting CRM Sync API...")
    logger.info("=" * 50)
    logger.info(f"Registered {len(Base.metadata.tables)} SQLAlchemy tables:")
    for table_name in sorted(Base.metadata.tables.keys()):
        logger.info(f"  ✓ {table_name}")
    logger.info("=" * 50)

    if not destination_configured():
        logger.warning("⚠️ DESTINATION_DATABASE_URL not set: export jobs are unavailable")

    if settings.ENABLE_SCHEDULER:
        start_scheduler()

    logger.info("Application started successfully!")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Shutting down CRM Sync API...")
    stop_scheduler()
