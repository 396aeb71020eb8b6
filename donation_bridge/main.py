"""
Donation Bridge Reconciler - FastAPI Application

Hosts the periodic job that syncs donation bridge status with the bridge monitor.
"""

import logging

from fastapi import FastAPI
from contextlib import asynccontextmanager

from donation_bridge.routers import reconciliation
from donation_bridge.config import get_settings
from donation_bridge.database import get_record_store
from donation_bridge.services.bridge_monitor import get_bridge_monitor
from donation_bridge.services.reconciliation import (
    BridgeReconciler, build_scheduler, register_bridge_reconciliation
)

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    bridge = get_bridge_monitor()
    reconciler = BridgeReconciler(get_record_store(), bridge, settings)
    scheduler = build_scheduler(settings)
    app.state.reconciler = reconciler

    # Startup
    if settings.scheduler_enabled and settings.bridge_monitor_base_url:
        register_bridge_reconciliation(reconciler, scheduler)
    else:
        logger.warning("Bridge reconciliation schedule disabled")
    logger.info("Donation bridge reconciler starting up")
    yield
    # Shutdown
    await scheduler.stop()
    await bridge.close()
    logger.info("Donation bridge reconciler shut down")


app = FastAPI(
    title="Donation Bridge Reconciler",
    description="""
    Keeps donation settlement state in sync with the bridge monitor.

    ## Features
    - Every 5 minutes, checks paid donations against the bridge monitor
    - Marks donations Paid, Cancelled, Unknown or Expired in the bridge
    - Flags milestones once all their donations settled in the bridge
    """,
    version="1.0.0",
    lifespan=lifespan
)

# Register routers
app.include_router(reconciliation.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "Donation Bridge Reconciler",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    settings = get_settings()

    return {
        "status": "healthy",
        "supabase_configured": bool(
            settings.supabase_url and (settings.supabase_service_key or settings.supabase_key)
        ),
        "bridge_monitor_configured": bool(settings.bridge_monitor_base_url),
        "reconcile_interval_minutes": settings.reconcile_interval_minutes,
        "reconcile_batch_limit": settings.reconcile_batch_limit
    }
