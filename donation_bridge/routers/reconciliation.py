"""Reconciliation router for inspecting and triggering bridge sync runs."""

from fastapi import APIRouter, HTTPException, Depends, Request
from donation_bridge.models.reconciliation import ReconciliationStatus, RunSummary
from donation_bridge.services.reconciliation import BridgeReconciler

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


def get_reconciler(request: Request) -> BridgeReconciler:
    """Reconciler created by the application lifespan."""
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        raise HTTPException(status_code=503, detail="Reconciler not initialized")
    return reconciler


@router.get("/status", response_model=ReconciliationStatus)
async def get_status(reconciler: BridgeReconciler = Depends(get_reconciler)):
    """Get reconciler state and the last run summary."""
    settings = reconciler.settings
    last_run = reconciler.last_run

    return ReconciliationStatus(
        running=reconciler.running,
        interval_minutes=settings.reconcile_interval_minutes,
        batch_limit=settings.reconcile_batch_limit,
        last_run=RunSummary.from_run(last_run) if last_run else None
    )


@router.post("/run", response_model=RunSummary)
async def trigger_run(reconciler: BridgeReconciler = Depends(get_reconciler)):
    """Run reconciliation now instead of waiting for the next tick."""
    if reconciler.running:
        raise HTTPException(status_code=409, detail="Reconciliation already running")

    run = await reconciler.run_once()
    if run is None:
        raise HTTPException(status_code=409, detail="Reconciliation already running")

    return RunSummary.from_run(run)
