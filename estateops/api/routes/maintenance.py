from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from estateops.api.dependencies import get_actor, get_engine
from estateops.api.schemas.maintenance import ReconcileResponse, RetentionSweepRequest, RetentionSweepResponse
from estateops.jobs.engine import JobEngine

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/retention/sweep", response_model=RetentionSweepResponse)
def run_retention_sweep(
    request: RetentionSweepRequest | None = None,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> RetentionSweepResponse:
    days = (request.retention_days if request else None) or engine.settings.default_retention_days
    try:
        removed = engine.sweep(days, actor=actor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return RetentionSweepResponse(removed=removed, retention_days=days)


@router.post("/reconcile", response_model=ReconcileResponse)
def reconcile_interrupted_jobs(
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> ReconcileResponse:
    return ReconcileResponse(reconciled=engine.reconcile_interrupted_jobs(actor=actor))
