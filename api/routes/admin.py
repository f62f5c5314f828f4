"""Maintenance endpoints: enqueue the reclamation sweep"""

from __future__ import annotations

from fastapi import APIRouter, Query

from core.models import SweepEnqueuedResponse
from worker.celery_app import celery_app

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/sweep", status_code=202, response_model=SweepEnqueuedResponse)
async def enqueue_sweep(
    grace_seconds: int | None = Query(None, ge=0),
    batch_size: int | None = Query(None, ge=1),
) -> SweepEnqueuedResponse:
    result = celery_app.send_task(
        "storage.sweep_unreferenced",
        kwargs={"grace_seconds": grace_seconds, "batch_size": batch_size},
    )
    return SweepEnqueuedResponse(task_id=result.id)
