from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from typing import Optional

from uniconvert.api.deps import get_orchestrator
from uniconvert.core.errors import NotFoundError, ValidationError
from uniconvert.services.orchestrator import Orchestrator

router = APIRouter()


@router.get("/")
def list_jobs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = None,
    media_type: Optional[str] = Query(default=None, alias="type"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """newest-first listing across every media type"""
    try:
        jobs, total = orchestrator.list_jobs(page=page, limit=limit, status=status, media_type=media_type)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "jobs": [job.to_status_dict() for job in jobs],
        "page": page,
        "limit": limit,
        "total": total,
    }


@router.get("/{job_id}")
def get_job(job_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        job = orchestrator.get_job(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_status_dict()


@router.delete("/{job_id}")
def cancel_job(
    job_id: str,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """cancel a waiting job (removed) or a running one (failed, best effort)"""
    try:
        outcome = orchestrator.cancel_job(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    if outcome.needs_notification:
        # delivered after the response; the job is already terminal
        background_tasks.add_task(orchestrator.notifier.notify_job, outcome.job)

    return {
        "success": True,
        "message": outcome.message,
        "job_id": job_id,
    }
