from fastapi import APIRouter, Depends

from uniconvert.api.deps import get_orchestrator
from uniconvert.services.orchestrator import Orchestrator

router = APIRouter()


@router.get("/storage")
def get_storage_stats(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """get current storage usage statistics"""
    return orchestrator.sweeper.get_disk_usage()


@router.post("/storage/cleanup")
def trigger_cleanup(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """run one cleanup pass right now"""
    result = orchestrator.sweeper.sweep()
    return {
        "success": True,
        "result": result,
    }


@router.post("/reconcile")
def reconcile_jobs(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """fail processing jobs the broker has lost or killed"""
    failed = orchestrator.reconcile()
    return {
        "success": True,
        "failed": failed,
    }
