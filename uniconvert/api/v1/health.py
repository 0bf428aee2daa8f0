from fastapi import APIRouter, Depends
from datetime import datetime, timezone

from uniconvert.api.deps import get_orchestrator
from uniconvert.converters import check_tools, default_converters
from uniconvert.services.orchestrator import Orchestrator

router = APIRouter()


def _probe(check) -> dict:
    try:
        check()
    except Exception as e:
        return {"status": "unhealthy", "message": str(e)}
    return {"status": "healthy", "message": "connected"}


def _ping_broker(orchestrator: Orchestrator):
    if not orchestrator.ping():
        raise ConnectionError("no broker connection")


@router.get("/")
def tool_status():
    """availability of the external conversion tools"""
    tools = check_tools(default_converters())
    return {
        "status": "ok" if all(tools.values()) else "degraded",
        "tools": tools,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
def readiness(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """database and broker reachability"""
    checks = {
        "database": _probe(orchestrator.tracker.count_by_status),
        "redis": _probe(lambda: _ping_broker(orchestrator)),
    }
    ready = all(check["status"] == "healthy" for check in checks.values())
    return {
        "status": "healthy" if ready else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


@router.get("/metrics")
def metrics(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """job counts from the store and queue depths from the broker"""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "jobs": orchestrator.tracker.count_by_status(),
        "queues": orchestrator.queue_counts(),
    }
