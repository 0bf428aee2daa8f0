from fastapi import Request

from uniconvert.services.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    """the orchestrator constructed for this app at startup"""
    return request.app.state.orchestrator
