from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from typing import Optional
import logging

from uniconvert.api.v1 import admin, convert, health, jobs
from uniconvert.core.config import settings
from uniconvert.core.logging_config import configure_logging
from uniconvert.services.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def create_app(
    orchestrator: Optional[Orchestrator] = None,
    start_sweeper: Optional[bool] = None,
    start_reconciler: Optional[bool] = None,
) -> FastAPI:
    """
    build the api around an orchestrator

    when none is given, one is constructed from the environment at startup
    and closed again at shutdown.
    """
    app = FastAPI(title=settings.PROJECT_NAME)
    app.state.orchestrator = orchestrator
    app.state.owns_orchestrator = orchestrator is None
    app.state.background_stops = []
    if start_sweeper is None:
        start_sweeper = settings.EMBEDDED_SWEEPER
    if start_reconciler is None:
        start_reconciler = settings.EMBEDDED_RECONCILER

    @app.on_event("startup")
    def on_startup():
        if app.state.orchestrator is None:
            configure_logging(settings.LOG_LEVEL, settings.LOG_DIR, process_name="api")
            app.state.orchestrator = Orchestrator.from_settings(settings)
        app.state.orchestrator.ensure_directories()
        if start_sweeper:
            app.state.background_stops.append(
                app.state.orchestrator.sweeper.start_background(settings.CLEANUP_INTERVAL_HOURS)
            )
            logger.info("cleanup sweeper started")
        if start_reconciler:
            app.state.background_stops.append(
                app.state.orchestrator.start_reconciler(settings.RECONCILE_INTERVAL_SECONDS)
            )
            logger.info("job reconciler started")

    @app.on_event("shutdown")
    def on_shutdown():
        for stop_event in app.state.background_stops:
            stop_event.set()
        app.state.background_stops = []
        if app.state.owns_orchestrator and app.state.orchestrator is not None:
            app.state.orchestrator.close()

    @app.get("/")
    def read_root():
        return {"message": "Welcome to UniConvert API"}

    app.include_router(health.router, prefix="/api/health", tags=["health"])
    app.include_router(convert.router, prefix="/api/convert", tags=["convert"])
    app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

    outputs_dir = orchestrator.outputs_dir if orchestrator else settings.OUTPUTS_DIR
    app.mount("/downloads", StaticFiles(directory=outputs_dir, check_dir=False), name="downloads")
    return app


app = create_app()
