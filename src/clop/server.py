"""
FastAPI server for the optimiser.

Provides REST API endpoints for jobs, codec tools and folder automation.

Usage:
    clop serve --port 8000
"""

import os
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from clop import __version__
from clop.api import jobs_router
from clop.config.settings import Settings
from clop.jobs import JobManager
from clop.optimisation import BinaryManager, OptimisationEngine
from clop.utils.logging_config import get_logger
from clop.watch import DirWatcher

logger = get_logger(__name__)


class AutomationResponse(BaseModel):
    """Response model for folder automation state."""
    enabled: bool
    paused: bool
    skipped: List[str]


class PauseRequest(BaseModel):
    paused: bool


def build_services(settings: Settings) -> Tuple[JobManager, BinaryManager, Optional[DirWatcher]]:
    """
    Construct the long-lived services once, at process start.

    Returns:
        Job manager, binary manager and, when folders are configured, a
        folder watcher (not yet started).
    """
    binaries = BinaryManager(settings.bin_dir)
    engine = OptimisationEngine(settings, binaries=binaries)
    manager = JobManager(engine, settings)

    watcher = None
    if settings.image_dirs or settings.video_dirs:
        watcher = DirWatcher(manager, settings)
    return manager, binaries, watcher


def create_app(
    manager: JobManager,
    binaries: Optional[BinaryManager] = None,
    watcher: Optional[DirWatcher] = None
) -> FastAPI:
    """
    Create the FastAPI app around already constructed services.

    The watcher, if given, is started with the app and stopped on shutdown
    together with the job manager.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if watcher is not None:
            watcher.start()
        yield
        if watcher is not None:
            watcher.stop()
        manager.shutdown(wait=False)

    app = FastAPI(
        title="Clop Optimiser API",
        description="REST API for image and video optimisation jobs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.job_manager = manager
    app.state.binaries = binaries
    app.state.watcher = watcher

    # Default to localhost for development, allow override
    cors_origins = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000"
        ).split(",")
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs_router)

    @app.get("/")
    def read_root():
        """Root endpoint - API information."""
        return {
            "name": "Clop Optimiser API",
            "version": __version__,
            "endpoints": {
                "jobs": "/api/jobs/*",
                "tools": "/api/tools",
                "automation": "/api/automation",
                "docs": "/docs",
            }
        }

    @app.get("/api/tools")
    def get_tools(request: Request) -> Dict[str, Optional[str]]:
        """Codec binaries and where they were found (null when missing)."""
        found = request.app.state.binaries
        if found is None:
            return {}
        return {name: str(path) if path else None for name, path in found.available().items()}

    @app.get("/api/automation", response_model=AutomationResponse)
    def get_automation(request: Request):
        """Folder automation state and files skipped for size."""
        current = request.app.state.watcher
        if current is None:
            return AutomationResponse(enabled=False, paused=False, skipped=[])
        return AutomationResponse(
            enabled=True,
            paused=current.paused,
            skipped=[str(p) for p in current.skipped],
        )

    @app.post("/api/automation/pause", response_model=AutomationResponse)
    def set_paused(body: PauseRequest, request: Request):
        """Pause or resume automatic optimisation of watched folders."""
        current = request.app.state.watcher
        if current is None:
            raise HTTPException(status_code=404, detail="No folders are watched")
        current.set_paused(body.paused)
        return get_automation(request)

    return app
