"""FastAPI application for the auto-mode dashboard backend.

Provides REST API and WebSocket endpoints for controlling auto mode and
watching features as they move through their lifecycle.
"""

from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..git_manager import GitBranchOracle
from ..orchestration import AutoModeOrchestrator, OrphanDetector
from ..protocols import EventSink, FeatureStore
from ..store import JsonFeatureStore
from .routes import auto_mode, features, running_agents
from .websocket import manager
from .websocket import router as websocket_router


def create_app(
    orchestrator: Optional[AutoModeOrchestrator] = None,
    project_path: Optional[Path] = None,
    store: Optional[FeatureStore] = None,
    events: Optional[EventSink] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Without an orchestrator the app is read-only: features and orphans can be
    listed, but auto-mode control and running-agent endpoints answer 503.

    Args:
        orchestrator: Orchestrator to control
        project_path: Default project for requests that do not name one
        store: Feature store (defaults to the orchestrator's, then to JSON files)
        events: Event sink relayed over the WebSocket (defaults to the orchestrator's)

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Auto Mode API",
        description="Feature orchestration for multi-agent development",
        version=__version__,
    )

    # Add CORS middleware for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if store is None:
        store = orchestrator.store if orchestrator else JsonFeatureStore()
    if events is None and orchestrator is not None:
        events = orchestrator.events

    app.state.project_path = project_path
    app.state.orchestrator = orchestrator
    app.state.store = store
    app.state.orphans = orchestrator.orphans if orchestrator else OrphanDetector(store, GitBranchOracle())
    app.state.background_tasks = set()

    if events is not None:
        manager.attach(events)

    # Include routers
    app.include_router(features.router, prefix="/api", tags=["features"])
    app.include_router(running_agents.router, prefix="/api", tags=["running-agents"])
    app.include_router(auto_mode.router, prefix="/api", tags=["auto-mode"])
    app.include_router(websocket_router, prefix="/ws", tags=["websocket"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Auto Mode API",
            "version": __version__,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


def run_dashboard(
    project_path: Path,
    host: str = "127.0.0.1",
    port: int = 8000,
    reload: bool = False,
    orchestrator: Optional[AutoModeOrchestrator] = None,
) -> None:
    """Run the dashboard server.

    Args:
        project_path: Default project for requests
        host: Host to bind to
        port: Port to listen on
        reload: Enable auto-reload for development
        orchestrator: Orchestrator to control, if any
    """
    import uvicorn

    app = create_app(orchestrator, project_path)

    uvicorn.run(
        app,
        host=host,
        port=port,
        reload=reload,
    )
