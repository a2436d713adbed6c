"""Shared request helpers for the API routes."""

from pathlib import Path
from typing import Optional

from fastapi import HTTPException, Request

from ..orchestration import AutoModeOrchestrator, OrphanDetector
from ..protocols import FeatureStore


def get_project_path(request: Request) -> Optional[Path]:
    """Get project path from app state."""
    return getattr(request.app.state, "project_path", None)


def resolve_project_path(request: Request, explicit: Optional[str] = None) -> str:
    """Project path from the request, falling back to the monitored project."""
    if explicit:
        return explicit
    project_path = get_project_path(request)
    if project_path is None:
        raise HTTPException(status_code=400, detail="projectPath is required")
    return str(project_path)


def get_orchestrator(request: Request) -> AutoModeOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Auto mode is not available")
    return orchestrator


def get_store(request: Request) -> FeatureStore:
    return request.app.state.store


def get_orphan_detector(request: Request) -> OrphanDetector:
    return request.app.state.orphans
