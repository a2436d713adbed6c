"""Auto mode control endpoints (start/stop/status)."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ...errors import AutoModeAlreadyRunningError
from ...models import CamelModel
from ..deps import get_orchestrator, resolve_project_path

router = APIRouter()


class StartRequest(CamelModel):
    """Request body for starting auto mode."""
    project_path: Optional[str] = None
    max_concurrency: Optional[int] = Field(default=None, ge=1, le=10)


class StopRequest(CamelModel):
    """Request body for stopping auto mode."""
    project_path: Optional[str] = None


class ControlResponse(BaseModel):
    """Response from a control action."""
    success: bool
    message: str
    runningFeatures: int = 0


class StatusResponse(BaseModel):
    success: bool = True
    isRunning: bool
    maxConcurrency: Optional[int] = None
    runningFeatures: list[str]
    runningCount: int


@router.post("/auto-mode/start", response_model=ControlResponse)
async def start_auto_mode(request: Request, body: StartRequest) -> ControlResponse:
    """Start the auto-loop for a project."""
    orchestrator = get_orchestrator(request)
    project_path = resolve_project_path(request, body.project_path)

    try:
        orchestrator.start_auto_loop(project_path, body.max_concurrency)
    except AutoModeAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))

    status = orchestrator.get_auto_mode_status(project_path)
    return ControlResponse(
        success=True,
        message=f"Auto mode started with max {status.max_concurrency} concurrent features",
        runningFeatures=status.running_count,
    )


@router.post("/auto-mode/stop", response_model=ControlResponse)
async def stop_auto_mode(request: Request, body: StopRequest) -> ControlResponse:
    """Stop the auto-loop for a project.

    Stopping a project that is not running succeeds with zero running
    features. Executions already in flight keep running.
    """
    orchestrator = get_orchestrator(request)
    project_path = resolve_project_path(request, body.project_path)

    running = orchestrator.stop_auto_loop(project_path)
    return ControlResponse(
        success=True,
        message="Auto mode stopped",
        runningFeatures=running,
    )


@router.get("/auto-mode/status", response_model=StatusResponse)
async def auto_mode_status(request: Request, project_path: Optional[str] = None) -> StatusResponse:
    orchestrator = get_orchestrator(request)
    status = orchestrator.get_auto_mode_status(resolve_project_path(request, project_path))
    return StatusResponse(
        isRunning=status.is_running,
        maxConcurrency=status.max_concurrency,
        runningFeatures=status.running_feature_ids,
        runningCount=status.running_count,
    )
