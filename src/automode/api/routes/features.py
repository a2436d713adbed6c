"""Feature list and orphan endpoints."""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel
from rich.console import Console

from ...models import CamelModel, OrphanResult
from ...orchestration import OrphanDetector
from ..deps import get_orphan_detector, get_store, resolve_project_path

router = APIRouter()
console = Console()


class ListRequest(CamelModel):
    """Request body for the feature list endpoint."""
    project_path: Optional[str] = None


class ListResponse(BaseModel):
    success: bool = True
    features: list[dict[str, Any]]


class OrphanResponse(BaseModel):
    success: bool = True
    orphans: list[dict[str, Any]]


def _orphan_payload(orphan: OrphanResult) -> dict[str, Any]:
    return {
        "feature": orphan.feature.model_dump(mode="json", by_alias=True, exclude_none=True),
        "missingBranch": orphan.missing_branch,
    }


def _schedule_orphan_scan(request: Request, detector: OrphanDetector, project_path: str) -> None:
    """Run orphan detection in the background; it logs its own findings."""
    tasks: set = request.app.state.background_tasks
    task = asyncio.get_running_loop().create_task(
        detector.detect_orphaned_features(project_path)
    )
    tasks.add(task)
    task.add_done_callback(tasks.discard)


@router.post("/features/list", response_model=ListResponse)
async def list_features(request: Request, body: ListRequest = ListRequest()):
    """List all features of a project.

    Also starts orphan detection for the project without waiting for it, so
    the list stays fast on every project load.
    """
    project_path = resolve_project_path(request, body.project_path)
    store = get_store(request)

    try:
        features = await store.get_all(project_path)
    except Exception as e:
        console.print(f"[red]List features failed for {project_path}: {e}[/red]")
        raise HTTPException(status_code=500, detail=str(e))

    _schedule_orphan_scan(request, get_orphan_detector(request), project_path)

    return ListResponse(features=[
        f.model_dump(mode="json", by_alias=True, exclude_none=True) for f in features
    ])


@router.get("/features/orphans", response_model=OrphanResponse)
async def get_orphans(request: Request, project_path: Optional[str] = None):
    """Features whose branch no longer exists."""
    project_path = resolve_project_path(request, project_path)
    orphans = await get_orphan_detector(request).detect_orphaned_features(project_path)
    return OrphanResponse(orphans=[_orphan_payload(o) for o in orphans])
