"""Running agents endpoint."""

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..deps import get_orchestrator

router = APIRouter()


class RunningAgentsResponse(BaseModel):
    success: bool = True
    runningAgents: list[dict[str, Any]]
    totalCount: int


@router.get("/running-agents", response_model=RunningAgentsResponse)
async def get_running_agents(request: Request) -> RunningAgentsResponse:
    """Features currently executing, across all projects.

    Title and description are missing for entries whose feature could not be
    loaded.
    """
    agents = await get_orchestrator(request).get_running_agents()
    return RunningAgentsResponse(
        runningAgents=[a.model_dump(mode="json", by_alias=True) for a in agents],
        totalCount=len(agents),
    )
