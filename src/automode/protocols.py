"""Protocol definitions for the collaborators the orchestrator consumes.

These protocols define the interfaces for external components, enabling:
- Loose coupling between the core and storage/git/agent backends
- Easy testing via in-memory implementations
- Clear contracts for extensibility

Every I/O method is a coroutine: each call is a suspension point of the loop.
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .models import ExecutionResult, Feature, FeatureStatus


EventCallback = Callable[[str, dict[str, Any]], None]


@runtime_checkable
class FeatureStore(Protocol):
    """Protocol for reading and updating feature records."""

    async def get_all(self, project_path: str) -> list[Feature]:
        """Load every feature of a project."""
        ...

    async def get(self, project_path: str, feature_id: str) -> Optional[Feature]:
        """Load one feature, or None if it does not exist."""
        ...

    async def update_status(
        self,
        project_path: str,
        feature_id: str,
        status: FeatureStatus
    ) -> None:
        """Persist a new status for a feature."""
        ...


@runtime_checkable
class BranchOracle(Protocol):
    """Protocol for the two git queries the core needs."""

    async def list_branches(self, project_path: str) -> set[str]:
        """Names of the local branches that exist."""
        ...

    async def current_branch(self, project_path: str) -> Optional[str]:
        """Name of the checked-out branch, or None when detached/unknown."""
        ...


@runtime_checkable
class AgentExecutor(Protocol):
    """Protocol for the agent that actually implements a feature.

    Returning normally means success; raising means failure. Timeouts are the
    executor's responsibility.
    """

    async def execute(
        self,
        project_path: str,
        feature_id: str,
        *,
        is_recovery: bool = False
    ) -> Optional[ExecutionResult]:
        """Run the feature to completion."""
        ...


@runtime_checkable
class EventSink(Protocol):
    """Protocol for lifecycle notifications."""

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        ...

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver an event to every subscriber."""
        ...
