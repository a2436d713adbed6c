"""Interruption and restart recovery.

Handles:
- Marking running features interrupted on shutdown, preserving pipeline sub-states
- Resuming interrupted features on startup
- Forced clearing of the running registry
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console

from ..events import AUTO_MODE_EVENT, EventType
from ..models import Feature, FeatureStatus, InterruptionSummary
from ..protocols import EventSink, FeatureStore
from ..status import apply_status, interruption_target
from .registry import RunningRegistry


console = Console()

DEFAULT_INTERRUPT_REASON = "server shutdown"

ResumeHandler = Callable[[str, str, bool], Awaitable[Any]]


class RecoveryManager:
    """Manages interruption on shutdown and resumption on startup.

    Single Responsibility: reclassify interrupted work so nothing executing at
    crash/shutdown time is lost or double-run.

    Dependencies are injected for testability:
    - FeatureStore: For loading records and writing statuses
    - RunningRegistry: The orchestrator's registry (read only here)
    - EventSink: For interruption notifications
    """

    def __init__(
        self,
        store: FeatureStore,
        registry: RunningRegistry,
        events: Optional[EventSink] = None,
    ):
        self.store = store
        self.registry = registry
        self.events = events

        # Set via setter; the orchestrator owns dispatching
        self._resume_handler: Optional[ResumeHandler] = None

    def set_resume_handler(self, handler: ResumeHandler) -> None:
        """Set the coroutine used to resume a feature: (project, id, is_recovery)."""
        self._resume_handler = handler

    async def _load_status(self, project_path: str, feature_id: str) -> Optional[FeatureStatus]:
        """Current status, or None if the record cannot be loaded."""
        try:
            feature = await self.store.get(project_path, feature_id)
        except Exception as e:
            console.print(
                f"[yellow]Could not load feature {feature_id} in {project_path}: {e}[/yellow]"
            )
            return None
        return feature.status if feature else None

    async def mark_feature_interrupted(
        self,
        project_path: str,
        feature_id: str,
        reason: Optional[str] = None
    ) -> bool:
        """Mark one feature interrupted unless it sits in a pipeline sub-state.

        A record that cannot be loaded is marked interrupted anyway. Errors
        from the status update propagate.

        Args:
            project_path: Project the feature belongs to
            feature_id: Feature to mark
            reason: Why the feature was interrupted (logged)

        Returns:
            True if the status was changed, False if it was preserved
        """
        reason = reason or DEFAULT_INTERRUPT_REASON
        current = await self._load_status(project_path, feature_id)
        target = interruption_target(current)

        if target is None:
            console.print(
                f"[dim]Preserving {current.value} for feature {feature_id} "
                f"(project={project_path}, reason={reason})[/dim]"
            )
            return False

        await apply_status(
            self.store, project_path, feature_id, target,
            reason=reason, current=current
        )
        if self.events:
            self.events.emit(AUTO_MODE_EVENT, {
                "type": EventType.FEATURE_INTERRUPTED,
                "featureId": feature_id,
                "projectPath": project_path,
                "message": f"Feature interrupted: {reason}",
            })
        return True

    async def mark_all_running_features_interrupted(
        self,
        reason: Optional[str] = None
    ) -> InterruptionSummary:
        """Mark every registry entry interrupted, concurrently.

        Each entry settles on its own; one failure is logged and recorded in
        the summary without affecting the rest.
        """
        reason = reason or DEFAULT_INTERRUPT_REASON
        entries = self.registry.entries()
        summary = InterruptionSummary()

        if not entries:
            return summary

        console.print(
            f"[yellow]Marking {len(entries)} running feature(s) as interrupted ({reason})[/yellow]"
        )

        results = await asyncio.gather(
            *(self.mark_feature_interrupted(e.project_path, e.feature_id, reason) for e in entries),
            return_exceptions=True
        )

        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                summary.failed[entry.feature_id] = str(result)
                console.print(
                    f"[red]Failed to mark feature {entry.feature_id} interrupted "
                    f"(project={entry.project_path}): {result}[/red]"
                )
            elif result:
                summary.interrupted.append(entry.feature_id)
            else:
                summary.preserved.append(entry.feature_id)

        console.print(
            f"[dim]Interruption pass: {len(summary.interrupted)} interrupted, "
            f"{len(summary.preserved)} preserved, {len(summary.failed)} failed[/dim]"
        )
        return summary

    async def load_interrupted_features(self, project_path: str) -> list[Feature]:
        """Features waiting to be resumed. Store failures yield an empty list."""
        try:
            features = await self.store.get_all(project_path)
        except Exception as e:
            console.print(f"[yellow]Recovery scan failed for {project_path}: {e}[/yellow]")
            return []
        return [f for f in features if f.status == FeatureStatus.INTERRUPTED]

    async def resume_interrupted_features(self, project_path: str) -> list[str]:
        """Resume every interrupted feature of a project with the recovery flag.

        Features awaiting approval are never resumed automatically, and
        features already running are skipped.

        Returns:
            IDs of the features that were resumed
        """
        if self._resume_handler is None:
            raise RuntimeError("No resume handler configured")

        interrupted = [
            f for f in await self.load_interrupted_features(project_path)
            if not self.registry.is_running(f.id)
        ]
        if not interrupted:
            return []

        console.print(
            f"[yellow]Resuming {len(interrupted)} interrupted feature(s) in {project_path}[/yellow]"
        )
        if self.events:
            self.events.emit(AUTO_MODE_EVENT, {
                "type": EventType.RESUMING,
                "projectPath": project_path,
                "featureIds": [f.id for f in interrupted],
                "message": f"Resuming {len(interrupted)} interrupted feature(s)",
            })

        resumed = []
        for feature in interrupted:
            try:
                await self._resume_handler(project_path, feature.id, True)
                resumed.append(feature.id)
            except Exception as e:
                console.print(
                    f"[red]Failed to resume feature {feature.id} (project={project_path}): {e}[/red]"
                )
        return resumed

    def clear_running_features(self) -> int:
        """Forced shutdown clear; returns the number of dropped entries."""
        count = self.registry.clear()
        if count:
            console.print(f"[yellow]Cleared {count} running feature(s) from registry[/yellow]")
        return count
