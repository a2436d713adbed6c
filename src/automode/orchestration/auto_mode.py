"""Auto-mode orchestration - picking up features and dispatching them to an agent.

Handles:
- The per-project auto-loop with a concurrency ceiling
- Dependency-aware, priority-ordered pickup
- Manual and recovery dispatch through the same running registry
- Recording execution outcomes back into the feature store
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from rich.console import Console

from ..errors import AutoModeAlreadyRunningError, FeatureNotFoundError
from ..events import AUTO_MODE_EVENT, EventType
from ..git_manager import GitBranchOracle
from ..models import (
    AutoModeConfig, AutoModeStatus, ExecutionResult, Feature, FeatureStatus,
    InterruptionSummary, OrphanResult, RunningAgentInfo, RunningFeatureEntry
)
from ..protocols import AgentExecutor, BranchOracle, EventSink, FeatureStore
from ..status import apply_status, select_eligible
from .orphans import OrphanDetector
from .recovery import RecoveryManager
from .registry import RunningRegistry


console = Console()


@dataclass
class ExecutionOutcome:
    """What an execution task reports back to its loop."""
    project_path: str
    feature_id: str
    result: Optional[ExecutionResult] = None
    error: Optional[Exception] = None
    cancelled: bool = False
    is_auto_mode: bool = False


class _AutoLoop:
    """Book-keeping for one project's running auto-loop."""

    def __init__(self, project_path: str, max_concurrency: int, queue_size: int):
        self.project_path = project_path
        self.max_concurrency = max_concurrency
        # Completed executions land here; a put is the loop's wake-up signal
        self.outcomes: asyncio.Queue[ExecutionOutcome] = asyncio.Queue(maxsize=queue_size)
        self.active = True
        self.idle_notified = False
        self.task: Optional[asyncio.Task] = None


class AutoModeOrchestrator:
    """Orchestrates feature pickup and execution.

    Single Responsibility: decide which features run, and when. Owns the
    running registry; recovery and orphan detection are delegated to
    RecoveryManager and OrphanDetector, which share this instance's registry.

    Dependencies are injected for testability:
    - FeatureStore: For loading candidates and writing statuses
    - AgentExecutor: For running a feature
    - BranchOracle: For orphan detection (defaults to GitBranchOracle)
    - EventSink: For lifecycle notifications
    """

    def __init__(
        self,
        store: FeatureStore,
        executor: AgentExecutor,
        branches: Optional[BranchOracle] = None,
        events: Optional[EventSink] = None,
        config: Optional[AutoModeConfig] = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Feature store
            executor: Agent executor
            branches: Branch oracle used by orphan detection
            events: Event sink for lifecycle notifications
            config: Auto-mode configuration
        """
        self.store = store
        self.executor = executor
        self.events = events
        self.config = config or AutoModeConfig()

        self.registry = RunningRegistry()
        self.recovery = RecoveryManager(store, self.registry, events)
        self.recovery.set_resume_handler(self.resume_feature)
        self.orphans = OrphanDetector(store, branches or GitBranchOracle())

        self._loops: dict[str, _AutoLoop] = {}
        # Strong references so execution tasks are not garbage collected
        self._executions: dict[str, asyncio.Task] = {}

    def _emit(self, event_type: str, project_path: Optional[str], message: str, **extra) -> None:
        if not self.events:
            return
        payload = {"type": event_type, "message": message, "projectPath": project_path}
        payload.update(extra)
        self.events.emit(AUTO_MODE_EVENT, payload)

    # ------------------------------------------------------------------
    # Auto-loop lifecycle
    # ------------------------------------------------------------------

    def start_auto_loop(
        self,
        project_path: str,
        max_concurrency: Optional[int] = None
    ) -> asyncio.Task:
        """Start the pickup loop for a project.

        Must be called from within a running event loop.

        Args:
            project_path: Project to run
            max_concurrency: Concurrency ceiling (defaults to config)

        Returns:
            The loop task; it ends after stop_auto_loop()

        Raises:
            AutoModeAlreadyRunningError: If the project already has a loop
            ValueError: If max_concurrency is below 1
        """
        if project_path in self._loops:
            raise AutoModeAlreadyRunningError(project_path)

        max_concurrency = max_concurrency or self.config.max_concurrency
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")

        event_loop = asyncio.get_running_loop()
        queue_size = self.config.outcome_queue_size or max_concurrency
        state = _AutoLoop(project_path, max_concurrency, queue_size)
        self._loops[project_path] = state
        state.task = event_loop.create_task(self._run_loop(state))

        console.print(
            f"[green]Auto mode started[/green] for {project_path} "
            f"(max {max_concurrency} concurrent)"
        )
        self._emit(
            EventType.STARTED, project_path,
            f"Auto mode started with max {max_concurrency} concurrent features",
            maxConcurrency=max_concurrency,
        )
        return state.task

    def stop_auto_loop(self, project_path: Optional[str] = None) -> int:
        """Stop the loop of one project, or of every project.

        Idempotent; does not wait for in-flight executions, which keep running
        and record their own outcome when they finish.

        Returns:
            Number of features in flight for the stopped project(s)
        """
        targets = [project_path] if project_path else list(self._loops)
        in_flight = 0

        for path in targets:
            state = self._loops.pop(path, None)
            if state is None:
                continue
            state.active = False
            running = self.registry.count_for_project(path)
            in_flight += running
            if state.task and not state.task.done():
                state.task.cancel()

            console.print(
                f"[yellow]Auto mode stopped[/yellow] for {path} ({running} feature(s) still running)"
            )
            self._emit(
                EventType.STOPPED, path, "Auto mode stopped",
                runningCount=running,
            )

        return in_flight

    def is_auto_loop_running(self, project_path: str) -> bool:
        return project_path in self._loops

    def get_auto_mode_status(self, project_path: str) -> AutoModeStatus:
        state = self._loops.get(project_path)
        return AutoModeStatus(
            project_path=project_path,
            is_running=state is not None,
            max_concurrency=state.max_concurrency if state else None,
            running_feature_ids=[
                e.feature_id for e in self.registry.entries_for_project(project_path)
            ],
        )

    async def _run_loop(self, state: _AutoLoop) -> None:
        """Pickup, then wait for an outcome or the poll interval, until stopped."""
        try:
            while state.active:
                try:
                    await self._pickup(state)
                except Exception as e:
                    console.print(f"[red]Auto mode pickup failed for {state.project_path}: {e}[/red]")
                    self._emit(EventType.ERROR, state.project_path, f"Pickup failed: {e}", error=str(e))

                outcome = await self._next_outcome(state)
                while outcome is not None:
                    await asyncio.shield(self._finalize(outcome))
                    outcome = self._poll_outcome(state)
        finally:
            # Outcomes queued before the stop still need recording
            outcome = self._poll_outcome(state)
            while outcome is not None:
                await asyncio.shield(self._finalize(outcome))
                outcome = self._poll_outcome(state)

    async def _next_outcome(self, state: _AutoLoop) -> Optional[ExecutionOutcome]:
        try:
            return await asyncio.wait_for(
                state.outcomes.get(),
                timeout=self.config.poll_interval_seconds
            )
        except asyncio.TimeoutError:
            return None

    @staticmethod
    def _poll_outcome(state: _AutoLoop) -> Optional[ExecutionOutcome]:
        try:
            return state.outcomes.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def _pickup(self, state: _AutoLoop) -> None:
        """Fill free slots with eligible features."""
        path = state.project_path
        if state.max_concurrency - self.registry.count_for_project(path) <= 0:
            return

        features = await self.store.get_all(path)

        # No await from here to the last dispatch: the slot count and the
        # running set cannot change between the check and the inserts.
        if not state.active:
            return
        running = self.registry.count_for_project(path)
        selected = select_eligible(
            candidates=features,
            all_features=features,
            running_ids=[e.feature_id for e in self.registry],
            slots=state.max_concurrency - running,
            skip_verification=self.config.skip_verification,
        )

        if not selected:
            if running == 0 and not state.idle_notified:
                state.idle_notified = True
                console.print(f"[dim]Auto mode idle for {path}: no eligible features[/dim]")
                self._emit(EventType.IDLE, path, "No pending features - auto mode idle")
            return

        state.idle_notified = False
        for feature in selected:
            self._dispatch(
                path, feature.id,
                is_auto_mode=True,
                is_recovery=feature.status == FeatureStatus.INTERRUPTED,
            )

    # ------------------------------------------------------------------
    # Dispatch and execution
    # ------------------------------------------------------------------

    def _dispatch(
        self,
        project_path: str,
        feature_id: str,
        is_auto_mode: bool,
        is_recovery: bool
    ) -> asyncio.Task:
        """Claim a registry slot and start the execution task.

        Synchronous on purpose: the membership check and the insert happen
        without yielding.

        Raises:
            FeatureAlreadyRunningError: If the feature is already claimed
        """
        event_loop = asyncio.get_running_loop()
        entry = self.registry.add(
            feature_id, project_path,
            is_auto_mode=is_auto_mode,
            is_recovery=is_recovery,
        )
        task = event_loop.create_task(self._execute(entry))
        self._executions[feature_id] = task
        return task

    async def run_feature(
        self,
        project_path: str,
        feature_id: str,
        is_auto_mode: bool = False
    ) -> None:
        """Run a single feature outside the auto-loop and wait for it.

        Raises:
            FeatureAlreadyRunningError: If the feature is already running
        """
        task = self._dispatch(project_path, feature_id, is_auto_mode, is_recovery=False)
        await task

    async def resume_feature(
        self,
        project_path: str,
        feature_id: str,
        is_recovery: bool = True
    ) -> asyncio.Task:
        """Dispatch a previously interrupted feature without waiting for it.

        Raises:
            FeatureAlreadyRunningError: If the feature is already running
        """
        return self._dispatch(project_path, feature_id, is_auto_mode=False, is_recovery=is_recovery)

    async def _execute(self, entry: RunningFeatureEntry) -> None:
        path, feature_id = entry.project_path, entry.feature_id
        outcome = ExecutionOutcome(
            project_path=path, feature_id=feature_id, is_auto_mode=entry.is_auto_mode
        )

        try:
            feature = await self.store.get(path, feature_id)
            if feature is None:
                raise FeatureNotFoundError(feature_id, path)

            # A pipeline sub-state already says where the run picks up
            if not feature.status.is_pipeline:
                await apply_status(
                    self.store, path, feature_id, FeatureStatus.RUNNING,
                    reason="resumed after interruption" if entry.is_recovery else "dispatched",
                    current=feature.status,
                )

            self._emit(
                EventType.FEATURE_START, path,
                f"Starting feature: {feature.display_name}",
                featureId=feature_id,
                isAutoMode=entry.is_auto_mode,
                isRecovery=entry.is_recovery,
            )
            outcome.result = await self.executor.execute(
                path, feature_id, is_recovery=entry.is_recovery
            )
        except asyncio.CancelledError:
            outcome.cancelled = True
            await asyncio.shield(self._finalize(outcome))
            raise
        except Exception as e:
            outcome.error = e

        await self._deliver(outcome)

    async def _deliver(self, outcome: ExecutionOutcome) -> None:
        """Hand an auto-mode outcome to the project's loop, or record it directly.

        Manual runs are recorded here so their caller sees the final status.
        """
        state = self._loops.get(outcome.project_path)
        if outcome.is_auto_mode and state is not None and state.active:
            try:
                state.outcomes.put_nowait(outcome)
                return
            except asyncio.QueueFull:
                console.print(
                    f"[dim]Outcome queue full for {outcome.project_path}, "
                    f"recording {outcome.feature_id} directly[/dim]"
                )
        await self._finalize(outcome)

    async def _load_quietly(self, project_path: str, feature_id: str) -> Optional[Feature]:
        try:
            return await self.store.get(project_path, feature_id)
        except Exception:
            return None

    @staticmethod
    def _completion_status(
        feature: Optional[Feature],
        result: Optional[ExecutionResult]
    ) -> FeatureStatus:
        """Final status of a successful run.

        The executor's choice wins; otherwise features that skipped tests wait
        for a human to approve them.
        """
        if result is not None and result.status is not None:
            return result.status
        if feature is not None and feature.skip_tests:
            return FeatureStatus.WAITING_APPROVAL
        return FeatureStatus.COMPLETED

    async def _finalize(self, outcome: ExecutionOutcome) -> None:
        """Write the final status and release the registry slot."""
        path, feature_id = outcome.project_path, outcome.feature_id

        try:
            if outcome.cancelled:
                await self.recovery.mark_feature_interrupted(path, feature_id, "execution cancelled")

            elif isinstance(outcome.error, FeatureNotFoundError):
                console.print(f"[red]Cannot run {feature_id}: {outcome.error}[/red]")
                self._emit(
                    EventType.ERROR, path, str(outcome.error),
                    featureId=feature_id, error=str(outcome.error),
                )

            elif outcome.error is not None:
                feature = await self._load_quietly(path, feature_id)
                await apply_status(
                    self.store, path, feature_id, FeatureStatus.FAILED,
                    reason=f"execution failed: {outcome.error}",
                    current=feature.status if feature else None,
                )
                self._emit(
                    EventType.FEATURE_COMPLETE, path,
                    f"Feature failed: {outcome.error}",
                    featureId=feature_id, passes=False, error=str(outcome.error),
                )

            else:
                feature = await self._load_quietly(path, feature_id)
                status = self._completion_status(feature, outcome.result)
                summary = outcome.result.summary if outcome.result else None
                await apply_status(
                    self.store, path, feature_id, status,
                    reason=summary or "execution finished",
                    current=feature.status if feature else None,
                )
                self._emit(
                    EventType.FEATURE_COMPLETE, path,
                    f"Feature finished with status {status.value}",
                    featureId=feature_id, passes=True, status=status.value,
                )
        except Exception as e:
            console.print(
                f"[red]Failed to record outcome of feature {feature_id} (project={path}): {e}[/red]"
            )
            self._emit(
                EventType.ERROR, path, f"Failed to record outcome: {e}",
                featureId=feature_id, error=str(e),
            )
        finally:
            self.registry.remove(feature_id)
            self._executions.pop(feature_id, None)

    # ------------------------------------------------------------------
    # Registry views
    # ------------------------------------------------------------------

    def is_feature_running(self, feature_id: str) -> bool:
        return self.registry.is_running(feature_id)

    async def get_running_agents(self) -> list[RunningAgentInfo]:
        """Describe every running feature, looking titles up concurrently.

        A failed or missing lookup leaves that entry's title and description
        unset instead of failing the call.
        """
        entries = self.registry.entries()
        if not entries:
            return []

        async def describe(entry: RunningFeatureEntry) -> RunningAgentInfo:
            try:
                feature = await self.store.get(entry.project_path, entry.feature_id)
            except Exception as e:
                console.print(f"[dim]No details for running feature {entry.feature_id}: {e}[/dim]")
                feature = None
            return RunningAgentInfo.from_entry(entry, feature)

        return list(await asyncio.gather(*(describe(e) for e in entries)))

    # ------------------------------------------------------------------
    # Delegated operations
    # ------------------------------------------------------------------

    async def detect_orphaned_features(self, project_path: str) -> list[OrphanResult]:
        return await self.orphans.detect_orphaned_features(project_path)

    async def mark_feature_interrupted(
        self,
        project_path: str,
        feature_id: str,
        reason: Optional[str] = None
    ) -> bool:
        return await self.recovery.mark_feature_interrupted(project_path, feature_id, reason)

    async def mark_all_running_features_interrupted(
        self,
        reason: Optional[str] = None
    ) -> InterruptionSummary:
        return await self.recovery.mark_all_running_features_interrupted(reason)

    async def resume_interrupted_features(self, project_path: str) -> list[str]:
        return await self.recovery.resume_interrupted_features(project_path)

    async def shutdown(self, reason: Optional[str] = None) -> InterruptionSummary:
        """Stop every loop, mark running work interrupted, and clear the registry."""
        self.stop_auto_loop()
        summary = await self.mark_all_running_features_interrupted(reason)
        self.recovery.clear_running_features()
        return summary
