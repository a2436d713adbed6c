"""Tests for AutoModeOrchestrator.

Tests cover:
- Auto-loop lifecycle (start/stop/status)
- Concurrency ceiling and dependency-aware pickup
- Outcome recording (completed, failed, waiting approval, cancelled)
- Manual and recovery dispatch
- Running agent views and shutdown
"""

import asyncio
import time

import pytest

from automode.errors import (
    AutoModeAlreadyRunningError, FeatureAlreadyRunningError,
)
from automode.events import AUTO_MODE_EVENT, EventType
from automode.models import AutoModeConfig, ExecutionResult, FeatureStatus
from automode.orchestration import AutoModeOrchestrator
from automode.protocols import AgentExecutor, FeatureStore

from fakes import (
    OTHER_PROJECT, PROJECT, FakeBranchOracle, FakeExecutor, FakeFeatureStore,
    RecordingEventBus, make_feature, wait_until,
)


S = FeatureStatus


def make_orchestrator(*features, executor=None, **config):
    config.setdefault("poll_interval_seconds", 0.01)
    store = FakeFeatureStore({PROJECT: list(features)})
    executor = executor or FakeExecutor()
    events = RecordingEventBus()
    orchestrator = AutoModeOrchestrator(
        store, executor,
        branches=FakeBranchOracle(),
        events=events,
        config=AutoModeConfig(**config),
    )
    return orchestrator, store, executor, events


async def stop_and_wait(orchestrator, task, project_path=PROJECT):
    orchestrator.stop_auto_loop(project_path)
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=2)


# =============================================================================
# Protocol compliance
# =============================================================================

class TestProtocolCompliance:
    """Tests that the fakes satisfy protocol requirements."""

    def test_fake_store_satisfies_protocol(self):
        assert isinstance(FakeFeatureStore(), FeatureStore)

    def test_fake_executor_satisfies_protocol(self):
        assert isinstance(FakeExecutor(), AgentExecutor)


# =============================================================================
# Loop lifecycle
# =============================================================================

class TestAutoLoopLifecycle:
    """Tests for starting and stopping the auto-loop."""

    @pytest.mark.asyncio
    async def test_start_emits_started_event(self):
        orchestrator, _, _, events = make_orchestrator()

        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=2)

        assert orchestrator.is_auto_loop_running(PROJECT)
        (payload,) = events.of_type(EventType.STARTED)
        assert events.events[0][0] == AUTO_MODE_EVENT
        assert payload["message"] == "Auto mode started with max 2 concurrent features"
        assert payload["maxConcurrency"] == 2
        assert payload["projectPath"] == PROJECT

        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_start_twice_raises(self):
        orchestrator, _, _, _ = make_orchestrator()
        task = orchestrator.start_auto_loop(PROJECT)

        with pytest.raises(AutoModeAlreadyRunningError) as exc_info:
            orchestrator.start_auto_loop(PROJECT)

        assert "already running" in str(exc_info.value)
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_projects_run_independently(self):
        orchestrator, _, _, _ = make_orchestrator()
        first = orchestrator.start_auto_loop(PROJECT)
        second = orchestrator.start_auto_loop(OTHER_PROJECT)

        await stop_and_wait(orchestrator, first)

        assert not orchestrator.is_auto_loop_running(PROJECT)
        assert orchestrator.is_auto_loop_running(OTHER_PROJECT)
        await stop_and_wait(orchestrator, second, OTHER_PROJECT)

    @pytest.mark.asyncio
    async def test_invalid_concurrency_raises(self):
        orchestrator, _, _, _ = make_orchestrator()

        with pytest.raises(ValueError):
            orchestrator.start_auto_loop(PROJECT, max_concurrency=-1)

        assert not orchestrator.is_auto_loop_running(PROJECT)

    @pytest.mark.asyncio
    async def test_default_concurrency_from_config(self):
        orchestrator, _, _, _ = make_orchestrator(max_concurrency=4)
        task = orchestrator.start_auto_loop(PROJECT)

        assert orchestrator.get_auto_mode_status(PROJECT).max_concurrency == 4
        await stop_and_wait(orchestrator, task)

    def test_stop_when_not_running_returns_zero(self):
        orchestrator, _, _, events = make_orchestrator()

        assert orchestrator.stop_auto_loop(PROJECT) == 0
        assert orchestrator.stop_auto_loop() == 0
        assert events.events == []

    @pytest.mark.asyncio
    async def test_stop_returns_in_flight_count_and_lets_them_finish(self):
        executor = FakeExecutor(hold=True)
        orchestrator, store, _, events = make_orchestrator(
            make_feature("a", minutes=0),
            make_feature("b", minutes=1),
            make_feature("c", minutes=2),
            executor=executor,
        )
        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=2)
        await wait_until(lambda: executor.active == 2)

        running = orchestrator.stop_auto_loop(PROJECT)
        await asyncio.wait([task], timeout=2)

        assert task.cancelled()
        assert running == 2
        assert events.of_type(EventType.STOPPED)[0]["runningCount"] == 2

        executor.release_all()
        await wait_until(lambda: len(orchestrator.registry) == 0)
        assert store.status_of(PROJECT, "a") == S.COMPLETED
        assert store.status_of(PROJECT, "b") == S.COMPLETED
        assert store.status_of(PROJECT, "c") == S.BACKLOG

    @pytest.mark.asyncio
    async def test_status_snapshot(self):
        executor = FakeExecutor(hold=True)
        orchestrator, _, _, _ = make_orchestrator(make_feature("a"), executor=executor)

        assert orchestrator.get_auto_mode_status(PROJECT).is_running is False

        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=1)
        await wait_until(lambda: executor.active == 1)
        status = orchestrator.get_auto_mode_status(PROJECT)

        assert status.is_running is True
        assert status.running_feature_ids == ["a"]
        assert orchestrator.is_feature_running("a")

        await stop_and_wait(orchestrator, task)
        executor.release_all()
        await wait_until(lambda: not orchestrator.is_feature_running("a"))


# =============================================================================
# Pickup
# =============================================================================

class TestPickup:
    """Tests for the concurrency ceiling and dependency-aware pickup."""

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self):
        executor = FakeExecutor(hold=True)
        features = [make_feature(f"f{i}", minutes=i) for i in range(4)]
        orchestrator, store, _, _ = make_orchestrator(*features, executor=executor)
        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=2)

        await wait_until(lambda: executor.active == 2)
        await asyncio.sleep(0.05)
        assert executor.started == ["f0", "f1"]

        executor.release("f0")
        await wait_until(lambda: len(executor.started) == 3)
        assert executor.started[2] == "f2"
        assert executor.max_active == 2

        executor.release_all()
        await wait_until(lambda: all(store.status_of(PROJECT, f.id) == S.COMPLETED for f in features))
        assert executor.max_active <= 2
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_priority_order(self):
        orchestrator, store, executor, _ = make_orchestrator(
            make_feature("low", priority=1, minutes=0),
            make_feature("high", priority=9, minutes=5),
        )
        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=1)

        await wait_until(lambda: store.status_of(PROJECT, "low") == S.COMPLETED)

        assert executor.started == ["high", "low"]
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_dependent_waits_for_dependency(self):
        executor = FakeExecutor(hold=True)
        orchestrator, store, _, _ = make_orchestrator(
            make_feature("base"),
            make_feature("child", dependencies=["base"]),
            executor=executor,
        )
        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=3)

        await wait_until(lambda: executor.started == ["base"])
        await asyncio.sleep(0.05)
        assert executor.started == ["base"]

        executor.release("base")
        await wait_until(lambda: "child" in executor.started)
        assert store.status_of(PROJECT, "base") == S.COMPLETED

        executor.release_all()
        await wait_until(lambda: store.status_of(PROJECT, "child") == S.COMPLETED)
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_failed_dependency_blocks_with_skip_verification(self):
        """Regression: a failed dependency must not unblock its dependents."""
        executor = FakeExecutor()
        executor.errors["base"] = RuntimeError("agent crashed")
        orchestrator, store, _, events = make_orchestrator(
            make_feature("base"),
            make_feature("child", dependencies=["base"]),
            executor=executor,
            skip_verification=True,
        )
        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=1)

        await wait_until(lambda: events.of_type(EventType.IDLE))

        assert store.status_of(PROJECT, "base") == S.FAILED
        assert store.status_of(PROJECT, "child") == S.BACKLOG
        assert executor.started == ["base"]
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_skip_verification_accepts_waiting_approval(self):
        orchestrator, store, executor, _ = make_orchestrator(
            make_feature("base", S.WAITING_APPROVAL),
            make_feature("child", dependencies=["base"]),
            skip_verification=True,
        )
        task = orchestrator.start_auto_loop(PROJECT)

        await wait_until(lambda: store.status_of(PROJECT, "child") == S.COMPLETED)

        assert executor.started == ["child"]
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_idle_event_emitted_once(self):
        orchestrator, _, _, events = make_orchestrator(make_feature("done", S.COMPLETED))
        task = orchestrator.start_auto_loop(PROJECT)

        await wait_until(lambda: events.of_type(EventType.IDLE))
        await asyncio.sleep(0.05)

        assert len(events.of_type(EventType.IDLE)) == 1
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_interrupted_feature_resumed_with_recovery_flag(self):
        orchestrator, store, executor, _ = make_orchestrator(make_feature("a", S.INTERRUPTED))
        task = orchestrator.start_auto_loop(PROJECT)

        await wait_until(lambda: store.status_of(PROJECT, "a") == S.COMPLETED)

        assert executor.calls == [(PROJECT, "a", True)]
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_pickup_survives_store_errors(self):
        orchestrator, store, executor, events = make_orchestrator(make_feature("a"))
        store.fail_get_all = True
        task = orchestrator.start_auto_loop(PROJECT)

        await wait_until(lambda: events.of_type(EventType.ERROR))
        store.fail_get_all = False
        await wait_until(lambda: store.status_of(PROJECT, "a") == S.COMPLETED)

        assert orchestrator.is_auto_loop_running(PROJECT)
        await stop_and_wait(orchestrator, task)

    @pytest.mark.asyncio
    async def test_outcome_queue_overflow_is_recorded(self):
        executor = FakeExecutor(hold=True)
        features = [make_feature(f"f{i}", minutes=i) for i in range(3)]
        orchestrator, store, _, _ = make_orchestrator(
            *features, executor=executor, outcome_queue_size=1,
        )
        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=3)
        await wait_until(lambda: executor.active == 3)

        executor.release_all()

        await wait_until(lambda: all(store.status_of(PROJECT, f.id) == S.COMPLETED for f in features))
        await wait_until(lambda: len(orchestrator.registry) == 0)
        await stop_and_wait(orchestrator, task)


# =============================================================================
# Outcomes
# =============================================================================

class TestOutcomes:
    """Tests for recording execution outcomes."""

    @pytest.mark.asyncio
    async def test_success_marks_completed(self):
        orchestrator, store, _, events = make_orchestrator(make_feature("a"))

        await orchestrator.run_feature(PROJECT, "a")

        assert store.status_updates == [
            (PROJECT, "a", S.RUNNING),
            (PROJECT, "a", S.COMPLETED),
        ]
        assert not orchestrator.is_feature_running("a")
        (start,) = events.of_type(EventType.FEATURE_START)
        assert start["featureId"] == "a"
        assert start["isAutoMode"] is False
        (complete,) = events.of_type(EventType.FEATURE_COMPLETE)
        assert complete["passes"] is True

    @pytest.mark.asyncio
    async def test_skip_tests_waits_for_approval(self):
        orchestrator, store, _, _ = make_orchestrator(make_feature("a", skip_tests=True))

        await orchestrator.run_feature(PROJECT, "a")

        assert store.status_of(PROJECT, "a") == S.WAITING_APPROVAL

    @pytest.mark.asyncio
    async def test_executor_result_chooses_status(self):
        orchestrator, store, executor, _ = make_orchestrator(make_feature("a", skip_tests=True))
        executor.results["a"] = ExecutionResult(status=S.VERIFIED, summary="all green")

        await orchestrator.run_feature(PROJECT, "a")

        assert store.status_of(PROJECT, "a") == S.VERIFIED

    @pytest.mark.asyncio
    async def test_failure_marks_failed(self):
        executor = FakeExecutor()
        executor.errors["a"] = RuntimeError("tests failed")
        orchestrator, store, _, events = make_orchestrator(make_feature("a"), executor=executor)

        await orchestrator.run_feature(PROJECT, "a")

        assert store.status_of(PROJECT, "a") == S.FAILED
        (complete,) = events.of_type(EventType.FEATURE_COMPLETE)
        assert complete["passes"] is False
        assert "tests failed" in complete["error"]
        assert not orchestrator.is_feature_running("a")

    @pytest.mark.asyncio
    async def test_missing_feature_is_reported_without_status_write(self):
        orchestrator, store, executor, events = make_orchestrator()

        await orchestrator.run_feature(PROJECT, "ghost")

        assert store.status_updates == []
        assert executor.calls == []
        assert events.of_type(EventType.ERROR)
        assert not orchestrator.is_feature_running("ghost")

    @pytest.mark.asyncio
    async def test_pipeline_status_not_overwritten_on_start(self):
        orchestrator, store, _, _ = make_orchestrator(make_feature("a", S.PIPELINE_TESTING))

        await orchestrator.run_feature(PROJECT, "a")

        assert store.status_updates == [(PROJECT, "a", S.COMPLETED)]

    @pytest.mark.asyncio
    async def test_status_write_failure_still_releases_slot(self):
        orchestrator, store, _, events = make_orchestrator(make_feature("a"))
        real_update = store.update_status

        async def fail_on_completed(project_path, feature_id, status):
            if status == S.COMPLETED:
                raise OSError("disk full")
            await real_update(project_path, feature_id, status)

        store.update_status = fail_on_completed

        await orchestrator.run_feature(PROJECT, "a")

        assert not orchestrator.is_feature_running("a")
        assert any("disk full" in p.get("error", "") for p in events.of_type(EventType.ERROR))

    @pytest.mark.asyncio
    async def test_cancelled_execution_is_interrupted(self):
        executor = FakeExecutor(hold=True)
        orchestrator, store, _, _ = make_orchestrator(make_feature("a"), executor=executor)

        task = await orchestrator.resume_feature(PROJECT, "a", is_recovery=False)
        await wait_until(lambda: executor.active == 1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.status_of(PROJECT, "a") == S.INTERRUPTED
        assert not orchestrator.is_feature_running("a")


# =============================================================================
# Manual and recovery dispatch
# =============================================================================

class TestDispatch:
    """Tests for run_feature and resume_feature."""

    @pytest.mark.asyncio
    async def test_run_feature_rejects_running_feature(self):
        executor = FakeExecutor(hold=True)
        orchestrator, _, _, _ = make_orchestrator(make_feature("a"), executor=executor)
        task = await orchestrator.resume_feature(PROJECT, "a")

        with pytest.raises(FeatureAlreadyRunningError):
            await orchestrator.run_feature(PROJECT, "a")

        executor.release_all()
        await task
        assert executor.calls == [(PROJECT, "a", True)]

    @pytest.mark.asyncio
    async def test_resume_interrupted_features(self):
        orchestrator, store, executor, events = make_orchestrator(
            make_feature("a", S.INTERRUPTED),
            make_feature("b", S.WAITING_APPROVAL),
            make_feature("c", S.BACKLOG),
        )

        resumed = await orchestrator.resume_interrupted_features(PROJECT)
        await wait_until(lambda: store.status_of(PROJECT, "a") == S.COMPLETED)

        assert resumed == ["a"]
        assert executor.calls == [(PROJECT, "a", True)]
        assert store.status_of(PROJECT, "b") == S.WAITING_APPROVAL
        assert events.of_type(EventType.RESUMING)

    @pytest.mark.asyncio
    async def test_manual_run_counts_against_loop_ceiling(self):
        executor = FakeExecutor(hold=True)
        orchestrator, _, _, _ = make_orchestrator(
            make_feature("manual"), make_feature("auto", minutes=1), executor=executor,
        )
        manual = await orchestrator.resume_feature(PROJECT, "manual", is_recovery=False)

        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=1)
        await asyncio.sleep(0.05)
        assert executor.started == ["manual"]

        executor.release("manual")
        await manual
        await wait_until(lambda: "auto" in executor.started)

        executor.release_all()
        await stop_and_wait(orchestrator, task)
        await wait_until(lambda: len(orchestrator.registry) == 0)

    @pytest.mark.asyncio
    async def test_manual_run_is_recorded_before_returning_while_loop_active(self):
        executor = FakeExecutor(hold=True)
        orchestrator, store, _, _ = make_orchestrator(
            make_feature("blocker"), make_feature("manual", minutes=1), executor=executor,
        )
        task = orchestrator.start_auto_loop(PROJECT, max_concurrency=1)
        await wait_until(lambda: executor.started == ["blocker"])

        executor.release("manual")
        await orchestrator.run_feature(PROJECT, "manual")

        assert not orchestrator.is_feature_running("manual")
        assert store.status_of(PROJECT, "manual") == S.COMPLETED
        assert orchestrator.is_feature_running("blocker")

        executor.release_all()
        await stop_and_wait(orchestrator, task)
        await wait_until(lambda: len(orchestrator.registry) == 0)


# =============================================================================
# Running agents and shutdown
# =============================================================================

class TestRunningAgents:
    """Tests for get_running_agents."""

    @pytest.mark.asyncio
    async def test_empty(self):
        orchestrator, _, _, _ = make_orchestrator()
        assert await orchestrator.get_running_agents() == []

    @pytest.mark.asyncio
    async def test_lookup_failures_degrade_to_missing_details(self):
        orchestrator, store, _, _ = make_orchestrator(
            make_feature("a", S.RUNNING, title="Login", description="Add login"),
            make_feature("broken", S.RUNNING),
        )
        store.fail_get.add("broken")
        orchestrator.registry.add("a", PROJECT, is_auto_mode=True)
        orchestrator.registry.add("broken", PROJECT)
        orchestrator.registry.add("ghost", OTHER_PROJECT)

        agents = {a.feature_id: a for a in await orchestrator.get_running_agents()}

        assert agents["a"].title == "Login"
        assert agents["a"].description == "Add login"
        assert agents["a"].project_name == "my-app"
        assert agents["a"].is_auto_mode is True
        assert agents["broken"].title is None
        assert agents["ghost"].description is None
        assert agents["ghost"].project_name == "other-app"

    @pytest.mark.asyncio
    async def test_lookups_run_concurrently(self):
        ids = [f"f{i}" for i in range(5)]
        orchestrator, store, _, _ = make_orchestrator(
            *(make_feature(i, S.RUNNING) for i in ids)
        )
        store.get_delay = 0.2
        for feature_id in ids:
            orchestrator.registry.add(feature_id, PROJECT)

        start = time.monotonic()
        agents = await orchestrator.get_running_agents()
        elapsed = time.monotonic() - start

        assert sorted(a.feature_id for a in agents) == ids
        assert all(a.title for a in agents)
        assert elapsed < 0.6


class TestShutdown:
    """Tests for the shutdown sequence."""

    @pytest.mark.asyncio
    async def test_shutdown_interrupts_running_work(self):
        executor = FakeExecutor(hold=True)
        orchestrator, store, _, _ = make_orchestrator(
            make_feature("a", minutes=0),
            make_feature("b", minutes=1),
            executor=executor,
        )
        loop_task = orchestrator.start_auto_loop(PROJECT, max_concurrency=2)
        await wait_until(lambda: executor.active == 2)

        summary = await orchestrator.shutdown("deploy")

        assert sorted(summary.interrupted) == ["a", "b"]
        assert store.status_of(PROJECT, "a") == S.INTERRUPTED
        assert store.status_of(PROJECT, "b") == S.INTERRUPTED
        assert len(orchestrator.registry) == 0
        assert not orchestrator.is_auto_loop_running(PROJECT)
        await asyncio.wait([loop_task], timeout=2)
        assert loop_task.cancelled()

        executions = list(orchestrator._executions.values())
        for execution in executions:
            execution.cancel()
        await asyncio.gather(*executions, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_delegates_orphan_detection(self):
        orchestrator, _, _, _ = make_orchestrator(make_feature("a", branch_name="gone"))

        orphans = await orchestrator.detect_orphaned_features(PROJECT)

        assert [o.missing_branch for o in orphans] == ["gone"]
