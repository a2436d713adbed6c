"""Feature status state machine and dependency rules."""

from typing import Iterable, Optional, TYPE_CHECKING

from rich.console import Console

from .models import Feature, FeatureStatus, PIPELINE_STATUSES

if TYPE_CHECKING:
    from .protocols import FeatureStore


console = Console()


S = FeatureStatus

# Statuses a running feature may end in
_RUN_EXITS = frozenset({
    S.COMPLETED, S.FAILED, S.WAITING_APPROVAL, S.INTERRUPTED,
})

ALLOWED_TRANSITIONS: dict[FeatureStatus, frozenset[FeatureStatus]] = {
    S.BACKLOG: frozenset({S.PENDING, S.RUNNING}),
    S.PENDING: frozenset({S.RUNNING, S.BACKLOG}),
    S.RUNNING: _RUN_EXITS | PIPELINE_STATUSES,
    S.IN_PROGRESS: _RUN_EXITS | PIPELINE_STATUSES | {S.RUNNING},
    S.PIPELINE_IMPLEMENTATION: _RUN_EXITS | PIPELINE_STATUSES | {S.RUNNING},
    S.PIPELINE_TESTING: _RUN_EXITS | PIPELINE_STATUSES | {S.RUNNING},
    S.PIPELINE_REVIEW: _RUN_EXITS | PIPELINE_STATUSES | {S.RUNNING},
    S.WAITING_APPROVAL: frozenset({S.COMPLETED, S.FAILED}),
    S.INTERRUPTED: frozenset({S.RUNNING}),
    S.COMPLETED: frozenset({S.VERIFIED}),
    S.FAILED: frozenset({S.PENDING, S.BACKLOG, S.RUNNING}),
    S.VERIFIED: frozenset(),
}

# Statuses the auto-loop will pick up
DISPATCHABLE_STATUSES = frozenset({S.BACKLOG, S.PENDING, S.INTERRUPTED})


def can_transition(current: Optional[FeatureStatus], target: FeatureStatus) -> bool:
    """Check whether moving from ``current`` to ``target`` is a known transition.

    A missing current status (record not found) may move anywhere.
    """
    if current is None or current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def interruption_target(current: Optional[FeatureStatus]) -> Optional[FeatureStatus]:
    """Status to write when an execution is interrupted.

    Returns None when the current status must be kept: a pipeline sub-state
    already records where to resume from.
    """
    if current is not None and current.is_pipeline:
        return None
    return FeatureStatus.INTERRUPTED


def is_dispatchable(feature: Feature) -> bool:
    return feature.status in DISPATCHABLE_STATUSES


def is_dependency_satisfied(
    dependency: Optional[Feature],
    skip_verification: bool = False
) -> bool:
    """Check a single dependency.

    Without skip-verification the dependency must be completed or verified.
    With it, any dependency that is neither executing nor failed will do.
    A failed dependency always blocks. A dependency that no longer exists
    does not block.
    """
    if dependency is None:
        return True
    if dependency.status == FeatureStatus.FAILED:
        return False
    if skip_verification:
        return not dependency.status.is_active
    return dependency.status.is_terminal_success


def are_dependencies_satisfied(
    feature: Feature,
    all_features: Iterable[Feature],
    skip_verification: bool = False
) -> bool:
    """Check every dependency of ``feature`` against the project's features."""
    if not feature.dependencies:
        return True
    by_id = {f.id: f for f in all_features}
    return all(
        is_dependency_satisfied(by_id.get(dep_id), skip_verification)
        for dep_id in feature.dependencies
    )


def pickup_order_key(feature: Feature) -> tuple:
    """Sort key: highest priority first, then oldest, then id."""
    created = feature.created_at.timestamp() if feature.created_at else float("inf")
    return (-feature.priority, created, feature.id)


def select_eligible(
    candidates: Iterable[Feature],
    all_features: Iterable[Feature],
    running_ids: Iterable[str],
    slots: int,
    skip_verification: bool = False
) -> list[Feature]:
    """Pick up to ``slots`` features ready for dispatch.

    Args:
        candidates: Features to consider
        all_features: Every feature of the project, for dependency lookup
        running_ids: IDs already held by the running registry
        slots: Free concurrency slots
        skip_verification: Relax the dependency rule (see is_dependency_satisfied)

    Returns:
        Features in pickup order
    """
    if slots <= 0:
        return []

    all_features = list(all_features)
    running = set(running_ids)
    eligible = [
        f for f in candidates
        if is_dispatchable(f)
        and f.id not in running
        and are_dependencies_satisfied(f, all_features, skip_verification)
    ]
    eligible.sort(key=pickup_order_key)
    return eligible[:slots]


async def apply_status(
    store: "FeatureStore",
    project_path: str,
    feature_id: str,
    status: FeatureStatus,
    reason: str,
    current: Optional[FeatureStatus] = None
) -> None:
    """Persist a status change and log it with its context.

    Unexpected transitions are reported but still written; the store stays
    the source of truth. Store errors propagate to the caller.
    """
    previous = current.value if current else "unknown"
    if not can_transition(current, status):
        console.print(
            f"[yellow]Unexpected transition {previous} -> {status.value} "
            f"(project={project_path}, feature={feature_id})[/yellow]"
        )
    await store.update_status(project_path, feature_id, status)
    console.print(
        f"[dim]Status {previous} -> {status.value} "
        f"(project={project_path}, feature={feature_id}, reason={reason})[/dim]"
    )
