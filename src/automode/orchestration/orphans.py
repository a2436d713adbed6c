"""Detection of features whose branch no longer exists."""

from typing import Optional

from rich.console import Console

from ..models import Feature, OrphanResult
from ..protocols import BranchOracle, FeatureStore


console = Console()


def normalize_branch(name: Optional[str]) -> Optional[str]:
    """Strip a branch name; blank or whitespace-only counts as no branch."""
    if name is None:
        return None
    name = name.strip()
    return name or None


def find_orphans(
    features: list[Feature],
    existing_branches: set[str],
    current_branch: Optional[str] = None
) -> list[OrphanResult]:
    """Pure orphan check over already-loaded data.

    The current branch is never reported, even if the branch listing missed
    it (e.g. during a rebase or on an unborn branch).
    """
    current = normalize_branch(current_branch)
    orphans = []
    for feature in features:
        branch = normalize_branch(feature.branch_name)
        if branch is None:
            continue
        if branch == current or branch in existing_branches:
            continue
        orphans.append(OrphanResult(feature=feature, missing_branch=branch))
    return orphans


class OrphanDetector:
    """Best-effort diagnostic that never raises.

    Stateless apart from its collaborators; safe to call at any time.
    """

    def __init__(self, store: FeatureStore, branches: BranchOracle):
        self.store = store
        self.branches = branches

    async def detect_orphaned_features(self, project_path: str) -> list[OrphanResult]:
        """Find features whose ``branch_name`` is missing from the repository.

        Args:
            project_path: Project to inspect

        Returns:
            One OrphanResult per orphaned feature; empty on any store or
            branch-listing failure
        """
        try:
            features = await self.store.get_all(project_path)
        except Exception as e:
            console.print(f"[yellow]Orphan detection skipped, cannot load features: {e}[/yellow]")
            return []

        if not any(normalize_branch(f.branch_name) for f in features):
            return []

        try:
            existing = {b.strip() for b in await self.branches.list_branches(project_path)}
        except Exception as e:
            console.print(f"[yellow]Orphan detection skipped, cannot list branches: {e}[/yellow]")
            return []

        try:
            current = await self.branches.current_branch(project_path)
        except Exception as e:
            console.print(f"[dim]Current branch unknown ({e}), no branch exempted[/dim]")
            current = None

        orphans = find_orphans(features, existing, current)

        if orphans:
            console.print(
                f"[yellow]Detected {len(orphans)} orphaned feature(s) in {project_path}[/yellow]"
            )
            for orphan in orphans:
                console.print(
                    f"[dim]  Orphaned: {orphan.feature.display_name} - "
                    f"branch \"{orphan.missing_branch}\" no longer exists[/dim]"
                )

        return orphans
