"""Running registry: the features currently executing, keyed by id."""

from typing import Iterator, Optional

from ..errors import FeatureAlreadyRunningError
from ..models import RunningFeatureEntry


class RunningRegistry:
    """In-memory set of executing features.

    This is the only mutable state shared between the orchestrator and the
    recovery manager. All methods are synchronous so a caller can check and
    insert without yielding to the event loop in between.
    """

    def __init__(self):
        self._entries: dict[str, RunningFeatureEntry] = {}

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RunningFeatureEntry]:
        return iter(list(self._entries.values()))

    def is_running(self, feature_id: str) -> bool:
        return feature_id in self._entries

    def get(self, feature_id: str) -> Optional[RunningFeatureEntry]:
        return self._entries.get(feature_id)

    def add(
        self,
        feature_id: str,
        project_path: str,
        is_auto_mode: bool = False,
        is_recovery: bool = False
    ) -> RunningFeatureEntry:
        """Claim a feature.

        Raises:
            FeatureAlreadyRunningError: If the feature is already claimed
        """
        if feature_id in self._entries:
            raise FeatureAlreadyRunningError(feature_id)

        entry = RunningFeatureEntry(
            feature_id=feature_id,
            project_path=project_path,
            is_auto_mode=is_auto_mode,
            is_recovery=is_recovery,
        )
        self._entries[feature_id] = entry
        return entry

    def remove(self, feature_id: str) -> Optional[RunningFeatureEntry]:
        """Release a feature; returns the removed entry, if any."""
        return self._entries.pop(feature_id, None)

    def entries(self) -> list[RunningFeatureEntry]:
        """Snapshot of every entry."""
        return list(self._entries.values())

    def entries_for_project(self, project_path: str) -> list[RunningFeatureEntry]:
        return [e for e in self._entries.values() if e.project_path == project_path]

    def count_for_project(self, project_path: str) -> int:
        return sum(1 for e in self._entries.values() if e.project_path == project_path)

    def clear(self) -> int:
        """Drop every entry; returns how many were dropped."""
        count = len(self._entries)
        self._entries.clear()
        return count
