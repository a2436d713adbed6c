"""JSON file-backed feature store.

Each feature lives in its own directory:

    <project>/.automaker/features/<feature-id>/feature.json

Other files in a feature directory (agent output, images) are left alone.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from rich.console import Console

from .errors import FeatureNotFoundError, FeatureStoreError
from .models import Feature, FeatureStatus


console = Console()

FEATURE_FILE = "feature.json"
DEFAULT_FEATURES_DIR = ".automaker/features"


class JsonFeatureStore:
    """Feature store reading and writing ``feature.json`` files.

    Writes go through a temporary file and a rename so a crash mid-write never
    leaves a truncated record behind.
    """

    def __init__(self, features_dir: str = DEFAULT_FEATURES_DIR):
        self.features_dir = features_dir

    def features_path(self, project_path: str) -> Path:
        return Path(project_path) / self.features_dir

    def feature_file(self, project_path: str, feature_id: str) -> Path:
        return self.features_path(project_path) / feature_id / FEATURE_FILE

    def _read(self, path: Path) -> Feature:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            # The directory name is authoritative for the id
            data.setdefault("id", path.parent.name)
            return Feature.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise FeatureStoreError(f"Cannot read {path}: {e}") from e

    def _write(self, path: Path, feature: Feature) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            feature.model_dump_json(by_alias=True, exclude_none=True, indent=2),
            encoding="utf-8"
        )
        tmp.replace(path)

    def get_all_sync(self, project_path: str) -> list[Feature]:
        """Load every readable feature; unreadable records are reported and skipped."""
        root = self.features_path(project_path)
        if not root.is_dir():
            return []

        features = []
        for feature_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            path = feature_dir / FEATURE_FILE
            if not path.exists():
                continue
            try:
                features.append(self._read(path))
            except FeatureStoreError as e:
                console.print(f"[yellow]Skipping feature: {e}[/yellow]")
        return features

    def get_sync(self, project_path: str, feature_id: str) -> Optional[Feature]:
        path = self.feature_file(project_path, feature_id)
        if not path.exists():
            return None
        return self._read(path)

    def save_sync(self, project_path: str, feature: Feature) -> None:
        """Create or replace a feature record."""
        now = datetime.now(timezone.utc)
        if feature.created_at is None:
            feature.created_at = now
        feature.updated_at = now
        self._write(self.feature_file(project_path, feature.id), feature)

    def update_status_sync(
        self,
        project_path: str,
        feature_id: str,
        status: FeatureStatus
    ) -> None:
        """Read-modify-write the status of one feature.

        Raises:
            FeatureNotFoundError: If the feature has no record
        """
        feature = self.get_sync(project_path, feature_id)
        if feature is None:
            raise FeatureNotFoundError(feature_id, project_path)
        feature.status = status
        self.save_sync(project_path, feature)

    async def get_all(self, project_path: str) -> list[Feature]:
        return await asyncio.to_thread(self.get_all_sync, project_path)

    async def get(self, project_path: str, feature_id: str) -> Optional[Feature]:
        return await asyncio.to_thread(self.get_sync, project_path, feature_id)

    async def save(self, project_path: str, feature: Feature) -> None:
        await asyncio.to_thread(self.save_sync, project_path, feature)

    async def update_status(
        self,
        project_path: str,
        feature_id: str,
        status: FeatureStatus
    ) -> None:
        await asyncio.to_thread(self.update_status_sync, project_path, feature_id, status)
