"""Data models for the auto-mode orchestration core.

Uses Pydantic for validation. Feature records serialize with camelCase keys so
they round-trip through the on-disk ``feature.json`` format unchanged.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FeatureStatus(str, Enum):
    """Lifecycle status of a feature.

    Pipeline sub-states are running variants that record which step of a
    multi-phase execution the feature is in. They are kept distinct from
    RUNNING because interruption must not overwrite them.
    """
    BACKLOG = "backlog"
    PENDING = "pending"
    RUNNING = "running"
    IN_PROGRESS = "in_progress"  # Legacy synonym of RUNNING
    COMPLETED = "completed"
    FAILED = "failed"
    WAITING_APPROVAL = "waiting_approval"
    INTERRUPTED = "interrupted"
    VERIFIED = "verified"
    PIPELINE_IMPLEMENTATION = "pipeline_implementation"
    PIPELINE_TESTING = "pipeline_testing"
    PIPELINE_REVIEW = "pipeline_review"

    @property
    def is_pipeline(self) -> bool:
        """True for mid-execution pipeline sub-states."""
        return self in PIPELINE_STATUSES

    @property
    def is_active(self) -> bool:
        """True while an agent is (or was, before a crash) executing the feature."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal_success(self) -> bool:
        return self in (FeatureStatus.COMPLETED, FeatureStatus.VERIFIED)


PIPELINE_STATUSES = frozenset({
    FeatureStatus.PIPELINE_IMPLEMENTATION,
    FeatureStatus.PIPELINE_TESTING,
    FeatureStatus.PIPELINE_REVIEW,
})

ACTIVE_STATUSES = frozenset({
    FeatureStatus.RUNNING,
    FeatureStatus.IN_PROGRESS,
}) | PIPELINE_STATUSES


class DescriptionSource(str, Enum):
    """Where a description revision came from."""
    INITIAL = "initial"
    ENHANCE = "enhance"
    EDIT = "edit"


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DescriptionHistoryEntry(CamelModel):
    """A previous revision of a feature description."""
    description: str
    timestamp: datetime = Field(default_factory=datetime.now)
    source: DescriptionSource = DescriptionSource.INITIAL
    enhancement_mode: Optional[str] = None


class Feature(CamelModel):
    """A discrete unit of work tracked through its lifecycle.

    Unknown keys are kept so a read-modify-write cycle by this package never
    drops fields written by other tools.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str = Field(..., description="Unique identifier for the feature")
    title: Optional[str] = Field(default=None, description="Short name for the feature")
    description: str = Field(default="", description="What to implement")
    category: str = Field(default="", description="Free-form grouping label")
    status: FeatureStatus = Field(default=FeatureStatus.BACKLOG)
    priority: int = Field(default=0, description="Higher number = higher priority")
    complexity: Optional[str] = None

    dependencies: list[str] = Field(
        default_factory=list,
        description="IDs of features that must finish before this one"
    )
    branch_name: Optional[str] = Field(
        default=None,
        description="Git branch holding the feature's work"
    )

    # Execution hints, passed through to the executor untouched
    model: Optional[str] = None
    thinking_level: Optional[str] = None
    reasoning_effort: Optional[str] = None

    planning_mode: Optional[str] = None
    require_plan_approval: bool = False
    skip_tests: bool = False
    work_mode: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    description_history: list[DescriptionHistoryEntry] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.title or self.id


class RunningFeatureEntry(BaseModel):
    """A feature currently held by the running registry."""
    feature_id: str
    project_path: str
    is_auto_mode: bool = False
    is_recovery: bool = False
    started_at: datetime = Field(default_factory=datetime.now)


class RunningAgentInfo(CamelModel):
    """A running registry entry enriched with feature details for display."""
    feature_id: str
    project_path: str
    project_name: str
    is_auto_mode: bool
    title: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_entry(
        cls,
        entry: RunningFeatureEntry,
        feature: Optional[Feature] = None
    ) -> "RunningAgentInfo":
        """Build display info, leaving title/description unset without a feature."""
        return cls(
            feature_id=entry.feature_id,
            project_path=entry.project_path,
            project_name=Path(entry.project_path).name,
            is_auto_mode=entry.is_auto_mode,
            title=feature.title if feature else None,
            description=feature.description if feature else None,
        )


class OrphanResult(BaseModel):
    """A feature whose branch no longer exists. Derived, never persisted."""
    feature: Feature
    missing_branch: str


class ParsedTask(BaseModel):
    """A single task extracted from a generated plan."""
    id: str
    description: str
    file_path: Optional[str] = None
    phase: Optional[str] = None
    status: str = "pending"


class ExecutionResult(BaseModel):
    """Optional result an executor returns to choose the final status."""
    status: Optional[FeatureStatus] = None
    summary: Optional[str] = None


class InterruptionSummary(BaseModel):
    """Aggregated outcome of a bulk interruption pass."""
    interrupted: list[str] = Field(default_factory=list)
    preserved: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(
        default_factory=dict,
        description="Feature id -> error message"
    )

    @property
    def total(self) -> int:
        return len(self.interrupted) + len(self.preserved) + len(self.failed)


class AutoModeConfig(BaseModel):
    """Configuration for the auto-mode orchestrator."""
    max_concurrency: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum features executing at once per project"
    )
    skip_verification: bool = Field(
        default=False,
        description="Pick up features whose dependencies are finished but not verified"
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="How long the loop sleeps when no execution completes"
    )
    features_dir: str = Field(
        default=".automaker/features",
        description="Feature directory relative to the project root"
    )
    outcome_queue_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Bound of the execution outcome queue (None = max_concurrency)"
    )


class AutoModeStatus(BaseModel):
    """Snapshot of one project's auto-loop."""
    project_path: str
    is_running: bool
    max_concurrency: Optional[int] = None
    running_feature_ids: list[str] = Field(default_factory=list)

    @property
    def running_count(self) -> int:
        return len(self.running_feature_ids)
