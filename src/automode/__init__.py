"""Auto-mode orchestration core for multi-agent feature development.

Tracks features through their lifecycle, dispatches eligible ones to an agent
executor under a concurrency ceiling, and recovers interrupted work.
"""

from .models import (
    AutoModeConfig,
    ExecutionResult,
    Feature,
    FeatureStatus,
    OrphanResult,
    ParsedTask,
    RunningAgentInfo,
)
from .orchestration import AutoModeOrchestrator
from .planning import detect_spec_fallback, parse_tasks_from_spec

__version__ = "0.1.0"

__all__ = [
    "AutoModeConfig",
    "AutoModeOrchestrator",
    "ExecutionResult",
    "Feature",
    "FeatureStatus",
    "OrphanResult",
    "ParsedTask",
    "RunningAgentInfo",
    "detect_spec_fallback",
    "parse_tasks_from_spec",
]
