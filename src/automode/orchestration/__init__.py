"""Orchestration components for auto mode.

This package contains the components of the orchestration core:
- AutoModeOrchestrator: Auto-loop, concurrency gate, dependency-aware pickup
- RunningRegistry: Features currently executing
- RecoveryManager: Interruption on shutdown, resumption on startup
- OrphanDetector: Features whose branch no longer exists

The orchestrator owns one registry and shares it with its recovery manager.
"""

from .registry import RunningRegistry
from .recovery import RecoveryManager
from .orphans import OrphanDetector
from .auto_mode import AutoModeOrchestrator, ExecutionOutcome

__all__ = [
    "RunningRegistry",
    "RecoveryManager",
    "OrphanDetector",
    "AutoModeOrchestrator",
    "ExecutionOutcome",
]
