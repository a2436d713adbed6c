"""Task plan parsing for agent-generated specifications.

This package provides:
- parse_tasks_from_spec: Extract the phased task checklist from plan text
- detect_spec_fallback: Recognize a finished spec that lacks its marker
"""

from .task_parser import (
    PLAN_GENERATED_MARKER,
    SPEC_GENERATED_MARKER,
    detect_spec_fallback,
    group_tasks_by_phase,
    is_spec_complete,
    parse_task_line,
    parse_tasks_from_spec,
)

__all__ = [
    "PLAN_GENERATED_MARKER",
    "SPEC_GENERATED_MARKER",
    "detect_spec_fallback",
    "group_tasks_by_phase",
    "is_spec_complete",
    "parse_task_line",
    "parse_tasks_from_spec",
]
