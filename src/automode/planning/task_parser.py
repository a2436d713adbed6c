"""Parser for the task plans agents generate during planning.

A plan carries its checklist in a fenced block tagged ``tasks``:

    ```tasks
    ## Phase 1: Foundation
    - [ ] T001: Create user model | File: src/models/user.ts
    - [ ] T002: Add API endpoint
    ```

Agent output is not guaranteed to be well formed, so parsing is tolerant:
lines that do not match are skipped rather than rejected.
"""

import re
from typing import Optional

from ..models import ParsedTask


# Completion markers the planning prompts ask the agent to emit
SPEC_GENERATED_MARKER = "[SPEC_GENERATED]"
PLAN_GENERATED_MARKER = "[PLAN_GENERATED]"

TASKS_BLOCK = re.compile(r"```tasks\s*([\s\S]*?)```")
PHASE_HEADER = re.compile(r"^##\s*(.+)$")
TASK_WITH_FILE = re.compile(
    r"- \[ \] (T\d{3})\s*:\s*([^|]+?)\s*(?:\|\s*File:\s*(.+?))?\s*$"
)
TASK_SIMPLE = re.compile(r"- \[ \] (T\d{3})\s*:\s*(.+?)\s*$")

_HAS_TASKS_BLOCK = re.compile(r"```tasks[\s\S]*```")
_HAS_TASK_LINE = re.compile(r"- \[ \] T\d{3}\s*:")

# Prose that marks text as a specification rather than a bare checklist
SPEC_CONTENT_PATTERNS = [
    re.compile(r"acceptance criteria", re.IGNORECASE),
    re.compile(r"technical context", re.IGNORECASE),
    re.compile(r"problem statement", re.IGNORECASE),
    re.compile(r"user story", re.IGNORECASE),
    re.compile(r"(?:\*\*)?goal(?:\*\*)?\s*:", re.IGNORECASE),
    re.compile(r"(?:\*\*)?solution(?:\*\*)?\s*:", re.IGNORECASE),
    re.compile(r"implementation\s*(?:plan|steps|approach)", re.IGNORECASE),
    re.compile(r"##\s*(?:overview|summary)", re.IGNORECASE),
]


def parse_task_line(line: str, phase: Optional[str] = None) -> Optional[ParsedTask]:
    """Parse one ``- [ ] T###: description | File: path`` line.

    Args:
        line: Line of plan text
        phase: Phase the line belongs to, if any

    Returns:
        ParsedTask, or None if the line is not a task line
    """
    match = TASK_WITH_FILE.search(line)
    if match:
        file_path = match.group(3).strip() if match.group(3) else None
        return ParsedTask(
            id=match.group(1),
            description=match.group(2).strip(),
            file_path=file_path or None,
            phase=phase,
        )

    # Descriptions containing a "|" that is not a File: suffix
    match = TASK_SIMPLE.search(line)
    if match:
        return ParsedTask(
            id=match.group(1),
            description=match.group(2).strip(),
            phase=phase,
        )

    return None


def parse_tasks_from_spec(text: str) -> list[ParsedTask]:
    """Extract the ordered task list from generated plan text.

    Inside a ``tasks`` block, ``## <name>`` headers set the phase of the tasks
    that follow. Without a block, task lines anywhere in the text are used,
    without phases. Source order is kept as written.
    """
    block = TASKS_BLOCK.search(text)
    if block is None:
        tasks = []
        for line in text.splitlines():
            task = parse_task_line(line)
            if task:
                tasks.append(task)
        return tasks

    tasks = []
    phase: Optional[str] = None
    for raw_line in block.group(1).splitlines():
        line = raw_line.strip()

        header = PHASE_HEADER.match(line)
        if header:
            phase = header.group(1).strip()
            continue

        if line.startswith("- [ ]"):
            task = parse_task_line(line, phase)
            if task:
                tasks.append(task)

    return tasks


def detect_spec_fallback(text: str) -> bool:
    """Guess whether text is a finished specification that lacks its marker.

    Some backends omit the completion marker. Text counts as a specification
    when it has task structure (a tasks block or a task line) and at least one
    piece of spec-like prose. Best effort only.
    """
    has_task_structure = bool(_HAS_TASKS_BLOCK.search(text) or _HAS_TASK_LINE.search(text))
    if not has_task_structure:
        return False
    return any(pattern.search(text) for pattern in SPEC_CONTENT_PATTERNS)


def is_spec_complete(text: str) -> bool:
    """True if the agent marked its spec/plan done, or it looks done anyway."""
    if SPEC_GENERATED_MARKER in text or PLAN_GENERATED_MARKER in text:
        return True
    return detect_spec_fallback(text)


def group_tasks_by_phase(tasks: list[ParsedTask]) -> dict[Optional[str], list[ParsedTask]]:
    """Group tasks by phase, keeping first-seen phase order."""
    grouped: dict[Optional[str], list[ParsedTask]] = {}
    for task in tasks:
        grouped.setdefault(task.phase, []).append(task)
    return grouped
