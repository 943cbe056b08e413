from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .graph import iter_subtree
from .health import date_conflict_messages
from .models import Task


@dataclass(frozen=True)
class ConsistencyWarning:
    kind: str
    message: str


def subtask_personnel_range(task: Task) -> Optional[Tuple[int, int]]:
    """(min, max) expected crew across every subtask that has one set."""
    counts = [
        subtask.expected_personnel_count
        for subtask in iter_subtree(task)
        if subtask.expected_personnel_count is not None
    ]
    if not counts:
        return None
    return min(counts), max(counts)


def has_personnel_mismatch(task: Task) -> bool:
    expected = task.expected_personnel_count
    subtask_range = subtask_personnel_range(task)
    if expected is None or subtask_range is None:
        return False
    low, high = subtask_range
    return not (low == high == expected)


def _personnel_message(task: Task) -> str:
    low, high = subtask_personnel_range(task)
    if low == high:
        noun = "person" if low == 1 else "people"
        subtasks = f"subtasks plan {low} {noun}"
    else:
        subtasks = f"subtasks range {low}-{high} people"
    return f"Expected crew of {task.expected_personnel_count} differs from breakdown: {subtasks}"


def consistency_warnings(task: Task) -> List[ConsistencyWarning]:
    """Non-blocking mismatches; callers surface these but never refuse an operation on them."""
    warnings = []
    if has_personnel_mismatch(task):
        warnings.append(ConsistencyWarning("personnelMismatch", _personnel_message(task)))
    for message in date_conflict_messages(task):
        warnings.append(ConsistencyWarning("dateConflict", f"Task {message}"))
    return warnings
