from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

from .graph import find_dependents, iter_subtree
from .models import Task

TITLE_PREVIEW_LIMIT = 3


@dataclass
class ArchiveValidation:
    can_archive: bool
    warnings: List[str] = field(default_factory=list)
    blocking_issues: List[str] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def has_blocking_issues(self) -> bool:
        return bool(self.blocking_issues)


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def _title_preview(tasks: List[Task]) -> str:
    lines = "\n".join(f"• {task.title}" for task in tasks[:TITLE_PREVIEW_LIMIT])
    if len(tasks) > TITLE_PREVIEW_LIMIT:
        lines += f"\n...and {len(tasks) - TITLE_PREVIEW_LIMIT} more"
    return lines


def validate_archive(task: Task, tasks: Iterable[Task]) -> ArchiveValidation:
    """Archiving is safe once the task and its subtree are done and nothing active still waits on it."""
    blocking: List[str] = []
    warnings: List[str] = []

    if not task.is_completed:
        blocking.append("Only completed tasks can be archived")

    incomplete_subtasks = [subtask for subtask in iter_subtree(task) if not subtask.is_completed]
    if incomplete_subtasks:
        count = len(incomplete_subtasks)
        blocking.append(f"{count} incomplete {_plural(count, 'subtask', 'subtasks')} will be archived with parent")
        blocking.append(_title_preview(incomplete_subtasks))

    dependents = find_dependents(task, tasks)
    waiting = [dependent for dependent in dependents if not dependent.is_completed]
    resolved = [dependent for dependent in dependents if dependent.is_completed]
    if waiting:
        count = len(waiting)
        blocking.append(
            f"{count} incomplete {_plural(count, 'task depends', 'tasks depend')} on this task:"
        )
        blocking.append(_title_preview(waiting))
    if resolved:
        count = len(resolved)
        warnings.append(f"{count} active {_plural(count, 'task depends', 'tasks depend')} on this archived task:")
        warnings.append(_title_preview(resolved))

    return ArchiveValidation(can_archive=not blocking, warnings=warnings, blocking_issues=blocking)
