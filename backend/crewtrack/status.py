from __future__ import annotations

from typing import List, Optional, Set, Tuple

from .graph import iter_subtree
from .models import Task, TaskStatus
from .timekeeping import direct_time_spent


def blocking_dependencies(task: Task) -> List[Task]:
    return [dependency for dependency in (task.depends_on or []) if not dependency.is_completed]


def blocking_subtask_dependencies(task: Task) -> List[Tuple[Task, Task]]:
    """(subtask, dependency) pairs for every unmet dependency anywhere below ``task``."""
    return [(subtask, dependency) for subtask in iter_subtree(task) for dependency in blocking_dependencies(subtask)]


def has_incomplete_dependencies(task: Task) -> bool:
    if blocking_dependencies(task):
        return True
    return any(blocking_dependencies(subtask) for subtask in iter_subtree(task))


def task_status(task: Task, _visited: Optional[Set[str]] = None) -> TaskStatus:
    if task.is_completed:
        return TaskStatus.COMPLETED
    if has_incomplete_dependencies(task):
        return TaskStatus.BLOCKED
    if direct_time_spent(task) > 0 or task.has_active_timer:
        return TaskStatus.IN_PROGRESS

    visited = _visited if _visited is not None else set()
    visited.add(task.id)
    subtasks = [subtask for subtask in (task.subtasks or []) if subtask.id not in visited]
    if any(subtask.is_completed for subtask in subtasks):
        return TaskStatus.IN_PROGRESS
    for subtask in subtasks:
        if task_status(subtask, visited) is TaskStatus.IN_PROGRESS:
            return TaskStatus.IN_PROGRESS
    return TaskStatus.READY


def is_blocked(task: Task) -> bool:
    return task_status(task) is TaskStatus.BLOCKED


def can_complete(task: Task) -> bool:
    return task_status(task) in (TaskStatus.READY, TaskStatus.IN_PROGRESS)


def can_start_work(task: Task) -> bool:
    return not task.is_completed and task_status(task) is not TaskStatus.BLOCKED


def blocking_reasons(task: Task) -> List[str]:
    reasons = [f"Waiting on: {dependency.title}" for dependency in blocking_dependencies(task)]
    reasons.extend(
        f"Subtask '{subtask.title}' blocked by: {dependency.title}"
        for subtask, dependency in blocking_subtask_dependencies(task)
    )
    return reasons


def subtask_count(task: Task) -> int:
    return len(task.subtasks or [])


def completed_subtask_count(task: Task) -> int:
    return sum(1 for subtask in (task.subtasks or []) if subtask.is_completed)


def incomplete_subtask_count(task: Task) -> int:
    return subtask_count(task) - completed_subtask_count(task)


def total_subtask_count(task: Task) -> int:
    return sum(1 for _ in iter_subtree(task))


def total_completed_subtask_count(task: Task) -> int:
    return sum(1 for subtask in iter_subtree(task) if subtask.is_completed)
