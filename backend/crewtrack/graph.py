from __future__ import annotations

from collections import deque
from typing import Iterable, Iterator, List, Optional, Set

from .models import Project, Task

DUPLICATE_DEPENDENCY = "Dependency already exists"


def iter_subtree(task: Task) -> Iterator[Task]:
    """Yield every descendant of ``task`` depth-first, each at most once."""
    visited: Set[str] = {task.id}
    stack = list(reversed(task.subtasks or []))
    while stack:
        current = stack.pop()
        if current.id in visited:
            continue
        visited.add(current.id)
        yield current
        stack.extend(reversed(current.subtasks or []))


def iter_ancestors(task: Task) -> Iterator[Task]:
    visited: Set[str] = {task.id}
    current = task.parent_task
    while current is not None and current.id not in visited:
        visited.add(current.id)
        yield current
        current = current.parent_task


def is_descendant(candidate: Task, of: Task) -> bool:
    return any(node.id == candidate.id for node in iter_subtree(of))


def find_dependents(task: Task, tasks: Iterable[Task]) -> List[Task]:
    """Active tasks that list ``task`` among their dependencies."""
    return [
        other
        for other in tasks
        if other.id != task.id
        and not other.is_archived
        and any(dependency.id == task.id for dependency in (other.depends_on or []))
    ]


def top_level_tasks(project: Project) -> List[Task]:
    return [task for task in (project.tasks or []) if task.parent_task is None]


def depends_on_transitively(task: Task, target: Task) -> bool:
    """True when ``target`` is reachable from ``task`` through depends_on edges."""
    visited: Set[str] = set()
    queue = deque([task])
    while queue:
        current = queue.popleft()
        if current.id == target.id:
            return True
        if current.id in visited:
            continue
        visited.add(current.id)
        queue.extend(current.depends_on or [])
    return False


def _waits_on(start: Task, targets: Set[str]) -> bool:
    # A task waits on its own dependencies and on those of every subtask at
    # any depth, and it cannot finish before its subtasks do.
    visited: Set[str] = set()
    queue = deque([start])
    while queue:
        current = queue.popleft()
        if current.id in visited:
            continue
        visited.add(current.id)
        for node in [current, *iter_subtree(current)]:
            if node.id in targets:
                return True
            queue.extend(node.depends_on or [])
    return False


def dependency_rejection_reason(task: Task, dependency: Task) -> Optional[str]:
    """Why ``task`` may not depend on ``dependency``; None when the edge is allowed."""
    if task.id == dependency.id:
        return "A task cannot depend on itself"
    if is_descendant(dependency, task):
        return "A task cannot depend on its own subtask"
    ancestors = list(iter_ancestors(task))
    for ancestor in ancestors:
        if ancestor.id == dependency.id:
            return "A subtask cannot depend on its parent"
    for ancestor in ancestors:
        if depends_on_transitively(dependency, ancestor):
            return f"'{dependency.title}' already depends on the parent task '{ancestor.title}'"
    if any(existing.id == dependency.id for existing in (task.depends_on or [])):
        return DUPLICATE_DEPENDENCY
    # The new edge blocks ``task`` and every ancestor of it until ``dependency`` finishes.
    if _waits_on(dependency, {task.id, *(ancestor.id for ancestor in ancestors)}):
        return f"'{dependency.title}' already depends on '{task.title}'"
    return None


def can_add_dependency(task: Task, dependency: Task) -> bool:
    return dependency_rejection_reason(task, dependency) is None


def would_create_dependency_cycle(task: Task, dependency: Task) -> bool:
    reason = dependency_rejection_reason(task, dependency)
    return reason is not None and reason != DUPLICATE_DEPENDENCY


def available_dependencies(task: Task, tasks: Iterable[Task]) -> List[Task]:
    return [candidate for candidate in tasks if can_add_dependency(task, candidate)]


def would_create_parent_cycle(task: Task, new_parent: Optional[Task]) -> bool:
    if new_parent is None:
        return False
    if new_parent.id == task.id:
        return True
    return is_descendant(new_parent, task)
