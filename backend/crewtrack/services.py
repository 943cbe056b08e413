from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from . import estimation
from .aggregator import SubtaskAggregator
from .archive import validate_archive
from .config import settings
from .database import commit
from .errors import (
    ArchiveRejectedError,
    CyclicRelationshipError,
    InvalidTimeRangeError,
    InvalidValueError,
    NoActiveTimerError,
    NotFoundError,
    TaskBlockedError,
    TaskStateError,
    TimerAlreadyRunningError,
)
from .graph import DUPLICATE_DEPENDENCY, dependency_rejection_reason, iter_subtree, would_create_parent_cycle
from .models import Priority, Project, ProjectStatus, Task, TimeEntry, UnitType
from .status import is_blocked
from .utils import SECONDS_PER_HOUR, as_utc, optional_utc

logger = logging.getLogger(__name__)


def _invalidate(aggregator: Optional[SubtaskAggregator], *tasks: Optional[Task]) -> None:
    if aggregator is None:
        return
    for task in tasks:
        if task is not None:
            aggregator.invalidate(task)


def get_task(db: Session, task_id: str) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


def get_project(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return project


def get_time_entry(db: Session, entry_id: str) -> TimeEntry:
    entry = db.get(TimeEntry, entry_id)
    if entry is None:
        raise NotFoundError("Time entry not found")
    return entry


def list_tasks(db: Session, include_archived: bool = False) -> List[Task]:
    query = db.query(Task)
    if not include_archived:
        query = query.filter(Task.is_archived.is_(False))
    return query.order_by(Task.sort_index, Task.created_date).all()


def list_projects(db: Session) -> List[Project]:
    return db.query(Project).order_by(Project.sort_index, Project.title).all()


def list_time_entries(db: Session) -> List[TimeEntry]:
    return db.query(TimeEntry).order_by(TimeEntry.start_time).all()


def _next_sort_index(siblings: Iterable[Task]) -> int:
    return max((task.sort_index or 0 for task in siblings), default=-1) + 1


def create_project(
    db: Session,
    title: str,
    start_date: Optional[dt.datetime] = None,
    due_date: Optional[dt.datetime] = None,
    estimated_hours: Optional[float] = None,
    status: ProjectStatus = ProjectStatus.PLANNING,
    color: str = "blue",
) -> Project:
    project = Project(
        title=title,
        color=color,
        start_date=optional_utc(start_date),
        due_date=optional_utc(due_date),
        estimated_hours=estimated_hours,
        status=status,
    )
    db.add(project)
    commit(db)
    logger.info("Created project %s", project.id)
    return project


def create_task(
    db: Session,
    title: str,
    project: Optional[Project] = None,
    parent: Optional[Task] = None,
    aggregator: Optional[SubtaskAggregator] = None,
    **fields,
) -> Task:
    if parent is not None and project is None:
        project = parent.project
    if parent is not None:
        siblings = parent.subtasks or []
    elif project is not None:
        siblings = [task for task in (project.tasks or []) if task.parent_task is None]
    else:
        siblings = []
    fields.setdefault("sort_index", _next_sort_index(siblings))
    task = Task(title=title, project=project, parent_task=parent, **fields)
    db.add(task)
    _invalidate(aggregator, parent)
    commit(db)
    logger.info("Created task %s", task.id)
    return task


def add_subtask(
    db: Session,
    parent: Task,
    title: str,
    aggregator: Optional[SubtaskAggregator] = None,
    **fields,
) -> Task:
    return create_task(db, title, parent=parent, aggregator=aggregator, **fields)


def reparent_task(
    db: Session,
    task: Task,
    new_parent: Optional[Task],
    aggregator: Optional[SubtaskAggregator] = None,
) -> Task:
    if would_create_parent_cycle(task, new_parent):
        logger.warning("Rejected moving task %s under %s: cycle", task.id, new_parent.id)
        raise CyclicRelationshipError("A task cannot be moved under itself or one of its subtasks")
    _invalidate(aggregator, task)
    task.parent_task = new_parent
    if new_parent is not None:
        task.project = new_parent.project
        for node in iter_subtree(task):
            node.project = task.project
        task.sort_index = _next_sort_index(subtask for subtask in new_parent.subtasks if subtask is not task)
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Moved task %s under %s", task.id, new_parent.id if new_parent else None)
    return task


def start_timer(
    db: Session,
    task: Task,
    now: dt.datetime,
    aggregator: Optional[SubtaskAggregator] = None,
) -> TimeEntry:
    if task.is_completed:
        raise TaskStateError("Completed tasks cannot track time")
    if is_blocked(task):
        logger.warning("Rejected timer start on blocked task %s", task.id)
        raise TaskBlockedError()
    if task.has_active_timer:
        logger.warning("Rejected second timer on task %s", task.id)
        raise TimerAlreadyRunningError()
    entry = TimeEntry(
        task=task,
        start_time=as_utc(now),
        personnel_count=task.expected_personnel_count or 1,
    )
    db.add(entry)
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Started timer on task %s with %d people", task.id, entry.personnel_count)
    return entry


def stop_timer(
    db: Session,
    task: Task,
    now: dt.datetime,
    aggregator: Optional[SubtaskAggregator] = None,
) -> List[TimeEntry]:
    closed = task.close_open_entries(as_utc(now))
    if not closed:
        raise NoActiveTimerError()
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Stopped %d timer(s) on task %s", len(closed), task.id)
    return closed


def _validate_personnel(count: int) -> None:
    if not estimation.is_valid_personnel(count):
        raise InvalidValueError(f"Personnel must be between 1 and {settings.max_personnel}")


def _validate_range(start: dt.datetime, end: Optional[dt.datetime]) -> None:
    if end is not None and as_utc(end) <= as_utc(start):
        raise InvalidTimeRangeError()


def add_manual_entry(
    db: Session,
    task: Task,
    start: dt.datetime,
    end: dt.datetime,
    personnel_count: int = 1,
    aggregator: Optional[SubtaskAggregator] = None,
) -> TimeEntry:
    _validate_range(start, end)
    _validate_personnel(personnel_count)
    entry = TimeEntry(task=task, start_time=as_utc(start), end_time=as_utc(end), personnel_count=personnel_count)
    db.add(entry)
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Added manual entry %s to task %s", entry.id, task.id)
    return entry


def update_time_entry(
    db: Session,
    entry: TimeEntry,
    start: Optional[dt.datetime] = None,
    end: Optional[dt.datetime] = None,
    personnel_count: Optional[int] = None,
    aggregator: Optional[SubtaskAggregator] = None,
) -> TimeEntry:
    new_start = as_utc(start) if start is not None else as_utc(entry.start_time)
    new_end = as_utc(end) if end is not None else entry.end_time
    _validate_range(new_start, new_end)
    if personnel_count is not None:
        _validate_personnel(personnel_count)
        entry.personnel_count = personnel_count
    entry.start_time = new_start
    entry.end_time = new_end
    _invalidate(aggregator, entry.task)
    commit(db)
    logger.info("Updated time entry %s", entry.id)
    return entry


def delete_time_entry(db: Session, entry: TimeEntry, aggregator: Optional[SubtaskAggregator] = None) -> None:
    task = entry.task
    entry_id = entry.id
    if task is not None:
        task.time_entries.remove(entry)
    else:
        db.delete(entry)
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Deleted time entry %s", entry_id)


def complete_task(
    db: Session,
    task: Task,
    now: dt.datetime,
    aggregator: Optional[SubtaskAggregator] = None,
) -> Task:
    if task.is_completed:
        raise TaskStateError("Task is already completed")
    if is_blocked(task):
        logger.warning("Rejected completing blocked task %s", task.id)
        raise TaskBlockedError()
    task.mark_completed(now)
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Completed task %s", task.id)
    return task


def uncomplete_task(db: Session, task: Task, aggregator: Optional[SubtaskAggregator] = None) -> Task:
    if not task.is_completed:
        raise TaskStateError("Task is not completed")
    task.mark_uncompleted()
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Reopened task %s", task.id)
    return task


def set_personnel_count(
    db: Session,
    task: Task,
    count: Optional[int],
    aggregator: Optional[SubtaskAggregator] = None,
) -> Task:
    if count is not None:
        _validate_personnel(count)
    task.expected_personnel_count = count
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Set expected personnel of task %s to %s", task.id, count)
    return task


def set_quantity(
    db: Session,
    task: Task,
    quantity: Optional[float],
    expected_quantity: Optional[float] = None,
    unit: Optional[UnitType] = None,
) -> Task:
    for value in (quantity, expected_quantity):
        if value is not None and not estimation.is_valid_quantity(value):
            raise InvalidValueError(f"Quantity must be between 0 and {settings.max_quantity:.0f}")
    task.quantity = quantity
    if expected_quantity is not None:
        task.expected_quantity = expected_quantity
    if unit is not None:
        task.unit = UnitType(unit)
    commit(db)
    logger.info("Set quantity of task %s to %s", task.id, quantity)
    return task


def set_estimate(
    db: Session,
    task: Task,
    estimated_seconds: Optional[int],
    custom: bool = True,
    aggregator: Optional[SubtaskAggregator] = None,
) -> Task:
    if estimated_seconds is not None:
        if estimated_seconds < 0 or not estimation.is_valid_duration_hours(estimated_seconds / SECONDS_PER_HOUR):
            raise InvalidValueError(
                f"Duration cannot exceed {settings.max_duration_hours} hours"
            )
    task.estimated_seconds = estimated_seconds
    task.has_custom_estimate = custom and estimated_seconds is not None
    _invalidate(aggregator, task)
    commit(db)
    logger.info("Set estimate of task %s to %s", task.id, estimated_seconds)
    return task


def add_dependency(db: Session, task: Task, dependency: Task) -> Task:
    reason = dependency_rejection_reason(task, dependency)
    if reason == DUPLICATE_DEPENDENCY:
        return task
    if reason is not None:
        logger.warning("Rejected dependency %s -> %s: %s", task.id, dependency.id, reason)
        raise CyclicRelationshipError(reason)
    task.depends_on.append(dependency)
    commit(db)
    logger.info("Task %s now depends on %s", task.id, dependency.id)
    return task


def remove_dependency(db: Session, task: Task, dependency: Task) -> Task:
    if dependency in task.depends_on:
        task.depends_on.remove(dependency)
        commit(db)
        logger.info("Removed dependency %s -> %s", task.id, dependency.id)
    return task


def archive_task(
    db: Session,
    task: Task,
    now: dt.datetime,
    tasks: Optional[Iterable[Task]] = None,
) -> Task:
    candidates = list(tasks) if tasks is not None else list_tasks(db)
    validation = validate_archive(task, candidates)
    if not validation.can_archive:
        logger.warning("Rejected archiving task %s", task.id)
        raise ArchiveRejectedError(validation.blocking_issues)
    stamp = as_utc(now)
    for node in [task, *iter_subtree(task)]:
        node.is_archived = True
        node.archived_date = stamp
    commit(db)
    logger.info("Archived task %s", task.id)
    return task


def unarchive_task(db: Session, task: Task) -> Task:
    for node in [task, *iter_subtree(task)]:
        node.is_archived = False
        node.archived_date = None
    commit(db)
    logger.info("Unarchived task %s", task.id)
    return task


def fit_task_to_project(db: Session, task: Task) -> bool:
    changed = task.fit_to_project()
    if changed:
        commit(db)
        logger.info("Fitted task %s into project window", task.id)
    return changed


def expand_project_to_task(db: Session, task: Task) -> bool:
    if task.project is None:
        return False
    changed = task.project.expand_to_include(task)
    if changed:
        commit(db)
        logger.info("Expanded project %s to include task %s", task.project.id, task.id)
    return changed


def duplicate_task(
    db: Session,
    task: Task,
    now: dt.datetime,
    aggregator: Optional[SubtaskAggregator] = None,
) -> Task:
    duplicate = Task(
        title=f"{task.title} (Copy)",
        priority=task.priority if task.priority is not None else int(Priority.MEDIUM),
        due_date=task.due_date,
        created_date=as_utc(now),
        parent_task=task.parent_task,
        project=task.project,
        sort_index=(task.sort_index or 0) + 1,
        notes=task.notes,
        estimated_seconds=task.estimated_seconds,
        has_custom_estimate=task.has_custom_estimate,
    )
    db.add(duplicate)
    _invalidate(aggregator, task.parent_task)
    commit(db)
    logger.info("Duplicated task %s as %s", task.id, duplicate.id)
    return duplicate
