"""Project health, date conflicts and the attention/activity lists built on top of them."""
from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List, Optional

from . import estimates, timekeeping
from .graph import top_level_tasks
from .models import Priority, Project, ProjectStatus, Task, TaskStatus
from .status import task_status
from .utils import SECONDS_PER_HOUR, as_utc, local_day

if TYPE_CHECKING:  # pragma: no cover
    from .aggregator import SubtaskAggregator

CRITICAL_TIME_PROGRESS = 1.0
CRITICAL_PLANNING_PROGRESS = 1.2
CRITICAL_LATE_TIME_PROGRESS = 0.9
CRITICAL_LATE_COMPLETION = 0.5

WARNING_TIME_PROGRESS = 0.85
WARNING_PLANNING_PROGRESS = 1.1
WARNING_LATE_TIME_PROGRESS = 0.7
WARNING_LATE_COMPLETION = 0.4

NEARING_BUDGET_PROGRESS = 0.85
NEARING_ESTIMATE_RANGE = (0.8, 1.0)
UPCOMING_LIMIT = 5

DATE_FORMAT = "%b %d, %Y"


class ProjectHealthStatus(str, enum.Enum):
    ON_TRACK = "onTrack"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def sort_order(self) -> int:
        return {
            ProjectHealthStatus.CRITICAL: 0,
            ProjectHealthStatus.WARNING: 1,
            ProjectHealthStatus.ON_TRACK: 2,
        }[self]


class DateConflict(str, enum.Enum):
    STARTS_BEFORE_PROJECT = "startsBeforeProject"
    ENDS_AFTER_PROJECT = "endsAfterProject"
    STARTS_AFTER_PROJECT = "startsAfterProject"
    ENDS_BEFORE_PROJECT = "endsBeforeProject"


def _fmt(value: dt.datetime) -> str:
    return as_utc(value).strftime(DATE_FORMAT)


def date_conflicts(task: Task) -> List[DateConflict]:
    project = task.project
    if project is None:
        return []
    conflicts = []
    start = as_utc(task.start_date) if task.start_date else None
    end = as_utc(task.end_date) if task.end_date else None
    project_start = as_utc(project.start_date) if project.start_date else None
    project_due = as_utc(project.due_date) if project.due_date else None

    if start and project_start and start < project_start:
        conflicts.append(DateConflict.STARTS_BEFORE_PROJECT)
    if end and project_due and end > project_due:
        conflicts.append(DateConflict.ENDS_AFTER_PROJECT)
    if start and project_due and start > project_due:
        conflicts.append(DateConflict.STARTS_AFTER_PROJECT)
    if end and project_start and end < project_start:
        conflicts.append(DateConflict.ENDS_BEFORE_PROJECT)
    return conflicts


def has_date_conflicts(task: Task) -> bool:
    return bool(date_conflicts(task))


def date_conflict_messages(task: Task) -> List[str]:
    project = task.project
    messages = []
    for conflict in date_conflicts(task):
        if conflict is DateConflict.STARTS_BEFORE_PROJECT:
            messages.append(f"starts before event ({_fmt(task.start_date)} vs {_fmt(project.start_date)})")
        elif conflict is DateConflict.ENDS_AFTER_PROJECT:
            messages.append(f"ends after event ({_fmt(task.end_date)} vs {_fmt(project.due_date)})")
        elif conflict is DateConflict.STARTS_AFTER_PROJECT:
            messages.append(f"starts after event ends ({_fmt(task.start_date)} vs {_fmt(project.due_date)})")
        else:
            messages.append(f"ends before event starts ({_fmt(task.end_date)} vs {_fmt(project.start_date)})")
    return messages


def is_overdue(task: Task, now: dt.datetime) -> bool:
    return not task.is_completed and task.due_date is not None and as_utc(task.due_date) < as_utc(now)


def _active_tasks(project: Project) -> List[Task]:
    return [task for task in (project.tasks or []) if not task.is_archived]


def actual_hours(project: Project, now: dt.datetime, aggregator: Optional["SubtaskAggregator"] = None) -> float:
    # Top-level tasks only; their totals already include every subtask.
    seconds = sum(estimates.time_spent_for(task, now, aggregator) for task in top_level_tasks(project))
    return seconds / SECONDS_PER_HOUR


def planned_hours(project: Project, aggregator: Optional["SubtaskAggregator"] = None) -> float:
    seconds = sum(estimates.estimate_for(task, aggregator) or 0 for task in top_level_tasks(project))
    return seconds / SECONDS_PER_HOUR


def planning_variance(project: Project, aggregator: Optional["SubtaskAggregator"] = None) -> Optional[float]:
    if project.estimated_hours is None:
        return None
    return planned_hours(project, aggregator) - project.estimated_hours


def is_over_planned(project: Project, aggregator: Optional["SubtaskAggregator"] = None) -> bool:
    variance = planning_variance(project, aggregator)
    return variance is not None and variance > 0


def _ratio(value: float, budget: Optional[float]) -> Optional[float]:
    if budget is None or budget <= 0:
        return None
    return value / budget


def classify_health(
    time_progress: Optional[float],
    planning_progress: Optional[float],
    completion_ratio: Optional[float],
    overdue_count: int = 0,
    blocked_count: int = 0,
    missing_estimate_count: int = 0,
    date_conflict_count: int = 0,
) -> ProjectHealthStatus:
    """Critical conditions are checked before warning ones; the first match wins."""
    if time_progress is not None and time_progress > CRITICAL_TIME_PROGRESS:
        return ProjectHealthStatus.CRITICAL
    if planning_progress is not None and planning_progress > CRITICAL_PLANNING_PROGRESS:
        return ProjectHealthStatus.CRITICAL
    if (
        time_progress is not None
        and completion_ratio is not None
        and time_progress > CRITICAL_LATE_TIME_PROGRESS
        and completion_ratio < CRITICAL_LATE_COMPLETION
    ):
        return ProjectHealthStatus.CRITICAL
    if overdue_count > 0:
        return ProjectHealthStatus.CRITICAL

    if time_progress is not None and time_progress > WARNING_TIME_PROGRESS:
        return ProjectHealthStatus.WARNING
    if planning_progress is not None and planning_progress > WARNING_PLANNING_PROGRESS:
        return ProjectHealthStatus.WARNING
    if (
        time_progress is not None
        and completion_ratio is not None
        and time_progress > WARNING_LATE_TIME_PROGRESS
        and completion_ratio < WARNING_LATE_COMPLETION
    ):
        return ProjectHealthStatus.WARNING
    if blocked_count or missing_estimate_count or date_conflict_count:
        return ProjectHealthStatus.WARNING
    return ProjectHealthStatus.ON_TRACK


@dataclass
class ProjectHealthReport:
    project_id: str
    status: ProjectHealthStatus
    actual_hours: float
    planned_hours: float
    budget_hours: Optional[float]
    time_progress: Optional[float]
    planning_progress: Optional[float]
    completion_ratio: Optional[float]
    completed_count: int
    incomplete_count: int
    blocked_count: int
    overdue_count: int
    missing_estimate_count: int
    date_conflict_count: int

    @property
    def planning_variance(self) -> Optional[float]:
        if self.budget_hours is None:
            return None
        return self.planned_hours - self.budget_hours


def evaluate_project(
    project: Project,
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> ProjectHealthReport:
    tasks = _active_tasks(project)
    incomplete = [task for task in tasks if not task.is_completed]
    completed_count = len(tasks) - len(incomplete)
    blocked_count = sum(1 for task in incomplete if task_status(task) is TaskStatus.BLOCKED)
    overdue_count = sum(1 for task in incomplete if is_overdue(task, now))

    missing_estimate_count = 0
    if project.status != ProjectStatus.PLANNING:
        missing_estimate_count = sum(
            1
            for task in incomplete
            if task.priority < int(Priority.LOW) and estimates.estimate_for(task, aggregator) is None
        )
    date_conflict_count = sum(1 for task in tasks if has_date_conflicts(task))

    actual = actual_hours(project, now, aggregator)
    planned = planned_hours(project, aggregator)
    time_progress = _ratio(actual, project.estimated_hours)
    planning_progress = _ratio(planned, project.estimated_hours)
    completion_ratio = completed_count / len(tasks) if tasks else None

    status = classify_health(
        time_progress,
        planning_progress,
        completion_ratio,
        overdue_count=overdue_count,
        blocked_count=blocked_count,
        missing_estimate_count=missing_estimate_count,
        date_conflict_count=date_conflict_count,
    )
    return ProjectHealthReport(
        project_id=project.id,
        status=status,
        actual_hours=actual,
        planned_hours=planned,
        budget_hours=project.estimated_hours,
        time_progress=time_progress,
        planning_progress=planning_progress,
        completion_ratio=completion_ratio,
        completed_count=completed_count,
        incomplete_count=len(incomplete),
        blocked_count=blocked_count,
        overdue_count=overdue_count,
        missing_estimate_count=missing_estimate_count,
        date_conflict_count=date_conflict_count,
    )


def health_status(
    project: Project,
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> ProjectHealthStatus:
    return evaluate_project(project, now, aggregator).status


def is_active_project(project: Project) -> bool:
    if project.status != ProjectStatus.IN_PROGRESS:
        return False
    return any(not task.is_completed for task in _active_tasks(project))


@dataclass
class AttentionNeeded:
    overdue_tasks: List[Task] = field(default_factory=list)
    blocked_tasks: List[Task] = field(default_factory=list)
    tasks_without_estimates: List[Task] = field(default_factory=list)
    tasks_nearing_estimate: List[Task] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return self.total_issue_count > 0

    @property
    def total_issue_count(self) -> int:
        return (
            len(self.overdue_tasks)
            + len(self.blocked_tasks)
            + len(self.tasks_without_estimates)
            + len(self.tasks_nearing_estimate)
        )


def attention_needed(
    tasks: Iterable[Task],
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> AttentionNeeded:
    low, high = NEARING_ESTIMATE_RANGE
    result = AttentionNeeded()
    for task in tasks:
        if task.is_completed or task.is_archived:
            continue
        if is_overdue(task, now):
            result.overdue_tasks.append(task)
        if task_status(task) is TaskStatus.BLOCKED:
            result.blocked_tasks.append(task)
        if estimates.estimate_for(task, aggregator) is None:
            result.tasks_without_estimates.append(task)
        progress = estimates.time_progress(task, now, aggregator)
        if progress is not None and low <= progress < high:
            result.tasks_nearing_estimate.append(task)
    return result


@dataclass
class ProjectIssue:
    project: Project
    health: ProjectHealthStatus
    issue_descriptions: List[str]
    overdue_count: int = 0
    blocked_count: int = 0
    missing_estimates_count: int = 0
    nearing_budget: bool = False
    over_planned: bool = False

    @property
    def total_issues(self) -> int:
        return (
            self.overdue_count
            + self.blocked_count
            + self.missing_estimates_count
            + int(self.nearing_budget)
            + int(self.over_planned)
        )

    @property
    def summary_text(self) -> str:
        return ", ".join(self.issue_descriptions)


def projects_needing_attention(
    projects: Iterable[Project],
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> List[ProjectIssue]:
    issues = []
    for project in projects:
        if project.status == ProjectStatus.COMPLETED:
            continue
        report = evaluate_project(project, now, aggregator)
        nearing_budget = report.time_progress is not None and report.time_progress >= NEARING_BUDGET_PROGRESS
        variance = report.planning_variance
        over_planned = variance is not None and variance > 0

        descriptions = []
        if report.overdue_count:
            descriptions.append(f"{report.overdue_count} overdue")
        if report.blocked_count:
            descriptions.append(f"{report.blocked_count} blocked")
        if report.missing_estimate_count:
            descriptions.append(f"{report.missing_estimate_count} missing estimates")
        if over_planned:
            descriptions.append(f"over-planned by {variance:.0f}h")
        if nearing_budget:
            descriptions.append("nearing budget")
        if not descriptions:
            continue

        issues.append(
            ProjectIssue(
                project=project,
                health=report.status,
                issue_descriptions=descriptions,
                overdue_count=report.overdue_count,
                blocked_count=report.blocked_count,
                missing_estimates_count=report.missing_estimate_count,
                nearing_budget=nearing_budget,
                over_planned=over_planned,
            )
        )
    issues.sort(key=lambda issue: (issue.health.sort_order, -issue.total_issues))
    return issues


def active_projects(
    projects: Iterable[Project],
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> List[Project]:
    far_future = dt.datetime.max.replace(tzinfo=dt.timezone.utc)
    ranked = []
    for project in projects:
        if not is_active_project(project):
            continue
        status = health_status(project, now, aggregator)
        due = as_utc(project.due_date) if project.due_date else far_future
        ranked.append(((status.sort_order, due, project.title), project))
    ranked.sort(key=lambda item: item[0])
    return [project for _, project in ranked]


def upcoming_projects(projects: Iterable[Project], now: dt.datetime, limit: int = UPCOMING_LIMIT) -> List[Project]:
    moment = as_utc(now)
    candidates = [
        project
        for project in projects
        if project.status == ProjectStatus.PLANNING
        or (project.due_date is not None and as_utc(project.due_date) > moment)
    ]
    # Dated projects first, nearest due date first; undated ones by title.
    candidates.sort(
        key=lambda project: (
            project.due_date is None,
            as_utc(project.due_date) if project.due_date else moment,
            project.title,
        )
    )
    return candidates[:limit]


@dataclass
class TodaysActivity:
    active_timers: int
    active_personnel: int
    hours_logged_today: float
    person_hours_today: float
    tasks_completed_today: int


def todays_activity(
    tasks: Iterable[Task],
    now: dt.datetime,
    tz: Optional[dt.tzinfo | str] = None,
) -> TodaysActivity:
    task_list = list(tasks)
    timer_entries = [timekeeping.active_timer_entry(task) for task in task_list]
    timer_entries = [entry for entry in timer_entries if entry is not None]
    today = local_day(now, tz)
    return TodaysActivity(
        active_timers=len(timer_entries),
        active_personnel=sum(entry.personnel_count or 1 for entry in timer_entries),
        hours_logged_today=sum(timekeeping.today_hours(task, now, tz) for task in task_list),
        person_hours_today=sum(timekeeping.today_person_hours(task, now, tz) for task in task_list),
        tasks_completed_today=sum(
            1
            for task in task_list
            if task.completed_date is not None and local_day(task.completed_date, tz) == today
        ),
    )
